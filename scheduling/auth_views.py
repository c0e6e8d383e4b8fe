"""
Authentication views.

Username/password login hands out both a DRF token and a JWT pair; the
JWT refresh and logout endpoints wrap simplejwt.  Kept apart from
``scheduling.authentication`` so DRF can load the authentication class
without importing views.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenRefreshView

from .models import User
from .serializers.auth import LoginSerializer
from .services.audit import log_action
from .session import Actor
from .throttling import LoginRateThrottle

logger = logging.getLogger(__name__)


def _user_payload(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'name': user.display_name,
        'role': user.role,
    }


@api_view(['POST'])
@permission_classes([AllowAny])
@throttle_classes([LoginRateThrottle])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    password = s.validated_data['password']

    user = authenticate(request, username=username, password=password)
    if not user:
        log_action(actor=None, action='login', object_type='user',
                   detail={'result': 'fail', 'username': username, 'ip': request.META.get('REMOTE_ADDR')})
        logger.info('failed login for %s', username)
        return Response(
            {'success': False, 'error': {'code': 'invalid_credentials', 'message': 'invalid username or password'}},
            status=400,
        )

    log_action(actor=Actor.from_user(user), action='login', object_type='user', object_id=user.id,
               detail={'result': 'ok', 'ip': request.META.get('REMOTE_ADDR')})

    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return Response({
        'success': True,
        'data': {
            'token': token_obj.key,
            'jwtAccess': str(refresh.access_token),
            'jwtRefresh': str(refresh),
            'user': _user_payload(user),
        },
    })


@api_view(['POST'])
@permission_classes([AllowAny])
def jwt_refresh_view(request):
    """Return a new access token (and a rotated refresh token) from a refresh token."""
    resp = TokenRefreshView.as_view()(request._request)
    if resp.status_code != 200:
        return Response(
            {'success': False, 'error': {'code': 'token_not_valid', 'message': 'refresh token is invalid or expired'}},
            status=resp.status_code,
        )
    data = {'jwtAccess': resp.data.get('access')}
    if 'refresh' in resp.data:
        data['jwtRefresh'] = resp.data['refresh']
    return Response({'success': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def jwt_logout_view(request):
    """Blacklist the given refresh token, or every outstanding one of the user."""
    refresh = request.data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
            count = 1
        except TokenError as e:
            return Response({'success': False, 'error': {'code': 'token_not_valid', 'message': str(e)}}, status=400)
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    log_action(actor=Actor.from_request(request), action='logout', object_type='user', object_id=request.user.id,
               detail={'blacklisted': count})
    return Response({'success': True, 'data': {'blacklisted': count}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me_view(request):
    return Response({'success': True, 'data': _user_payload(request.user)})
