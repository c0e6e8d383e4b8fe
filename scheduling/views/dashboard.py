"""
Staff dashboard endpoints.

``stats`` returns headline counters (cached until the next schedule
change); ``today`` lists the first bookings of the day.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsStaffRole
from ..services import dashboard


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def dashboard_stats(request):
    return Response({'success': True, 'data': dashboard.stats()})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def dashboard_today(request):
    try:
        limit = max(1, min(int(request.query_params.get('limit', 5)), 50))
    except (TypeError, ValueError):
        limit = 5
    return Response({'success': True, 'data': dashboard.today_bookings(limit=limit)})
