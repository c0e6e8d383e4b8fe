"""
Rate limits for the write-heavy and credential endpoints.

Function views built with ``@api_view`` cannot carry a ``throttle_scope``
attribute, so each scope gets its own throttle class; the rates live in
``REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']``.
"""
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle


class LoginRateThrottle(AnonRateThrottle):
    scope = 'login'


class BookingWriteRateThrottle(UserRateThrottle):
    scope = 'booking_write'

    def allow_request(self, request, view):
        if request.method in ('GET', 'HEAD', 'OPTIONS'):
            return True
        return super().allow_request(request, view)
