"""
Scheduling error taxonomy and the unified API exception handler.

Service functions raise the :class:`SchedulingError` subclasses below;
``api_exception_handler`` (configured as DRF's ``EXCEPTION_HANDLER``)
renders them, and DRF's own exceptions, as
``{"success": false, "error": {"code": ..., "message": ...}}``.
"""
from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class SchedulingError(Exception):
    code = 'scheduling_error'
    status_code = 400

    def __init__(self, message: str = '', **detail):
        self.message = message or (self.__doc__ or self.code).strip()
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self) -> dict:
        error = {'code': self.code, 'message': self.message}
        if self.detail:
            error['detail'] = self.detail
        return error


class ValidationError(SchedulingError):
    """Malformed input."""
    code = 'validation_error'
    status_code = 400


class PermissionDeniedError(SchedulingError):
    """The acting user may not perform this operation."""
    code = 'permission_denied'
    status_code = 403


class NotFoundError(SchedulingError):
    """Unknown slot, booking or patient."""
    code = 'not_found'
    status_code = 404


class CapacityError(SchedulingError):
    """Slot capacity exceeded."""
    code = 'capacity_exceeded'
    status_code = 409


class InvalidTransitionError(SchedulingError):
    """Event not allowed from the booking's current status."""
    code = 'invalid_transition'
    status_code = 409

    def __init__(self, current: str, event: str):
        super().__init__(f"cannot apply '{event}' to a booking in status '{current}'", current=current, event=event)
        self.current = current
        self.event = event


class ConflictError(SchedulingError):
    """Overlapping slot, duplicate booking or outstanding bookings."""
    code = 'conflict'
    status_code = 409


class InvariantError(SchedulingError):
    """Internal consistency check failed."""
    code = 'invariant_violation'
    status_code = 500


class StorageError(SchedulingError):
    """Backing store failure."""
    code = 'storage_error'
    status_code = 503


def api_exception_handler(exc, context):
    if isinstance(exc, SchedulingError):
        if isinstance(exc, InvariantError):
            logger.error('invariant violation in %s: %s', _request_path(context), exc.message, extra={'detail': exc.detail})
        elif isinstance(exc, StorageError):
            logger.warning('storage failure in %s: %s', _request_path(context), exc.message)
        return Response({'success': False, 'error': exc.as_dict()}, status=exc.status_code)

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error in %s', _request_path(context), exc_info=exc)
        return Response(
            {'success': False, 'error': {'code': 'server_error', 'message': 'internal server error'}},
            status=500,
        )
    # normalize DRF responses
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = resp.data
    code = getattr(exc, 'default_code', 'api_error')
    return Response({'success': False, 'error': {'code': code, 'message': detail}}, status=resp.status_code)


def _request_path(context) -> str:
    request = (context or {}).get('request')
    return getattr(request, 'path', '-')
