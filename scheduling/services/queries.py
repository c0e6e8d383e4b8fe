"""
Filtering and pagination for the slot and booking list endpoints.
"""
from __future__ import annotations

import math
from datetime import date as date_type
from typing import Any, Mapping, Optional, Sequence

from django.conf import settings
from django.utils.dateparse import parse_date

from scheduling.exceptions import ValidationError
from scheduling.models import Booking
from scheduling.session import Actor
from scheduling.services import bookings, slots


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _date_param(params: Mapping[str, Any], name: str) -> Optional[date_type]:
    value = params.get(name)
    if _blank(value):
        return None
    if isinstance(value, date_type):
        return value
    try:
        parsed = parse_date(str(value).strip())
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f'{name} must be a date (YYYY-MM-DD)', **{name: value})
    return parsed


def _int_param(params: Mapping[str, Any], name: str) -> Optional[int]:
    value = params.get(name)
    if _blank(value):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer', **{name: value})


def slot_filters(params: Mapping[str, Any]) -> dict:
    filters: dict[str, Any] = {}
    day = _date_param(params, 'date')
    if day:
        filters['date'] = day
    for key in ('location', 'search'):
        if not _blank(params.get(key)):
            filters[key] = str(params[key]).strip()
    doctor_id = _int_param(params, 'doctorId')
    if doctor_id:
        filters['doctor_id'] = doctor_id
    return filters


def booking_filters(params: Mapping[str, Any]) -> dict:
    filters: dict[str, Any] = {}
    status = params.get('status')
    if not _blank(status):
        status = str(status).strip()
        if status not in dict(Booking.STATUS_CHOICES):
            raise ValidationError('unknown booking status', status=status)
        filters['status'] = status
    if not _blank(params.get('search')):
        filters['search'] = str(params['search']).strip()
    start, end = _date_param(params, 'startDate'), _date_param(params, 'endDate')
    if start or end:
        if start and end and start > end:
            raise ValidationError('startDate must not be after endDate')
        filters['date_range'] = (start, end)
    slot_id = _int_param(params, 'slot')
    if slot_id:
        filters['slot_id'] = slot_id
    patient_id = _int_param(params, 'patientId')
    if patient_id:
        filters['patient_id'] = patient_id
    return filters


def paginate(results: Sequence, page: Any = 1, limit: Any = None) -> tuple[list, dict]:
    """Cut one page out of ``results``.

    ``results`` may be a queryset; only ``count()`` and one slice are
    evaluated.  Pages past the end come back empty.
    """
    max_limit = getattr(settings, 'SCHEDULING_MAX_PAGE_SIZE', 100)
    if _blank(limit):
        limit = getattr(settings, 'SCHEDULING_DEFAULT_PAGE_SIZE', 10)
    if _blank(page):
        page = 1
    try:
        page, limit = int(page), int(limit)
    except (TypeError, ValueError):
        raise ValidationError('page and limit must be integers')
    if page < 1 or limit < 1:
        raise ValidationError('page and limit must be positive', page=page, limit=limit)
    limit = min(limit, max_limit)

    total = len(results) if isinstance(results, (list, tuple)) else results.count()
    offset = (page - 1) * limit
    items = list(results[offset:offset + limit])
    pagination = {
        'total': total,
        'page': page,
        'limit': limit,
        'totalPages': math.ceil(total / limit) if total else 0,
    }
    return items, pagination


def list_slots(params: Mapping[str, Any]) -> tuple[list, dict]:
    qs = slots.query_slots(slot_filters(params))
    return paginate(qs, params.get('page'), params.get('limit'))


def list_bookings(params: Mapping[str, Any], actor: Actor) -> tuple[list, dict]:
    filters = booking_filters(params)
    if actor.is_patient:
        filters['patient_id'] = actor.user_id
    qs = bookings.query_bookings(filters)
    return paginate(qs, params.get('page'), params.get('limit'))
