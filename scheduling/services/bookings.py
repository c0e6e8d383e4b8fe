"""
Booking lifecycle manager.

A booking is created ``Pending`` and moves along the transitions listed in
``TRANSITIONS``.  Capacity is consumed only when a booking is accepted, so a
slot may collect more requests than it has places while never confirming
more attendees than its capacity.  Every status change locks the booking
row, applies the capacity effect through the slot registry and records a
:class:`~scheduling.models.BookingTransition`, all in one transaction.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, NamedTuple, Optional

import bleach
from django.db import DatabaseError
from django.db.models import Q, QuerySet, Value
from django.db.models.functions import Concat

from scheduling.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from scheduling.models import Booking, BookingTransition, Slot, User
from scheduling.session import Actor
from scheduling.services import notify, slots
from scheduling.services.audit import log_action
from scheduling.services.storage import atomic

logger = logging.getLogger(__name__)

EVENT_REQUEST = 'request'
EVENT_ACCEPT = 'accept'
EVENT_REJECT = 'reject'
EVENT_CHECK_IN = 'checkIn'
EVENT_COMPLETE = 'complete'
EVENT_CANCEL = 'cancel'
EVENTS = (EVENT_ACCEPT, EVENT_REJECT, EVENT_CHECK_IN, EVENT_COMPLETE, EVENT_CANCEL)

# events a patient may apply to their own booking
PATIENT_EVENTS = frozenset({EVENT_CANCEL})

RESERVE = 'reserve'
RELEASE = 'release'


class Transition(NamedTuple):
    to_status: str
    capacity_effect: Optional[str]


TRANSITIONS: dict[tuple[str, str], Transition] = {
    (Booking.STATUS_PENDING, EVENT_ACCEPT): Transition(Booking.STATUS_ACCEPTED, RESERVE),
    (Booking.STATUS_PENDING, EVENT_REJECT): Transition(Booking.STATUS_REJECTED, None),
    (Booking.STATUS_PENDING, EVENT_CANCEL): Transition(Booking.STATUS_REJECTED, None),
    (Booking.STATUS_ACCEPTED, EVENT_CHECK_IN): Transition(Booking.STATUS_CHECKED_IN, None),
    (Booking.STATUS_ACCEPTED, EVENT_CANCEL): Transition(Booking.STATUS_REJECTED, RELEASE),
    (Booking.STATUS_CHECKED_IN, EVENT_COMPLETE): Transition(Booking.STATUS_COMPLETED, None),
}


def _clean_text(value: Any, limit: int) -> str:
    return bleach.clean(str(value or '').strip(), strip=True)[:limit]


def allowed_events(status: str) -> list[str]:
    return [event for (current, event) in TRANSITIONS if current == status]


def get_booking(booking_id: int) -> Booking:
    try:
        booking = (
            Booking.objects.select_related('slot', 'slot__doctor', 'patient')
            .filter(id=booking_id)
            .first()
        )
    except DatabaseError as exc:
        raise StorageError(f'storage failure: {exc}') from exc
    if not booking:
        raise NotFoundError('booking not found', bookingId=booking_id)
    return booking


def ensure_can_view(actor: Actor, booking: Booking) -> None:
    if actor.is_patient and booking.patient_id != actor.user_id:
        raise PermissionDeniedError('forbidden for this booking')


def _patient_id(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('patientId must be an integer', patientId=value)


def request_booking(actor: Actor, slot_id: int, patient_id: Optional[int] = None, reason: str = '') -> Booking:
    """Create a ``Pending`` booking; no capacity is taken yet."""
    if actor.is_patient:
        if patient_id is not None and _patient_id(patient_id) != actor.user_id:
            raise PermissionDeniedError('patients may only book for themselves')
        patient_id = actor.user_id
    elif not actor.is_staff:
        raise PermissionDeniedError('unknown role')
    elif patient_id is None:
        raise ValidationError('patientId is required')
    else:
        patient_id = _patient_id(patient_id)

    reason = _clean_text(reason, 500)
    with atomic():
        if not Slot.objects.filter(id=slot_id).exists():
            raise NotFoundError('slot not found', slotId=slot_id)
        if not User.objects.filter(id=patient_id, role=User.ROLE_PATIENT).exists():
            raise NotFoundError('patient not found', patientId=patient_id)
        duplicate = Booking.objects.filter(
            slot_id=slot_id, patient_id=patient_id, status__in=Booking.ACTIVE_STATUSES
        ).first()
        if duplicate:
            raise ConflictError('patient already has a booking for this slot', bookingId=duplicate.id)

        booking = Booking.objects.create(slot_id=slot_id, patient_id=patient_id, reason=reason)
        BookingTransition.objects.create(
            booking=booking,
            from_status=None,
            event=EVENT_REQUEST,
            to_status=booking.status,
            operator_id=actor.user_id,
            reason=reason[:255],
        )
        log_action(actor=actor, action='booking_request', object_type='booking', object_id=booking.id,
                   detail={'slotId': slot_id, 'patientId': patient_id})
        notify.schedule_changed('booking.requested', slot_id=slot_id, booking_id=booking.id)
    logger.info('booking %s requested on slot %s for patient %s', booking.id, slot_id, patient_id)
    return get_booking(booking.id)


def _authorize_event(actor: Actor, booking: Booking, event: str) -> None:
    if actor.is_staff:
        return
    if actor.is_patient and event in PATIENT_EVENTS and booking.patient_id == actor.user_id:
        return
    if actor.is_patient and booking.patient_id != actor.user_id:
        raise PermissionDeniedError('forbidden for this booking')
    raise PermissionDeniedError(f"only clinic staff may '{event}' a booking")


def transition(actor: Actor, booking_id: int, event: str, reason: str = '') -> Booking:
    """Apply ``event`` to a booking.

    Raises :class:`InvalidTransitionError` for pairs outside ``TRANSITIONS``
    and lets the registry's :class:`CapacityError` through on a full slot;
    in both cases the booking keeps its status.
    """
    if event not in EVENTS:
        raise ValidationError(f"unknown event '{event}'", allowed=list(EVENTS))
    reason = _clean_text(reason, 255)

    with atomic():
        booking = Booking.objects.select_for_update().filter(id=booking_id).first()
        if not booking:
            raise NotFoundError('booking not found', bookingId=booking_id)
        _authorize_event(actor, booking, event)

        step = TRANSITIONS.get((booking.status, event))
        if step is None:
            raise InvalidTransitionError(booking.status, event)

        if step.capacity_effect == RESERVE:
            slots.reserve(booking.slot_id)
        elif step.capacity_effect == RELEASE:
            slots.release(booking.slot_id)

        from_status = booking.status
        booking.status = step.to_status
        booking.save(update_fields=['status', 'updated_at'])
        BookingTransition.objects.create(
            booking=booking,
            from_status=from_status,
            event=event,
            to_status=step.to_status,
            operator_id=actor.user_id,
            reason=reason,
        )
        log_action(actor=actor, action=f'booking_{event}', object_type='booking', object_id=booking.id,
                   detail={'from': from_status, 'to': step.to_status, 'slotId': booking.slot_id})
        notify.schedule_changed(f'booking.{event}', slot_id=booking.slot_id, booking_id=booking.id)
    logger.info('booking %s %s -> %s (%s) by user %s',
                booking_id, from_status, step.to_status, event, actor.user_id)
    return get_booking(booking_id)


def delete_booking(actor: Actor, booking_id: int) -> None:
    """Remove a booking, first giving back the capacity unit it holds."""
    actor.require_staff('delete bookings')
    with atomic():
        booking = Booking.objects.select_for_update().filter(id=booking_id).first()
        if not booking:
            raise NotFoundError('booking not found', bookingId=booking_id)
        released = booking.holds_capacity
        if released:
            slots.release(booking.slot_id)
        slot_id = booking.slot_id
        booking.delete()
        log_action(actor=actor, action='booking_delete', object_type='booking', object_id=booking_id,
                   detail={'slotId': slot_id, 'status': booking.status, 'released': released})
        notify.schedule_changed('booking.deleted', slot_id=slot_id, booking_id=booking_id)
    logger.info('booking %s deleted by user %s (released=%s)', booking_id, actor.user_id, released)


def _move(booking: Booking, to_slot_id: int) -> None:
    if booking.status not in Booking.ACTIVE_STATUSES:
        raise InvalidTransitionError(booking.status, 'reschedule')
    if booking.slot_id == to_slot_id:
        return
    if Booking.objects.filter(
        slot_id=to_slot_id, patient_id=booking.patient_id, status__in=Booking.ACTIVE_STATUSES
    ).exclude(id=booking.id).exists():
        raise ConflictError('patient already has a booking for the target slot',
                            bookingId=booking.id, slotId=to_slot_id)
    if booking.holds_capacity:
        # take the new place before giving up the old one
        slots.reserve(to_slot_id)
        slots.release(booking.slot_id)
    booking.slot_id = to_slot_id
    booking.save(update_fields=['slot', 'updated_at'])


def reschedule_booking(actor: Actor, booking_id: int, slot_id: int) -> Booking:
    """Move a Pending or Accepted booking to another slot, keeping its status."""
    actor.require_staff('reschedule bookings')
    with atomic():
        booking = Booking.objects.select_for_update().filter(id=booking_id).first()
        if not booking:
            raise NotFoundError('booking not found', bookingId=booking_id)
        if not Slot.objects.filter(id=slot_id).exists():
            raise NotFoundError('slot not found', slotId=slot_id)
        from_slot_id = booking.slot_id
        _move(booking, slot_id)
        log_action(actor=actor, action='booking_reschedule', object_type='booking', object_id=booking.id,
                   detail={'fromSlotId': from_slot_id, 'toSlotId': slot_id})
        notify.schedule_changed('booking.rescheduled', slot_id=slot_id, booking_id=booking.id)
    return get_booking(booking_id)


def reschedule_slot_bookings(actor: Actor, from_slot_id: int, to_slot_id: int) -> list[Booking]:
    """Move every Pending/Accepted booking of a slot to another slot, all or nothing."""
    actor.require_staff('reschedule bookings')
    if from_slot_id == to_slot_id:
        raise ValidationError('source and target slot are the same')
    with atomic():
        found = set(Slot.objects.filter(id__in=[from_slot_id, to_slot_id]).values_list('id', flat=True))
        for sid in (from_slot_id, to_slot_id):
            if sid not in found:
                raise NotFoundError('slot not found', slotId=sid)
        moved = list(
            Booking.objects.select_for_update()
            .filter(slot_id=from_slot_id, status__in=Booking.ACTIVE_STATUSES)
            .order_by('requested_at', 'id')
        )
        for booking in moved:
            _move(booking, to_slot_id)
        log_action(actor=actor, action='slot_reschedule', object_type='slot', object_id=from_slot_id,
                   detail={'toSlotId': to_slot_id, 'bookingIds': [b.id for b in moved]})
        notify.schedule_changed('slot.rescheduled', slot_id=to_slot_id)
    logger.info('moved %d bookings from slot %s to slot %s', len(moved), from_slot_id, to_slot_id)
    return [get_booking(b.id) for b in moved]


def query_bookings(filters: Mapping[str, Any]) -> QuerySet[Booking]:
    """Return bookings matching every supplied filter.

    ``date_range`` is an inclusive ``(start, end)`` pair on the slot date;
    either bound may be ``None``.  ``search`` matches the patient's name.
    """
    qs = Booking.objects.select_related('slot', 'slot__doctor', 'patient')
    if filters.get('status'):
        qs = qs.filter(status=filters['status'])
    if filters.get('slot_id'):
        qs = qs.filter(slot_id=filters['slot_id'])
    if filters.get('patient_id'):
        qs = qs.filter(patient_id=filters['patient_id'])
    date_range = filters.get('date_range')
    if date_range:
        start, end = date_range
        if start:
            qs = qs.filter(slot__date__gte=start)
        if end:
            qs = qs.filter(slot__date__lte=end)
    search = (filters.get('search') or '').strip()
    if search:
        qs = qs.annotate(
            patient_full_name=Concat('patient__first_name', Value(' '), 'patient__last_name')
        ).filter(
            Q(patient_full_name__icontains=search)
            | Q(patient__first_name__icontains=search)
            | Q(patient__last_name__icontains=search)
            | Q(patient__username__icontains=search)
        )
    return qs.order_by('-requested_at', '-id')


def serialize_booking(booking: Booking, *, with_history: bool = False) -> dict:
    data = {
        'id': booking.id,
        'slotId': booking.slot_id,
        'slot': slots.serialize_slot(booking.slot),
        'patientId': booking.patient_id,
        'patientName': booking.patient.display_name,
        'reason': booking.reason,
        'status': booking.status,
        'allowedEvents': allowed_events(booking.status),
        'requestedAt': booking.requested_at.isoformat() if booking.requested_at else None,
        'updatedAt': booking.updated_at.isoformat() if booking.updated_at else None,
    }
    if with_history:
        data['transitionHistory'] = [
            {
                'from': t.from_status,
                'event': t.event,
                'to': t.to_status,
                'operator': t.operator.username if t.operator else '',
                'timestamp': t.timestamp.isoformat(),
                'reason': t.reason,
            }
            for t in booking.transitions.select_related('operator').order_by('timestamp', 'id')
        ]
    return data
