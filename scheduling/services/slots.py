"""
Slot registry.

Owns appointment slots and their capacity.  ``reserve`` and ``release`` are
the only code paths that change ``Slot.booked_count``; both are single
conditional ``UPDATE`` statements so the capacity check and the increment
happen atomically in the database, whatever the number of concurrent
callers.
"""
from __future__ import annotations

import logging
from datetime import date as date_type
from typing import Any, Mapping, Optional

import bleach
from django.db import DatabaseError
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from scheduling.exceptions import (
    CapacityError,
    ConflictError,
    InvariantError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from scheduling.models import Booking, Slot, User
from scheduling.session import Actor
from scheduling.services import notify
from scheduling.services.audit import log_action
from scheduling.services.storage import atomic

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = ('date', 'start_hour', 'end_hour', 'location', 'capacity')


def _clean_location(location: Any) -> str:
    value = bleach.clean(str(location or '').strip(), strip=True)
    if not value:
        raise ValidationError('location is required')
    return value


def _validate_window(start_hour: Any, end_hour: Any) -> tuple[int, int]:
    try:
        start, end = int(start_hour), int(end_hour)
    except (TypeError, ValueError):
        raise ValidationError('startHour and endHour must be integers')
    if not (0 <= start <= 23 and 0 <= end <= 23):
        raise ValidationError('hours must be between 0 and 23', startHour=start, endHour=end)
    if start >= end:
        raise ValidationError('startHour must be before endHour', startHour=start, endHour=end)
    return start, end


def _validate_capacity(capacity: Any) -> int:
    try:
        value = int(capacity)
    except (TypeError, ValueError):
        raise ValidationError('capacity must be an integer')
    if value <= 0:
        raise ValidationError('capacity must be positive', capacity=value)
    return value


def _validate_date(value: Any) -> date_type:
    if not isinstance(value, date_type):
        raise ValidationError('date must be a calendar date')
    return value


def ensure_no_overlap(*, date: date_type, start_hour: int, end_hour: int, location: str,
                       exclude_id: Optional[int] = None) -> None:
    qs = Slot.objects.filter(
        date=date,
        location__iexact=location,
        # [start, end) ranges; touching ends do not overlap
        start_hour__lt=end_hour,
        end_hour__gt=start_hour,
    )
    if exclude_id:
        qs = qs.exclude(id=exclude_id)
    clash = qs.order_by('start_hour').first()
    if clash:
        raise ConflictError(
            'slot overlaps an existing slot at this location',
            slotId=clash.id, startHour=clash.start_hour, endHour=clash.end_hour,
        )


def get_slot(slot_id: int) -> Slot:
    try:
        slot = Slot.objects.select_related('doctor').filter(id=slot_id).first()
    except DatabaseError as exc:
        raise StorageError(f'storage failure: {exc}') from exc
    if not slot:
        raise NotFoundError('slot not found', slotId=slot_id)
    return slot


def create_slot(actor: Actor, *, date: date_type, start_hour: int, end_hour: int, location: str,
                capacity: int, doctor_id: Optional[int] = None) -> Slot:
    actor.require_staff('create slots')
    date = _validate_date(date)
    start_hour, end_hour = _validate_window(start_hour, end_hour)
    capacity = _validate_capacity(capacity)
    location = _clean_location(location)

    if doctor_id is None and actor.role == User.ROLE_DOCTOR:
        doctor_id = actor.user_id
    if doctor_id is not None and not User.objects.filter(id=doctor_id, role__in=User.STAFF_ROLES).exists():
        raise NotFoundError('doctor not found', doctorId=doctor_id)

    with atomic():
        ensure_no_overlap(date=date, start_hour=start_hour, end_hour=end_hour, location=location)
        slot = Slot.objects.create(
            doctor_id=doctor_id,
            date=date,
            start_hour=start_hour,
            end_hour=end_hour,
            location=location,
            capacity=capacity,
        )
        log_action(actor=actor, action='slot_create', object_type='slot', object_id=slot.id,
                   detail={'date': date.isoformat(), 'startHour': start_hour, 'endHour': end_hour,
                           'location': location, 'capacity': capacity})
        notify.schedule_changed('slot.created', slot_id=slot.id)
    logger.info('slot %s created by user %s', slot.id, actor.user_id)
    return slot


def update_slot(actor: Actor, slot_id: int, patch: Mapping[str, Any]) -> Slot:
    actor.require_staff('update slots')
    unknown = set(patch) - set(PATCHABLE_FIELDS)
    if unknown:
        raise ValidationError('unsupported slot fields', fields=sorted(unknown))

    with atomic():
        slot = Slot.objects.select_for_update().filter(id=slot_id).first()
        if not slot:
            raise NotFoundError('slot not found', slotId=slot_id)

        date = _validate_date(patch['date']) if 'date' in patch else slot.date
        start_hour, end_hour = _validate_window(
            patch.get('start_hour', slot.start_hour), patch.get('end_hour', slot.end_hour)
        )
        location = _clean_location(patch['location']) if 'location' in patch else slot.location
        capacity = _validate_capacity(patch['capacity']) if 'capacity' in patch else slot.capacity
        if capacity < slot.booked_count:
            raise CapacityError(
                'capacity cannot be lower than the confirmed bookings',
                capacity=capacity, bookedCount=slot.booked_count,
            )
        if (date, start_hour, end_hour, location.lower()) != (
            slot.date, slot.start_hour, slot.end_hour, slot.location.lower()
        ):
            ensure_no_overlap(date=date, start_hour=start_hour, end_hour=end_hour,
                               location=location, exclude_id=slot.id)

        slot.date = date
        slot.start_hour = start_hour
        slot.end_hour = end_hour
        slot.location = location
        slot.capacity = capacity
        slot.save(update_fields=['date', 'start_hour', 'end_hour', 'location', 'capacity', 'updated_at'])
        log_action(actor=actor, action='slot_update', object_type='slot', object_id=slot.id,
                   detail={k: str(v) for k, v in patch.items()})
        notify.schedule_changed('slot.updated', slot_id=slot.id)
    return slot


def reserve(slot_id: int) -> None:
    """Take one unit of capacity; raises :class:`CapacityError` when the slot is full."""
    try:
        updated = Slot.objects.filter(id=slot_id, booked_count__lt=F('capacity')).update(
            booked_count=F('booked_count') + 1, updated_at=timezone.now()
        )
        if updated:
            return
        slot = Slot.objects.filter(id=slot_id).only('capacity', 'booked_count').first()
    except DatabaseError as exc:
        raise StorageError(f'storage failure: {exc}') from exc
    if not slot:
        raise NotFoundError('slot not found', slotId=slot_id)
    raise CapacityError('slot is already full', slotId=slot_id, capacity=slot.capacity,
                        bookedCount=slot.booked_count)


def release(slot_id: int) -> None:
    """Return one unit of capacity; a slot at zero signals a caller bug."""
    try:
        updated = Slot.objects.filter(id=slot_id, booked_count__gt=0).update(
            booked_count=F('booked_count') - 1, updated_at=timezone.now()
        )
        if updated:
            return
        exists = Slot.objects.filter(id=slot_id).exists()
    except DatabaseError as exc:
        raise StorageError(f'storage failure: {exc}') from exc
    if not exists:
        raise NotFoundError('slot not found', slotId=slot_id)
    logger.error('release on slot %s with booked_count already 0', slot_id)
    raise InvariantError('slot has no reserved capacity to release', slotId=slot_id)


def delete_slot(actor: Actor, slot_id: int, *, force: bool = False) -> None:
    """Delete a slot.

    Refused with :class:`ConflictError` while confirmed bookings hold
    capacity, unless ``force`` is set: then each capacity-holding booking
    gives its unit back through :func:`release` before the slot and all of
    its bookings are removed.
    """
    actor.require_staff('delete slots')
    with atomic():
        slot = Slot.objects.select_for_update().filter(id=slot_id).first()
        if not slot:
            raise NotFoundError('slot not found', slotId=slot_id)
        if slot.booked_count > 0 and not force:
            raise ConflictError('cannot delete a slot with confirmed bookings',
                                slotId=slot_id, bookedCount=slot.booked_count)
        released = 0
        if force:
            holding = Booking.objects.select_for_update().filter(
                slot_id=slot_id, status__in=Booking.CAPACITY_STATUSES
            )
            for booking in holding:
                release(booking.slot_id)
                released += 1
        _, per_model = Booking.objects.filter(slot_id=slot_id).delete()
        removed = per_model.get(Booking._meta.label, 0)
        slot.delete()
        log_action(actor=actor, action='slot_delete', object_type='slot', object_id=slot_id,
                   detail={'force': force, 'released': released, 'bookingsRemoved': removed})
        notify.schedule_changed('slot.deleted', slot_id=slot_id)
    logger.info('slot %s deleted by user %s (force=%s)', slot_id, actor.user_id, force)


def query_slots(filters: Mapping[str, Any]) -> QuerySet[Slot]:
    """Return slots matching every supplied filter; absent filters do not constrain."""
    qs = Slot.objects.select_related('doctor')
    if filters.get('date'):
        qs = qs.filter(date=filters['date'])
    if filters.get('location'):
        qs = qs.filter(location__iexact=filters['location'])
    if filters.get('doctor_id'):
        qs = qs.filter(doctor_id=filters['doctor_id'])
    search = (filters.get('search') or '').strip()
    if search:
        qs = qs.filter(
            Q(location__icontains=search)
            | Q(doctor__first_name__icontains=search)
            | Q(doctor__last_name__icontains=search)
            | Q(doctor__username__icontains=search)
        )
    return qs.order_by('date', 'start_hour', 'id')


def serialize_slot(slot: Slot) -> dict:
    return {
        'id': slot.id,
        'date': slot.date.isoformat(),
        'startHour': slot.start_hour,
        'endHour': slot.end_hour,
        'location': slot.location,
        'capacity': slot.capacity,
        'bookedCount': slot.booked_count,
        'remaining': slot.remaining,
        'isFull': slot.is_full,
        'doctorId': slot.doctor_id,
        'doctorName': slot.doctor.display_name if slot.doctor else None,
        'createdAt': slot.created_at.isoformat() if slot.created_at else None,
        'updatedAt': slot.updated_at.isoformat() if slot.updated_at else None,
    }
