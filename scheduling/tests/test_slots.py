import pytest

from scheduling.exceptions import (
    CapacityError,
    ConflictError,
    InvariantError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from scheduling.models import AuditEvent, Booking, Slot
from scheduling.services import bookings, slots

pytestmark = pytest.mark.django_db


def test_create_slot_defaults_doctor_to_acting_doctor(staff, doctor, make_slot):
    slot = make_slot(capacity=3)
    assert slot.doctor_id == doctor.id
    assert slot.booked_count == 0
    assert AuditEvent.objects.filter(action='slot_create', object_id=slot.id).exists()


def test_create_slot_rejects_reversed_hours(staff, day):
    with pytest.raises(ValidationError):
        slots.create_slot(staff, date=day, start_hour=14, end_hour=10, location='Room A', capacity=1)
    assert not Slot.objects.exists()


@pytest.mark.parametrize('capacity', [0, -2])
def test_create_slot_rejects_non_positive_capacity(staff, day, capacity):
    with pytest.raises(ValidationError):
        slots.create_slot(staff, date=day, start_hour=9, end_hour=10, location='Room A', capacity=capacity)


def test_create_slot_rejects_hours_out_of_day(staff, day):
    with pytest.raises(ValidationError):
        slots.create_slot(staff, date=day, start_hour=20, end_hour=24, location='Room A', capacity=1)


def test_overlapping_slot_conflicts(make_slot):
    make_slot(start_hour=9, end_hour=11)
    with pytest.raises(ConflictError):
        make_slot(start_hour=10, end_hour=12)
    # location comparison ignores case
    with pytest.raises(ConflictError):
        make_slot(start_hour=9, end_hour=10, location='room a')


def test_adjacent_and_other_location_slots_are_allowed(make_slot):
    make_slot(start_hour=9, end_hour=11)
    make_slot(start_hour=11, end_hour=12)
    make_slot(start_hour=9, end_hour=11, location='Room B')
    assert Slot.objects.count() == 3


def test_patient_cannot_create_slot(patient_actor, day):
    with pytest.raises(PermissionDeniedError):
        slots.create_slot(patient_actor, date=day, start_hour=9, end_hour=10, location='Room A', capacity=1)


def test_reserve_until_full_then_capacity_error(make_slot):
    slot = make_slot(capacity=2)
    slots.reserve(slot.id)
    slots.reserve(slot.id)
    with pytest.raises(CapacityError):
        slots.reserve(slot.id)
    slot.refresh_from_db()
    assert slot.booked_count == 2


def test_reserve_from_stale_reads_cannot_overbook(make_slot):
    slot = make_slot(capacity=1)
    first = Slot.objects.get(id=slot.id)
    second = Slot.objects.get(id=slot.id)
    # both callers saw a free place
    assert not first.is_full and not second.is_full
    slots.reserve(first.id)
    with pytest.raises(CapacityError):
        slots.reserve(second.id)
    second.save()
    slot.refresh_from_db()
    assert slot.booked_count == 1


def test_release_on_empty_slot_is_invariant_error(make_slot):
    slot = make_slot()
    with pytest.raises(InvariantError):
        slots.release(slot.id)
    slot.refresh_from_db()
    assert slot.booked_count == 0


def test_reserve_release_sequence_stays_within_bounds(make_slot):
    slot = make_slot(capacity=3)
    for op in ['r', 'r', 'l', 'r', 'r', 'r', 'l', 'l', 'l', 'l', 'r']:
        try:
            if op == 'r':
                slots.reserve(slot.id)
            else:
                slots.release(slot.id)
        except (CapacityError, InvariantError):
            pass
        slot.refresh_from_db()
        assert 0 <= slot.booked_count <= slot.capacity


def test_reserve_unknown_slot(db):
    with pytest.raises(NotFoundError):
        slots.reserve(999999)


def test_save_never_writes_booked_count(make_slot):
    slot = make_slot(capacity=2)
    slots.reserve(slot.id)
    stale = Slot.objects.get(id=slot.id)
    slots.reserve(slot.id)
    stale.location = 'Room Z'
    stale.save()
    slot.refresh_from_db()
    assert slot.booked_count == 2
    assert slot.location == 'Room Z'


def test_update_slot_cannot_shrink_below_booked(staff, make_slot):
    slot = make_slot(capacity=2)
    slots.reserve(slot.id)
    slots.reserve(slot.id)
    with pytest.raises(CapacityError):
        slots.update_slot(staff, slot.id, {'capacity': 1})
    updated = slots.update_slot(staff, slot.id, {'capacity': 4, 'location': 'Room C'})
    assert updated.capacity == 4
    assert updated.booked_count == 2


def test_update_slot_checks_overlap_and_fields(staff, make_slot):
    make_slot(start_hour=9, end_hour=10)
    other = make_slot(start_hour=12, end_hour=13)
    with pytest.raises(ConflictError):
        slots.update_slot(staff, other.id, {'start_hour': 9, 'end_hour': 11})
    with pytest.raises(ValidationError):
        slots.update_slot(staff, other.id, {'booked_count': 0})


def test_delete_slot_with_confirmed_bookings_requires_force(staff, patient, make_slot):
    slot = make_slot(capacity=2)
    b = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    bookings.transition(staff, b.id, 'accept')
    with pytest.raises(ConflictError):
        slots.delete_slot(staff, slot.id)
    assert Slot.objects.filter(id=slot.id).exists()

    slots.delete_slot(staff, slot.id, force=True)
    assert not Slot.objects.filter(id=slot.id).exists()
    assert not Booking.objects.filter(id=b.id).exists()
    event = AuditEvent.objects.get(action='slot_delete', object_id=slot.id)
    assert event.detail['released'] == 1


def test_delete_slot_with_only_pending_bookings(staff, patient, make_slot):
    slot = make_slot()
    bookings.request_booking(staff, slot.id, patient_id=patient.id)
    slots.delete_slot(staff, slot.id)
    assert not Booking.objects.exists()


def test_query_slots_filters(staff, doctor, make_slot, day):
    make_slot(start_hour=9, end_hour=10, location='Room A')
    make_slot(start_hour=9, end_hour=10, location='Room B')
    make_slot(start_hour=9, end_hour=10, location='Room A', date=day.replace(day=15))
    assert slots.query_slots({'date': day}).count() == 2
    assert slots.query_slots({'location': 'room a'}).count() == 2
    assert slots.query_slots({'search': 'house'}).count() == 3
    assert slots.query_slots({'doctor_id': doctor.id, 'location': 'Room B'}).count() == 1
