import pytest
from django.db import DatabaseError

from scheduling.exceptions import (
    CapacityError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from scheduling.models import Booking, BookingTransition, Slot
from scheduling.services import bookings, notify
from scheduling.session import Actor

pytestmark = pytest.mark.django_db

ALL_STATUSES = [s for s, _ in Booking.STATUS_CHOICES]


def _force_status(booking, status, slot_booked=None):
    Booking.objects.filter(id=booking.id).update(status=status)
    if slot_booked is not None:
        Slot.objects.filter(id=booking.slot_id).update(booked_count=slot_booked)
    booking.refresh_from_db()
    return booking


def test_request_booking_is_pending_and_takes_no_capacity(patient_actor, patient, make_slot):
    slot = make_slot()
    b = bookings.request_booking(patient_actor, slot.id, reason='<b>checkup</b>')
    assert b.status == Booking.STATUS_PENDING
    assert b.patient_id == patient.id
    assert b.reason == 'checkup'
    slot.refresh_from_db()
    assert slot.booked_count == 0
    t = BookingTransition.objects.get(booking=b)
    assert (t.from_status, t.event, t.to_status) == (None, 'request', 'Pending')


def test_patient_cannot_book_for_someone_else(patient_actor, other_patient, make_slot):
    slot = make_slot()
    with pytest.raises(PermissionDeniedError):
        bookings.request_booking(patient_actor, slot.id, patient_id=other_patient.id)


def test_staff_must_name_patient(staff, make_slot):
    slot = make_slot()
    with pytest.raises(ValidationError):
        bookings.request_booking(staff, slot.id)


@pytest.mark.parametrize('raw', ['abc', '', [1]])
def test_non_integer_patient_id_is_validation_error(patient_actor, staff, make_slot, raw):
    slot = make_slot()
    with pytest.raises(ValidationError):
        bookings.request_booking(patient_actor, slot.id, patient_id=raw)
    with pytest.raises(ValidationError):
        bookings.request_booking(staff, slot.id, patient_id=raw)
    assert not Booking.objects.exists()


def test_request_unknown_slot_or_patient(staff, patient, doctor, make_slot):
    with pytest.raises(NotFoundError):
        bookings.request_booking(staff, 424242, patient_id=patient.id)
    slot = make_slot()
    with pytest.raises(NotFoundError):
        bookings.request_booking(staff, slot.id, patient_id=doctor.id)


def test_duplicate_active_booking_conflicts(patient_actor, staff, make_slot):
    slot = make_slot()
    first = bookings.request_booking(patient_actor, slot.id)
    with pytest.raises(ConflictError):
        bookings.request_booking(patient_actor, slot.id)
    bookings.transition(staff, first.id, 'reject')
    again = bookings.request_booking(patient_actor, slot.id)
    assert again.status == Booking.STATUS_PENDING


@pytest.mark.parametrize('status', ALL_STATUSES)
@pytest.mark.parametrize('event', list(bookings.EVENTS))
def test_transition_table(staff, patient, make_slot, status, event):
    slot = make_slot(capacity=2)
    b = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    held = 1 if status in Booking.CAPACITY_STATUSES else 0
    _force_status(b, status, slot_booked=held)

    step = bookings.TRANSITIONS.get((status, event))
    if step is None:
        with pytest.raises(InvalidTransitionError):
            bookings.transition(staff, b.id, event)
        b.refresh_from_db()
        assert b.status == status
        slot.refresh_from_db()
        assert slot.booked_count == held
        return

    result = bookings.transition(staff, b.id, event)
    assert result.status == step.to_status
    slot.refresh_from_db()
    expected = held + {bookings.RESERVE: 1, bookings.RELEASE: -1, None: 0}[step.capacity_effect]
    assert slot.booked_count == expected
    assert result.transitions.filter(event=event, from_status=status, to_status=step.to_status).exists()


def test_unknown_event_is_validation_error(staff, patient, make_slot):
    b = bookings.request_booking(staff, make_slot().id, patient_id=patient.id)
    with pytest.raises(ValidationError):
        bookings.transition(staff, b.id, 'teleport')


def test_accept_two_pending_on_single_capacity_slot(staff, patient, other_patient, make_slot):
    slot = make_slot(capacity=1)
    b1 = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    b2 = bookings.request_booking(staff, slot.id, patient_id=other_patient.id)

    bookings.transition(staff, b1.id, 'accept')
    with pytest.raises(CapacityError):
        bookings.transition(staff, b2.id, 'accept')

    slot.refresh_from_db()
    b2.refresh_from_db()
    assert slot.booked_count == 1
    assert b2.status == Booking.STATUS_PENDING


def test_cancel_accepted_frees_place_for_next_booking(staff, patient, other_patient, make_slot):
    slot = make_slot(capacity=1)
    b1 = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    b2 = bookings.request_booking(staff, slot.id, patient_id=other_patient.id)
    bookings.transition(staff, b1.id, 'accept')

    bookings.transition(staff, b1.id, 'cancel')
    slot.refresh_from_db()
    assert slot.booked_count == 0

    bookings.transition(staff, b2.id, 'accept')
    slot.refresh_from_db()
    assert slot.booked_count == 1


def test_patient_may_only_cancel_own_booking(staff, patient, other_patient, make_slot):
    slot = make_slot(capacity=2)
    mine = bookings.request_booking(Actor.from_user(patient), slot.id)
    theirs = bookings.request_booking(Actor.from_user(other_patient), slot.id)
    actor = Actor.from_user(patient)

    with pytest.raises(PermissionDeniedError):
        bookings.transition(actor, mine.id, 'accept')
    with pytest.raises(PermissionDeniedError):
        bookings.transition(actor, theirs.id, 'cancel')

    cancelled = bookings.transition(actor, mine.id, 'cancel')
    assert cancelled.status == Booking.STATUS_REJECTED
    slot.refresh_from_db()
    assert slot.booked_count == 0


def test_storage_failure_during_accept_rolls_back(staff, patient, make_slot, monkeypatch):
    slot = make_slot()
    b = bookings.request_booking(staff, slot.id, patient_id=patient.id)

    def boom(**kwargs):
        raise DatabaseError('disk full')

    monkeypatch.setattr(bookings, 'log_action', boom)
    with pytest.raises(StorageError):
        bookings.transition(staff, b.id, 'accept')

    b.refresh_from_db()
    slot.refresh_from_db()
    assert b.status == Booking.STATUS_PENDING
    assert slot.booked_count == 0
    assert not b.transitions.filter(event='accept').exists()


@pytest.mark.parametrize('status,released', [
    (Booking.STATUS_PENDING, 0),
    (Booking.STATUS_ACCEPTED, 1),
    (Booking.STATUS_CHECKED_IN, 1),
    (Booking.STATUS_COMPLETED, 1),
    (Booking.STATUS_REJECTED, 0),
])
def test_delete_booking_releases_capacity_holders(staff, patient, make_slot, status, released):
    slot = make_slot(capacity=2)
    b = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    _force_status(b, status, slot_booked=released)

    bookings.delete_booking(staff, b.id)
    slot.refresh_from_db()
    assert slot.booked_count == 0
    assert not Booking.objects.filter(id=b.id).exists()


def test_patient_cannot_delete_booking(patient_actor, make_slot):
    b = bookings.request_booking(patient_actor, make_slot().id)
    with pytest.raises(PermissionDeniedError):
        bookings.delete_booking(patient_actor, b.id)


def test_reschedule_accepted_booking_moves_capacity(staff, patient, make_slot):
    old = make_slot(start_hour=9, end_hour=10)
    new = make_slot(start_hour=10, end_hour=11)
    b = bookings.request_booking(staff, old.id, patient_id=patient.id)
    bookings.transition(staff, b.id, 'accept')

    moved = bookings.reschedule_booking(staff, b.id, new.id)
    assert moved.slot_id == new.id
    assert moved.status == Booking.STATUS_ACCEPTED
    old.refresh_from_db()
    new.refresh_from_db()
    assert (old.booked_count, new.booked_count) == (0, 1)


def test_reschedule_into_full_slot_keeps_original(staff, patient, other_patient, make_slot):
    old = make_slot(start_hour=9, end_hour=10)
    full = make_slot(start_hour=10, end_hour=11)
    b = bookings.request_booking(staff, old.id, patient_id=patient.id)
    bookings.transition(staff, b.id, 'accept')
    blocker = bookings.request_booking(staff, full.id, patient_id=other_patient.id)
    bookings.transition(staff, blocker.id, 'accept')

    with pytest.raises(CapacityError):
        bookings.reschedule_booking(staff, b.id, full.id)
    b.refresh_from_db()
    old.refresh_from_db()
    assert b.slot_id == old.id
    assert old.booked_count == 1


def test_reschedule_rejects_finished_bookings(staff, patient, make_slot):
    old = make_slot(start_hour=9, end_hour=10)
    new = make_slot(start_hour=10, end_hour=11)
    b = bookings.request_booking(staff, old.id, patient_id=patient.id)
    bookings.transition(staff, b.id, 'reject')
    with pytest.raises(InvalidTransitionError):
        bookings.reschedule_booking(staff, b.id, new.id)


def test_reschedule_slot_bookings_is_all_or_nothing(staff, patient, other_patient, make_slot):
    source = make_slot(start_hour=9, end_hour=10, capacity=2)
    target = make_slot(start_hour=10, end_hour=11, capacity=1)
    b1 = bookings.request_booking(staff, source.id, patient_id=patient.id)
    b2 = bookings.request_booking(staff, source.id, patient_id=other_patient.id)
    bookings.transition(staff, b1.id, 'accept')
    bookings.transition(staff, b2.id, 'accept')

    with pytest.raises(CapacityError):
        bookings.reschedule_slot_bookings(staff, source.id, target.id)
    source.refresh_from_db()
    target.refresh_from_db()
    assert (source.booked_count, target.booked_count) == (2, 0)
    assert Booking.objects.filter(slot=source).count() == 2

    Slot.objects.filter(id=target.id).update(capacity=5)
    moved = bookings.reschedule_slot_bookings(staff, source.id, target.id)
    assert {b.id for b in moved} == {b1.id, b2.id}
    target.refresh_from_db()
    assert target.booked_count == 2


def test_query_bookings_filters(staff, patient, other_patient, make_slot, day):
    s1 = make_slot(start_hour=9, end_hour=10, capacity=3)
    s2 = make_slot(start_hour=9, end_hour=10, capacity=3, date=day.replace(day=20))
    b1 = bookings.request_booking(staff, s1.id, patient_id=patient.id)
    bookings.request_booking(staff, s1.id, patient_id=other_patient.id)
    bookings.request_booking(staff, s2.id, patient_id=patient.id)
    bookings.transition(staff, b1.id, 'accept')

    pending = bookings.query_bookings({'status': 'Pending'})
    assert pending.count() == 2
    assert all(b.status == 'Pending' for b in pending)
    assert bookings.query_bookings({'search': 'SMITH'}).count() == 2
    assert bookings.query_bookings({'date_range': (day, day)}).count() == 2
    assert bookings.query_bookings({'date_range': (day.replace(day=15), None)}).count() == 1
    assert bookings.query_bookings({'slot_id': s1.id, 'patient_id': patient.id}).get().id == b1.id


def test_query_bookings_search_matches_full_name(staff, patient, other_patient, make_slot):
    slot = make_slot(capacity=2)
    mine = bookings.request_booking(staff, slot.id, patient_id=patient.id)
    bookings.request_booking(staff, slot.id, patient_id=other_patient.id)
    assert [b.id for b in bookings.query_bookings({'search': 'alice smith'})] == [mine.id]
    assert not bookings.query_bookings({'search': 'Alice Jones'}).exists()


def test_serialize_booking_includes_history(staff, patient, make_slot):
    b = bookings.request_booking(staff, make_slot().id, patient_id=patient.id)
    b = bookings.transition(staff, b.id, 'accept', reason='ok')
    data = bookings.serialize_booking(b, with_history=True)
    assert data['status'] == 'Accepted'
    assert data['allowedEvents'] == ['checkIn', 'cancel']
    assert [h['event'] for h in data['transitionHistory']] == ['request', 'accept']
    assert data['slot']['bookedCount'] == 1


def test_changes_are_published_after_commit(staff, patient, make_slot, monkeypatch, django_capture_on_commit_callbacks):
    sent = []

    class FakeLayer:
        async def group_send(self, group, event):
            sent.append((group, event))

    monkeypatch.setattr(notify, 'get_channel_layer', lambda: FakeLayer())
    slot = make_slot()
    with django_capture_on_commit_callbacks(execute=True):
        bookings.request_booking(staff, slot.id, patient_id=patient.id)

    assert len(sent) == 1
    group, event = sent[0]
    assert group == notify.GROUP
    assert event['type'] == 'schedule.changed'
    assert event['kind'] == 'booking.requested'
    assert event['slotId'] == slot.id
