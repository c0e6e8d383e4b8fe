"""
Booking endpoints.

Patients request bookings for themselves, list only their own bookings and
may cancel them; every other transition is for clinic staff.  Write
endpoints share the ``booking_write`` rate limit.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsStaffRole
from ..serializers.bookings import (
    BookingCreateSerializer,
    BookingListQuerySerializer,
    BookingRescheduleSerializer,
    BookingTransitionSerializer,
)
from ..services import bookings as booking_service
from ..services import queries
from ..session import Actor
from ..throttling import BookingWriteRateThrottle


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingWriteRateThrottle])
def booking_collection(request):
    actor = Actor.from_request(request)
    if request.method == 'GET':
        q = BookingListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        items, pagination = queries.list_bookings(q.validated_data, actor)
        return Response({
            'success': True,
            'data': [booking_service.serialize_booking(b) for b in items],
            'pagination': pagination,
        })

    s = BookingCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    booking = booking_service.request_booking(
        actor, vd['slotId'], patient_id=vd.get('patientId'), reason=vd.get('reason', '')
    )
    return Response(
        {'success': True, 'data': booking_service.serialize_booking(booking, with_history=True)},
        status=status.HTTP_201_CREATED,
    )


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingWriteRateThrottle])
def booking_detail(request, booking_id: int):
    """Booking detail including its transition history; ``DELETE`` is staff only."""
    actor = Actor.from_request(request)
    if request.method == 'DELETE':
        booking_service.delete_booking(actor, booking_id)
        return Response({'success': True, 'data': {'id': booking_id, 'deleted': True}})

    booking = booking_service.get_booking(booking_id)
    booking_service.ensure_can_view(actor, booking)
    return Response({'success': True, 'data': booking_service.serialize_booking(booking, with_history=True)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([BookingWriteRateThrottle])
def booking_transition(request, booking_id: int):
    s = BookingTransitionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    booking = booking_service.transition(
        Actor.from_request(request),
        booking_id,
        s.validated_data['event'],
        reason=s.validated_data.get('reason', ''),
    )
    return Response({'success': True, 'data': booking_service.serialize_booking(booking, with_history=True)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
@throttle_classes([BookingWriteRateThrottle])
def booking_reschedule(request, booking_id: int):
    s = BookingRescheduleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    booking = booking_service.reschedule_booking(Actor.from_request(request), booking_id, s.validated_data['slotId'])
    return Response({'success': True, 'data': booking_service.serialize_booking(booking, with_history=True)})
