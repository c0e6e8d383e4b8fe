"""
Slot endpoints.

Any authenticated user may browse slots; creating, editing, deleting and
bulk rescheduling are restricted to clinic staff.  Business rules live in
:mod:`scheduling.services.slots`; these views only validate the payload
shape and wrap results in the response envelope.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsStaffOrReadOnly, IsStaffRole
from ..serializers.slots import (
    SlotCreateSerializer,
    SlotListQuerySerializer,
    SlotRescheduleSerializer,
    SlotUpdateSerializer,
)
from ..services import bookings as booking_service
from ..services import queries
from ..services import slots as slot_service
from ..session import Actor


def _truthy(value) -> bool:
    return str(value or '').lower() in {'1', 'true', 'yes'}


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsStaffOrReadOnly])
def slot_collection(request):
    """List slots (``GET``) or create one (``POST``)."""
    if request.method == 'GET':
        q = SlotListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        items, pagination = queries.list_slots(q.validated_data)
        return Response({
            'success': True,
            'data': [slot_service.serialize_slot(s) for s in items],
            'pagination': pagination,
        })

    s = SlotCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    slot = slot_service.create_slot(
        Actor.from_request(request),
        date=vd['date'],
        start_hour=vd['startHour'],
        end_hour=vd['endHour'],
        location=vd['location'],
        capacity=vd['capacity'],
        doctor_id=vd.get('doctorId'),
    )
    slot = slot_service.get_slot(slot.id)
    return Response({'success': True, 'data': slot_service.serialize_slot(slot)}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, IsStaffOrReadOnly])
def slot_detail(request, slot_id: int):
    """Read, update or delete a single slot.

    ``DELETE`` refuses slots with confirmed bookings unless ``?force=1``
    is given, in which case their capacity is released first.
    """
    actor = Actor.from_request(request)
    if request.method == 'GET':
        slot = slot_service.get_slot(slot_id)
        return Response({'success': True, 'data': slot_service.serialize_slot(slot)})

    if request.method == 'DELETE':
        slot_service.delete_slot(actor, slot_id, force=_truthy(request.query_params.get('force')))
        return Response({'success': True, 'data': {'id': slot_id, 'deleted': True}})

    s = SlotUpdateSerializer(data=request.data, partial=request.method == 'PATCH')
    s.is_valid(raise_exception=True)
    slot_service.update_slot(actor, slot_id, s.to_patch())
    slot = slot_service.get_slot(slot_id)
    return Response({'success': True, 'data': slot_service.serialize_slot(slot)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def slot_reschedule_bookings(request):
    """Move every pending or accepted booking from one slot to another."""
    s = SlotRescheduleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    moved = booking_service.reschedule_slot_bookings(
        Actor.from_request(request), s.validated_data['fromSlotId'], s.validated_data['toSlotId']
    )
    return Response({
        'success': True,
        'data': {
            'moved': len(moved),
            'bookings': [booking_service.serialize_booking(b) for b in moved],
        },
    })
