from rest_framework import serializers

from ..models import Booking
from ..services.bookings import EVENTS


class BookingCreateSerializer(serializers.Serializer):
    slotId = serializers.IntegerField(min_value=1)
    patientId = serializers.IntegerField(min_value=1, required=False)
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True)


class BookingTransitionSerializer(serializers.Serializer):
    event = serializers.ChoiceField(choices=list(EVENTS))
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class BookingRescheduleSerializer(serializers.Serializer):
    slotId = serializers.IntegerField(min_value=1)


class BookingListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[s for s, _ in Booking.STATUS_CHOICES], required=False)
    search = serializers.CharField(max_length=64, required=False)
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)
    slot = serializers.IntegerField(min_value=1, required=False)
    patientId = serializers.IntegerField(min_value=1, required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, required=False)

    def validate(self, attrs):
        start, end = attrs.get('startDate'), attrs.get('endDate')
        if start and end and start > end:
            raise serializers.ValidationError({'endDate': 'must not be before startDate'})
        return attrs
