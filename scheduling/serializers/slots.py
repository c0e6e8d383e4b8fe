from rest_framework import serializers


class SlotCreateSerializer(serializers.Serializer):
    date = serializers.DateField()
    startHour = serializers.IntegerField(min_value=0, max_value=23)
    endHour = serializers.IntegerField(min_value=0, max_value=23)
    location = serializers.CharField(max_length=255)
    capacity = serializers.IntegerField(min_value=1)
    doctorId = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate(self, attrs):
        if attrs['startHour'] >= attrs['endHour']:
            raise serializers.ValidationError({'endHour': 'must be after startHour'})
        return attrs


class SlotUpdateSerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    startHour = serializers.IntegerField(min_value=0, max_value=23, required=False)
    endHour = serializers.IntegerField(min_value=0, max_value=23, required=False)
    location = serializers.CharField(max_length=255, required=False)
    capacity = serializers.IntegerField(min_value=1, required=False)

    FIELD_MAP = {
        'date': 'date',
        'startHour': 'start_hour',
        'endHour': 'end_hour',
        'location': 'location',
        'capacity': 'capacity',
    }

    def to_patch(self) -> dict:
        return {self.FIELD_MAP[k]: v for k, v in self.validated_data.items()}


class SlotListQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    location = serializers.CharField(max_length=255, required=False)
    search = serializers.CharField(max_length=64, required=False)
    doctorId = serializers.IntegerField(min_value=1, required=False)
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, required=False)


class SlotRescheduleSerializer(serializers.Serializer):
    fromSlotId = serializers.IntegerField(min_value=1)
    toSlotId = serializers.IntegerField(min_value=1)
