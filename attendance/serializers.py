"""
Serializers for the attendance session scheduler.
"""

from rest_framework import serializers

from .drafts import format_date_label
from .models import AttendanceSession, Occasion
from .ranges import BulkDurationOption
from .recurrence import get_recurrence_badge_text


class OccasionReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Occasion (output)."""

    is_recurring = serializers.BooleanField(read_only=True)
    recurrence_label = serializers.CharField(read_only=True)
    recurrence_badge = serializers.SerializerMethodField()

    class Meta:
        model = Occasion
        fields = [
            'id',
            'name',
            'description',
            'recurrence_rule',
            'recurrence_start',
            'is_recurring',
            'recurrence_label',
            'recurrence_badge',
            'default_duration_minutes',
            'is_active',
            'created_at',
            'updated_at',
        ]

    def get_recurrence_badge(self, obj):
        return get_recurrence_badge_text(obj.recurrence_rule)


class OccasionWriteSerializer(serializers.Serializer):
    """Serializer for creating or updating an Occasion (input)."""

    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    recurrence_rule = serializers.CharField(required=False, allow_blank=True, default='')
    recurrence_start = serializers.DateField(required=False, allow_null=True, default=None)
    default_duration_minutes = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)
    is_active = serializers.BooleanField(required=False, default=True)


class LocationSerializer(serializers.Serializer):
    lat = serializers.FloatField(
        min_value=-90,
        max_value=90,
        error_messages={
            'min_value': 'Latitude must be between -90 and 90',
            'max_value': 'Latitude must be between -90 and 90',
        }
    )
    lng = serializers.FloatField(
        min_value=-180,
        max_value=180,
        error_messages={
            'min_value': 'Longitude must be between -180 and 180',
            'max_value': 'Longitude must be between -180 and 180',
        }
    )
    radius = serializers.FloatField(
        min_value=1,
        max_value=10000,
        required=False,
        allow_null=True,
        error_messages={
            'min_value': 'Radius must be at least 1 meter',
            'max_value': 'Radius cannot exceed 10km',
        }
    )


class SessionPayloadSerializer(serializers.Serializer):
    """Validates one session payload before it is persisted."""

    occasion_id = serializers.IntegerField(
        min_value=1,
        error_messages={'required': 'Please select an occasion', 'null': 'Please select an occasion'}
    )
    name = serializers.CharField(
        max_length=100,
        required=False,
        allow_blank=True,
        default='',
        error_messages={'max_length': 'Session name must be less than 100 characters'}
    )
    start_time = serializers.DateTimeField(
        error_messages={'required': 'Start time is required', 'invalid': 'Please enter a valid start time'}
    )
    end_time = serializers.DateTimeField(
        error_messages={'required': 'End time is required', 'invalid': 'Please enter a valid end time'}
    )
    is_open = serializers.BooleanField(required=False, default=True)
    allow_public_marking = serializers.BooleanField(required=False, default=False)
    proximity_required = serializers.BooleanField(required=False, default=False)
    location = LocationSerializer(required=False, allow_null=True, default=None)
    allowed_tags = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True, default=None)
    allowed_groups = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True, default=None)
    allowed_members = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True, default=None)
    marking_modes = serializers.DictField(child=serializers.BooleanField(), required=False)

    def validate_marking_modes(self, value):
        if not any(value.values()):
            raise serializers.ValidationError('At least one marking mode must be enabled')
        return value

    def validate(self, data):
        """Check the time span and proximity settings."""
        if data['end_time'] <= data['start_time']:
            raise serializers.ValidationError('End time must be after start time')

        if data.get('proximity_required') and not data.get('location'):
            raise serializers.ValidationError('Location is required when proximity checking is enabled')

        return data


class AttendanceSessionReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying AttendanceSession (output)."""

    occasion_name = serializers.CharField(source='occasion.name', read_only=True)
    duration_minutes = serializers.IntegerField(read_only=True)

    class Meta:
        model = AttendanceSession
        fields = [
            'id',
            'occasion',
            'occasion_name',
            'name',
            'start_time',
            'end_time',
            'duration_minutes',
            'is_open',
            'allow_public_marking',
            'proximity_required',
            'location',
            'allowed_tags',
            'allowed_groups',
            'allowed_members',
            'marking_modes',
            'created_at',
            'updated_at',
        ]


class AttendanceSessionUpdateSerializer(serializers.Serializer):
    """Serializer for updating a session."""

    name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    start_time = serializers.DateTimeField(required=False)
    end_time = serializers.DateTimeField(required=False)
    is_open = serializers.BooleanField(required=False)
    allow_public_marking = serializers.BooleanField(required=False)


class DateRangeQuerySerializer(serializers.Serializer):
    """Serializer for date range query parameters."""

    start = serializers.DateTimeField(required=True)
    end = serializers.DateTimeField(required=True)
    occasion = serializers.IntegerField(required=False, min_value=1)

    def validate(self, data):
        """Ensure start is before end."""
        if data['start'] >= data['end']:
            raise serializers.ValidationError(
                "Start datetime must be before end datetime."
            )
        return data


class OccurrenceQuerySerializer(serializers.Serializer):
    """Query parameters for previewing an occasion's occurrences."""

    option = serializers.ChoiceField(
        choices=[option.value for option in BulkDurationOption],
        default=BulkDurationOption.NEXT_4_SESSIONS.value
    )
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)

    def validate(self, data):
        if data['option'] == BulkDurationOption.CUSTOM_RANGE.value:
            if not data.get('start') or not data.get('end'):
                raise serializers.ValidationError('Please select a custom start and end date.')
        return data


class DateMatchQuerySerializer(serializers.Serializer):
    date = serializers.DateField()


class DraftRequestSerializer(serializers.Serializer):
    """Input of one session creation wizard run."""

    occasion = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    mode = serializers.ChoiceField(choices=['single', 'bulk'], default='single')
    date = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    bulk_option = serializers.ChoiceField(
        choices=[option.value for option in BulkDurationOption],
        default=BulkDurationOption.NEXT_1_SESSION.value
    )
    custom_start = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    custom_end = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    manual_dates = serializers.ListField(child=serializers.CharField(), required=False, default=list)

    base_name = serializers.CharField(required=False, allow_blank=True, default='')
    start_time = serializers.TimeField()
    end_time = serializers.TimeField()
    is_open = serializers.BooleanField(required=False, default=True)
    allow_public_marking = serializers.BooleanField(required=False, default=False)
    proximity_required = serializers.BooleanField(required=False, default=False)
    location = LocationSerializer(required=False, allow_null=True, default=None)
    allowed_tags = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    allowed_groups = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    allowed_members = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    marking_modes = serializers.DictField(child=serializers.BooleanField(), required=False)

    commit = serializers.BooleanField(required=False, default=False)


class DraftSessionSerializer(serializers.Serializer):
    """Output of a generated draft session."""

    id = serializers.CharField()
    occasion_id = serializers.IntegerField()
    name = serializers.CharField()
    date = serializers.DateField(source='session_date')
    date_label = serializers.SerializerMethodField()
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    is_open = serializers.BooleanField()
    allow_public_marking = serializers.BooleanField()
    proximity_required = serializers.BooleanField()
    location = serializers.SerializerMethodField()
    allowed_tags = serializers.ListField(child=serializers.CharField(), allow_null=True)
    allowed_groups = serializers.ListField(child=serializers.CharField(), allow_null=True)
    allowed_members = serializers.ListField(child=serializers.CharField(), allow_null=True)
    marking_modes = serializers.DictField()

    def get_date_label(self, obj):
        return format_date_label(obj.session_date)

    def get_location(self, obj):
        return obj.location.to_dict() if obj.location else None
