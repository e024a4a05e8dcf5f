"""
Models for the attendance session scheduler.

- Occasion stores a named, possibly recurring event template with its rule
  kept as RRULE text
- AttendanceSession stores every concrete dated session created under an
  occasion
"""

from django.db import models
from django.core.exceptions import ValidationError
from django.utils import timezone

from .managers import OccasionManager, AttendanceSessionManager
from .recurrence import format_recurrence_rule, parse_rrule
from .types import DEFAULT_MARKING_MODES, OccasionInfo


def default_marking_modes():
    return dict(DEFAULT_MARKING_MODES)


class Occasion(models.Model):
    """
    A named event template such as "Sunday Service".

    ``recurrence_rule`` holds RRULE text (e.g. "FREQ=WEEKLY;BYDAY=SU"); blank
    means a one-off occasion. The rule is anchored on ``recurrence_start``,
    falling back to the creation date.
    """

    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')

    recurrence_rule = models.TextField(
        blank=True,
        default='',
        help_text="RRULE text, blank for one-off occasions"
    )
    recurrence_start = models.DateField(
        null=True,
        blank=True,
        help_text="Date the recurrence counts from (defaults to creation date)"
    )
    default_duration_minutes = models.PositiveIntegerField(null=True, blank=True)

    is_active = models.BooleanField(
        default=True,
        help_text="Whether sessions can still be created for this occasion"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OccasionManager()

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['is_active']),
        ]

    def __str__(self):
        if self.is_recurring:
            return f"{self.name} ({format_recurrence_rule(self.recurrence_rule)})"
        return self.name

    @property
    def is_recurring(self):
        return bool(self.recurrence_rule.strip())

    @property
    def recurrence_label(self):
        """Human-readable recurrence, e.g. "Weekly on Sundays"."""
        return format_recurrence_rule(self.recurrence_rule)

    @property
    def anchor_date(self):
        if self.recurrence_start:
            return self.recurrence_start
        if self.created_at:
            return timezone.localdate(self.created_at)
        return None

    def get_recurrence_rule(self):
        """
        Parsed recurrence rule, or None for one-off occasions.

        Raises:
            ValueError: If the stored rule cannot be parsed
        """
        if not self.is_recurring:
            return None
        return parse_rrule(self.recurrence_rule, start_reference=self.anchor_date)

    def to_info(self):
        return OccasionInfo(id=self.pk, name=self.name, rule=self.get_recurrence_rule())

    def clean(self):
        """Validate occasion data."""
        super().clean()

        if self.is_recurring:
            # Unsaved occasions have no created_at yet; today stands in for it.
            anchor = self.anchor_date or timezone.localdate()
            try:
                parse_rrule(self.recurrence_rule, start_reference=anchor)
            except ValueError as exc:
                raise ValidationError({'recurrence_rule': str(exc)})

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class AttendanceSession(models.Model):
    """A dated, timed session of an occasion at which attendance is taken."""

    occasion = models.ForeignKey(
        Occasion,
        on_delete=models.CASCADE,
        related_name='sessions'
    )
    name = models.CharField(max_length=100, blank=True, default='')

    start_time = models.DateTimeField()
    end_time = models.DateTimeField()

    is_open = models.BooleanField(default=False)
    allow_public_marking = models.BooleanField(default=False)
    proximity_required = models.BooleanField(default=False)
    location = models.JSONField(
        null=True,
        blank=True,
        help_text='{"lat": ..., "lng": ..., "radius": ...}'
    )

    allowed_tags = models.JSONField(null=True, blank=True)
    allowed_groups = models.JSONField(null=True, blank=True)
    allowed_members = models.JSONField(null=True, blank=True)
    marking_modes = models.JSONField(default=default_marking_modes)

    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AttendanceSessionManager()

    class Meta:
        ordering = ['start_time']
        indexes = [
            models.Index(fields=['occasion', 'start_time']),
            models.Index(fields=['start_time', 'end_time']),
            models.Index(fields=['is_deleted']),
        ]

    def __str__(self):
        return f"{self.name or self.occasion.name} - {self.start_time.strftime('%Y-%m-%d %H:%M')}"

    @property
    def duration_minutes(self):
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def clean(self):
        """Validate session data."""
        super().clean()

        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValidationError({
                'end_time': 'End time must be after start time.'
            })

        if self.proximity_required and not self.location:
            raise ValidationError({
                'location': 'Location is required when proximity checking is enabled.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)
