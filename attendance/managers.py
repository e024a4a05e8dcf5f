"""
Custom managers and querysets for attendance models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from django.db import models


class OccasionQuerySet(models.QuerySet):
    """Custom queryset for Occasion model with chainable methods."""

    def active(self):
        """Get all active occasions."""
        return self.filter(is_active=True)

    def recurring(self):
        """Get occasions that carry a recurrence rule."""
        return self.exclude(recurrence_rule='')

    def one_off(self):
        """Get occasions without a recurrence rule."""
        return self.filter(recurrence_rule='')


class OccasionManager(models.Manager):
    """Custom manager for Occasion model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return OccasionQuerySet(self.model, using=self._db)

    def active(self):
        return self.get_queryset().active()

    def recurring(self):
        return self.get_queryset().recurring()

    def one_off(self):
        return self.get_queryset().one_off()


class AttendanceSessionQuerySet(models.QuerySet):
    """Custom queryset for AttendanceSession model with chainable methods."""

    def live(self):
        """Get sessions that have not been deleted."""
        return self.filter(is_deleted=False)

    def for_occasion(self, occasion):
        """
        Get sessions of one occasion.

        Args:
            occasion: Occasion instance or primary key
        """
        return self.filter(occasion=occasion)

    def in_range(self, start_datetime, end_datetime):
        """
        Get sessions starting within a datetime range.

        Args:
            start_datetime: datetime object
            end_datetime: datetime object
        """
        return self.filter(
            start_time__gte=start_datetime,
            start_time__lte=end_datetime
        )

    def overlapping(self, start_datetime, end_datetime):
        """
        Get sessions whose time span overlaps [start_datetime, end_datetime).

        Sessions that merely touch the boundaries do not overlap.
        """
        return self.filter(
            start_time__lt=end_datetime,
            end_time__gt=start_datetime
        )


class AttendanceSessionManager(models.Manager):
    """Custom manager for AttendanceSession model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return AttendanceSessionQuerySet(self.model, using=self._db)

    def live(self):
        return self.get_queryset().live()

    def for_occasion(self, occasion):
        return self.get_queryset().for_occasion(occasion)

    def in_range(self, start_datetime, end_datetime):
        return self.get_queryset().in_range(start_datetime, end_datetime)

    def overlapping(self, start_datetime, end_datetime):
        return self.get_queryset().overlapping(start_datetime, end_datetime)
