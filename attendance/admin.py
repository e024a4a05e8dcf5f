"""
Admin configuration for the attendance app.
"""

from django.contrib import admin
from .models import AttendanceSession, Occasion


@admin.register(Occasion)
class OccasionAdmin(admin.ModelAdmin):
    """Admin interface for Occasion model."""

    list_display = ['name', 'recurrence_label', 'recurrence_start', 'default_duration_minutes', 'is_active']
    list_filter = ['is_active', 'created_at']
    search_fields = ['name', 'description', 'recurrence_rule']

    fieldsets = (
        ('Basic Information', {
            'fields': ('name', 'description', 'is_active')
        }),
        ('Recurrence', {
            'fields': ('recurrence_rule', 'recurrence_start', 'default_duration_minutes')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(AttendanceSession)
class AttendanceSessionAdmin(admin.ModelAdmin):
    """Admin interface for AttendanceSession model."""

    list_display = ['name', 'occasion', 'start_time', 'end_time', 'is_open', 'proximity_required', 'is_deleted']
    list_filter = ['is_open', 'is_deleted', 'proximity_required', 'occasion']
    search_fields = ['name', 'occasion__name']
    date_hierarchy = 'start_time'

    fieldsets = (
        ('Basic Information', {
            'fields': ('occasion', 'name')
        }),
        ('Schedule', {
            'fields': ('start_time', 'end_time')
        }),
        ('Marking', {
            'fields': (
                'is_open', 'allow_public_marking', 'marking_modes',
                'proximity_required', 'location',
            )
        }),
        ('Restrictions', {
            'fields': ('allowed_tags', 'allowed_groups', 'allowed_members'),
            'classes': ('collapse',)
        }),
        ('Status', {
            'fields': ('is_deleted',)
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']
