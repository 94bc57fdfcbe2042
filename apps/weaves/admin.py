"""
Admin interface for discovery runs and weaves.
"""

from django.contrib import admin
from django.utils.html import format_html

from .models import DiscoveryRun, DiscoveryRunEvent, Weave


class DiscoveryRunEventInline(admin.TabularInline):
    model = DiscoveryRunEvent
    extra = 0
    can_delete = False
    fields = ['created_at', 'event_type', 'severity', 'pair_index', 'message']
    readonly_fields = fields
    ordering = ['created_at']


@admin.register(DiscoveryRun)
class DiscoveryRunAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'plexus',
        'status_badge',
        'triggered_by',
        'progress_display',
        'weaves_found',
        'pairs_skipped',
        'created_at',
    ]
    list_filter = ['status', 'triggered_by', 'plexus']
    search_fields = ['id', 'plexus__name', 'task_id']
    inlines = [DiscoveryRunEventInline]

    readonly_fields = [
        'id',
        'plexus',
        'status',
        'started_at',
        'completed_at',
        'repo_pairs_total',
        'repo_pairs_checked',
        'weaves_found',
        'pairs_skipped',
        'repo_ids',
        'pair_cursor',
        'pairs_ahead',
        'resumed_from',
        'cancel_requested_at',
        'lease_owner',
        'lease_expires_at',
        'recovery_attempts',
        'triggered_by',
        'task_id',
        'error_code',
        'error_message',
        'config',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('Run', {
            'fields': ('id', 'plexus', 'status', 'triggered_by', 'task_id', 'resumed_from')
        }),
        ('Progress', {
            'fields': (
                'repo_pairs_total',
                'repo_pairs_checked',
                'weaves_found',
                'pairs_skipped',
                'pair_cursor',
                'pairs_ahead',
            )
        }),
        ('Ownership', {
            'fields': ('lease_owner', 'lease_expires_at', 'recovery_attempts', 'cancel_requested_at'),
            'classes': ('collapse',),
        }),
        ('Result', {
            'fields': ('started_at', 'completed_at', 'error_code', 'error_message')
        }),
        ('Snapshot', {
            'fields': ('repo_ids', 'config'),
            'classes': ('collapse',),
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def has_add_permission(self, request):
        return False

    def status_badge(self, obj):
        colors = {
            'pending': '#6c757d',
            'running': '#0d6efd',
            'completed': '#198754',
            'failed': '#dc3545',
            'cancelled': '#fd7e14',
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            colors.get(obj.status, '#000'),
            obj.get_status_display(),
        )
    status_badge.short_description = 'Status'

    def progress_display(self, obj):
        return f"{obj.repo_pairs_checked}/{obj.repo_pairs_total} ({obj.progress_percent}%)"
    progress_display.short_description = 'Progress'


@admin.register(Weave)
class WeaveAdmin(admin.ModelAdmin):
    list_display = ['source_repo', 'target_repo', 'type', 'score', 'plexus', 'created_at']
    list_filter = ['type', 'plexus']
    search_fields = ['title', 'source_repo__name', 'target_repo__name']
    readonly_fields = [
        'id', 'plexus', 'discovery_run', 'source_repo', 'target_repo', 'type',
        'score', 'title', 'description', 'metadata', 'created_at', 'updated_at',
    ]

    def has_add_permission(self, request):
        return False
