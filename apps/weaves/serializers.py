"""
Serializers for the weave discovery API.
"""

from rest_framework import serializers

from apps.plexus.models import Repo
from .models import DiscoveryRun, DiscoveryRunEvent, Weave


class RepoMinimalSerializer(serializers.ModelSerializer):
    """Minimal repo info for embedding in weaves."""

    class Meta:
        model = Repo
        fields = ['id', 'name', 'full_name']
        read_only_fields = fields


class DiscoveryRunSerializer(serializers.ModelSerializer):
    """Run status as shown by the status and run endpoints."""

    plexus_id = serializers.UUIDField(read_only=True)
    resumed_from_id = serializers.UUIDField(read_only=True, allow_null=True)
    progress_percent = serializers.FloatField(read_only=True)
    duration_seconds = serializers.FloatField(read_only=True, allow_null=True)
    cancel_requested = serializers.SerializerMethodField()

    class Meta:
        model = DiscoveryRun
        fields = [
            'id',
            'plexus_id',
            'status',
            'triggered_by',
            'started_at',
            'completed_at',
            'duration_seconds',
            'repo_pairs_total',
            'repo_pairs_checked',
            'weaves_found',
            'pairs_skipped',
            'progress_percent',
            'resumed_from_id',
            'recovery_attempts',
            'cancel_requested',
            'task_id',
            'error_code',
            'error_message',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_cancel_requested(self, obj):
        return obj.cancel_requested_at is not None


class DiscoveryRunEventSerializer(serializers.ModelSerializer):

    class Meta:
        model = DiscoveryRunEvent
        fields = ['id', 'event_type', 'severity', 'message', 'pair_index', 'details', 'created_at']
        read_only_fields = fields


class WeaveSerializer(serializers.ModelSerializer):

    source_repo = RepoMinimalSerializer(read_only=True)
    target_repo = RepoMinimalSerializer(read_only=True)
    discovery_run_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Weave
        fields = [
            'id',
            'discovery_run_id',
            'source_repo',
            'target_repo',
            'type',
            'score',
            'title',
            'description',
            'metadata',
            'created_at',
        ]
        read_only_fields = fields


class RunTriggerSerializer(serializers.Serializer):
    """Body of POST /api/plexus/<id>/weaves/run/."""

    fresh = serializers.BooleanField(
        required=False,
        default=False,
        help_text='Start from zero instead of continuing a failed or cancelled run'
    )
    score_threshold = serializers.FloatField(
        required=False,
        min_value=0.0,
        max_value=1.0,
        help_text='Override the persistence threshold for this run'
    )


class ResetSerializer(serializers.Serializer):
    """Body of POST /api/plexus/<id>/reset/."""

    cancel_wait = serializers.FloatField(
        required=False,
        default=0,
        min_value=0,
        max_value=300,
        help_text='Cancel an active run and wait up to this many seconds before resetting'
    )
