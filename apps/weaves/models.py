"""
Weave discovery models.

A DiscoveryRun is one execution of the all-pairs comparison for a plexus;
a Weave is one typed, scored relationship found by a run.
"""

from django.db import models
from django.db.models import F, Q

from apps.core.models import BaseModel
from apps.plexus.models import Plexus, Repo


class WeaveType(models.TextChoices):
    """Fixed set of relationship types a comparator may emit."""
    INTEGRATION_OPPORTUNITY = 'INTEGRATION_OPPORTUNITY', 'Integration Opportunity'
    GLOSSARY_ALIGNMENT = 'GLOSSARY_ALIGNMENT', 'Glossary Alignment'
    SHARED_DEPENDENCY = 'SHARED_DEPENDENCY', 'Shared Dependency'
    SIMILAR_DOMAIN = 'SIMILAR_DOMAIN', 'Similar Domain'
    ACTIONABLE_INTEGRATION = 'ACTIONABLE_INTEGRATION', 'Actionable Integration'


class DiscoveryRun(BaseModel):
    """
    One discovery execution scoped to a plexus.

    Counters only move forward and `repo_pairs_checked` never exceeds
    `repo_pairs_total`. A terminal run is never modified again; resubmitting
    after FAILED or CANCELLED creates a continuation run (`resumed_from`)
    that inherits the repo snapshot and the completed-pair bookkeeping.
    """

    STATUS_PENDING = 'pending'
    STATUS_RUNNING = 'running'
    STATUS_COMPLETED = 'completed'
    STATUS_FAILED = 'failed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_RUNNING, 'Running'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_FAILED, 'Failed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_RUNNING)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)

    TRIGGER_CHOICES = [
        ('manual', 'Manual'),
        ('api', 'API'),
        ('scheduled', 'Scheduled'),
        ('recovery', 'Recovery'),
    ]

    plexus = models.ForeignKey(
        Plexus,
        on_delete=models.CASCADE,
        related_name='discovery_runs',
        verbose_name='Plexus',
        help_text='The plexus whose repositories are compared'
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
        verbose_name='Status',
        help_text='Current status of the run'
    )

    started_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Started At',
        help_text='When an orchestrator first picked the run up'
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Completed At',
        help_text='When the run reached a terminal status'
    )

    # Counters
    repo_pairs_total = models.PositiveIntegerField(
        default=0,
        verbose_name='Repo Pairs Total',
        help_text='N*(N-1)/2 over the repo snapshot, fixed at creation'
    )

    repo_pairs_checked = models.PositiveIntegerField(
        default=0,
        verbose_name='Repo Pairs Checked',
        help_text='Pairs processed so far (including skipped pairs)'
    )

    weaves_found = models.PositiveIntegerField(
        default=0,
        verbose_name='Weaves Found',
        help_text='Weaves persisted by this run and its predecessors'
    )

    pairs_skipped = models.PositiveIntegerField(
        default=0,
        verbose_name='Pairs Skipped',
        help_text='Pairs counted as checked after the comparator kept failing'
    )

    # Enumeration snapshot and resume bookkeeping
    repo_ids = models.JSONField(
        default=list,
        blank=True,
        verbose_name='Repo IDs',
        help_text='Sorted repo ids the run is scoped to'
    )

    pair_cursor = models.PositiveIntegerField(
        default=0,
        verbose_name='Pair Cursor',
        help_text='Every pair index below this one has been processed'
    )

    pairs_ahead = models.JSONField(
        default=list,
        blank=True,
        verbose_name='Pairs Ahead',
        help_text='Processed pair indices at or beyond the cursor'
    )

    resumed_from = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='continuations',
        verbose_name='Resumed From',
        help_text='Terminal run whose progress this run continues'
    )

    # Control
    cancel_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Cancel Requested At',
        help_text='Set when a cancellation has been requested'
    )

    lease_owner = models.CharField(
        max_length=255,
        blank=True,
        verbose_name='Lease Owner',
        help_text='Orchestrator instance currently owning the run'
    )

    lease_expires_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name='Lease Expires At',
        help_text='Ownership lapses after this instant unless renewed'
    )

    recovery_attempts = models.PositiveIntegerField(
        default=0,
        verbose_name='Recovery Attempts',
        help_text='Times the run was re-enqueued after its owner disappeared'
    )

    triggered_by = models.CharField(
        max_length=20,
        choices=TRIGGER_CHOICES,
        default='api',
        verbose_name='Triggered By',
        help_text='What submitted the run'
    )

    task_id = models.CharField(
        max_length=255,
        blank=True,
        verbose_name='Task ID',
        help_text='Celery task ID'
    )

    error_code = models.CharField(
        max_length=50,
        blank=True,
        verbose_name='Error Code',
        help_text='Normalized error code if the run failed'
    )

    error_message = models.TextField(
        blank=True,
        verbose_name='Error Message',
        help_text='Error or cancellation detail'
    )

    config = models.JSONField(
        default=dict,
        blank=True,
        verbose_name='Config',
        help_text='Effective discovery settings when the run was created'
    )

    class Meta:
        db_table = 'weave_discovery_runs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['plexus', '-created_at'], name='weave_runs_plexus_created_idx'),
            models.Index(fields=['status', 'lease_expires_at'], name='weave_runs_status_lease_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['plexus'],
                condition=Q(status__in=['pending', 'running']),
                name='weave_runs_one_active_per_plexus',
            ),
            models.CheckConstraint(
                condition=Q(repo_pairs_checked__lte=F('repo_pairs_total')),
                name='weave_runs_checked_lte_total',
            ),
        ]
        verbose_name = 'Discovery Run'
        verbose_name_plural = 'Discovery Runs'

    def __str__(self):
        return f"Discovery {self.plexus_id} - {self.status} ({self.repo_pairs_checked}/{self.repo_pairs_total})"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_finished(self):
        """All pairs accounted for."""
        return self.repo_pairs_checked >= self.repo_pairs_total

    @property
    def progress_percent(self):
        return round(100 * self.repo_pairs_checked / max(self.repo_pairs_total, 1), 2)

    @property
    def duration_seconds(self):
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def lineage_ids(self):
        """Ids of this run and every run it continues, newest first."""
        ids = [self.id]
        seen = {self.id}
        current_id = self.resumed_from_id
        while current_id and current_id not in seen:
            ids.append(current_id)
            seen.add(current_id)
            current_id = (
                DiscoveryRun.objects.filter(id=current_id)
                .values_list('resumed_from_id', flat=True)
                .first()
            )
        return ids


class Weave(BaseModel):
    """
    One detected relationship between two repositories of a plexus.

    The pair is stored in canonical order (smaller repo id first) so (A, B)
    and (B, A) can never both exist. A (pair, type) is stored once per plexus
    and credited to the run that found it first. Rows are never updated after
    insert.
    """

    plexus = models.ForeignKey(
        Plexus,
        on_delete=models.CASCADE,
        related_name='weaves',
        verbose_name='Plexus'
    )

    discovery_run = models.ForeignKey(
        DiscoveryRun,
        on_delete=models.CASCADE,
        related_name='weaves',
        verbose_name='Discovery Run',
        help_text='Run that found this weave'
    )

    source_repo = models.ForeignKey(
        Repo,
        on_delete=models.CASCADE,
        related_name='outgoing_weaves',
        verbose_name='Source Repo'
    )

    target_repo = models.ForeignKey(
        Repo,
        on_delete=models.CASCADE,
        related_name='incoming_weaves',
        verbose_name='Target Repo'
    )

    type = models.CharField(
        max_length=40,
        choices=WeaveType.choices,
        db_index=True,
        verbose_name='Type'
    )

    score = models.FloatField(
        verbose_name='Score',
        help_text='Comparator score, at or above the persistence threshold'
    )

    title = models.CharField(
        max_length=300,
        blank=True,
        verbose_name='Title'
    )

    description = models.TextField(
        blank=True,
        verbose_name='Description'
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        verbose_name='Metadata',
        help_text='Comparator-specific evidence'
    )

    class Meta:
        db_table = 'weaves'
        ordering = ['-score', 'created_at']
        indexes = [
            models.Index(fields=['plexus', 'type'], name='weaves_plexus_type_idx'),
            models.Index(fields=['plexus', '-score'], name='weaves_plexus_score_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['plexus', 'source_repo', 'target_repo', 'type'],
                name='weaves_unique_pair_type',
            ),
        ]
        verbose_name = 'Weave'
        verbose_name_plural = 'Weaves'

    def __str__(self):
        return f"{self.source_repo_id} <-> {self.target_repo_id} [{self.type}] {self.score:.2f}"


class DiscoveryRunEvent(BaseModel):
    """
    Event log entries for a discovery run.

    Skipped pairs, store retries, recoveries and lifecycle milestones end up
    here so operators can see what a run absorbed without failing.
    """

    SEVERITY_CHOICES = [
        ('debug', 'Debug'),
        ('info', 'Info'),
        ('warning', 'Warning'),
        ('error', 'Error'),
    ]

    EVENT_TYPE_CHOICES = [
        ('start', 'Run Started'),
        ('resume', 'Run Resumed'),
        ('pair_skipped', 'Pair Skipped'),
        ('store_retry', 'Store Write Retried'),
        ('cancel_requested', 'Cancel Requested'),
        ('complete', 'Run Completed'),
        ('fail', 'Run Failed'),
        ('cancel', 'Run Cancelled'),
        ('recovered', 'Run Recovered'),
    ]

    run = models.ForeignKey(
        DiscoveryRun,
        on_delete=models.CASCADE,
        related_name='events',
        verbose_name='Discovery Run'
    )

    event_type = models.CharField(
        max_length=30,
        choices=EVENT_TYPE_CHOICES,
        db_index=True,
        verbose_name='Event Type'
    )

    severity = models.CharField(
        max_length=20,
        choices=SEVERITY_CHOICES,
        default='info',
        verbose_name='Severity'
    )

    message = models.TextField(
        verbose_name='Message'
    )

    pair_index = models.PositiveIntegerField(
        null=True,
        blank=True,
        verbose_name='Pair Index',
        help_text='Position in the pair enumeration, for pair-level events'
    )

    details = models.JSONField(
        default=dict,
        blank=True,
        verbose_name='Details',
        help_text='Additional structured data'
    )

    class Meta:
        db_table = 'weave_discovery_run_events'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['run', 'event_type'], name='weave_events_run_type_idx'),
        ]
        verbose_name = 'Discovery Run Event'
        verbose_name_plural = 'Discovery Run Events'

    def __str__(self):
        return f"{self.run_id} - {self.event_type}: {self.message[:50]}"
