import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('plexus', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='DiscoveryRun',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('running', 'Running'), ('completed', 'Completed'), ('failed', 'Failed'), ('cancelled', 'Cancelled')], db_index=True, default='pending', help_text='Current status of the run', max_length=20, verbose_name='Status')),
                ('started_at', models.DateTimeField(blank=True, help_text='When an orchestrator first picked the run up', null=True, verbose_name='Started At')),
                ('completed_at', models.DateTimeField(blank=True, help_text='When the run reached a terminal status', null=True, verbose_name='Completed At')),
                ('repo_pairs_total', models.PositiveIntegerField(default=0, help_text='N*(N-1)/2 over the repo snapshot, fixed at creation', verbose_name='Repo Pairs Total')),
                ('repo_pairs_checked', models.PositiveIntegerField(default=0, help_text='Pairs processed so far (including skipped pairs)', verbose_name='Repo Pairs Checked')),
                ('weaves_found', models.PositiveIntegerField(default=0, help_text='Weaves persisted by this run and its predecessors', verbose_name='Weaves Found')),
                ('pairs_skipped', models.PositiveIntegerField(default=0, help_text='Pairs counted as checked after the comparator kept failing', verbose_name='Pairs Skipped')),
                ('repo_ids', models.JSONField(blank=True, default=list, help_text='Sorted repo ids the run is scoped to', verbose_name='Repo IDs')),
                ('pair_cursor', models.PositiveIntegerField(default=0, help_text='Every pair index below this one has been processed', verbose_name='Pair Cursor')),
                ('pairs_ahead', models.JSONField(blank=True, default=list, help_text='Processed pair indices at or beyond the cursor', verbose_name='Pairs Ahead')),
                ('cancel_requested_at', models.DateTimeField(blank=True, help_text='Set when a cancellation has been requested', null=True, verbose_name='Cancel Requested At')),
                ('lease_owner', models.CharField(blank=True, help_text='Orchestrator instance currently owning the run', max_length=255, verbose_name='Lease Owner')),
                ('lease_expires_at', models.DateTimeField(blank=True, help_text='Ownership lapses after this instant unless renewed', null=True, verbose_name='Lease Expires At')),
                ('recovery_attempts', models.PositiveIntegerField(default=0, help_text='Times the run was re-enqueued after its owner disappeared', verbose_name='Recovery Attempts')),
                ('triggered_by', models.CharField(choices=[('manual', 'Manual'), ('api', 'API'), ('scheduled', 'Scheduled'), ('recovery', 'Recovery')], default='api', help_text='What submitted the run', max_length=20, verbose_name='Triggered By')),
                ('task_id', models.CharField(blank=True, help_text='Celery task ID', max_length=255, verbose_name='Task ID')),
                ('error_code', models.CharField(blank=True, help_text='Normalized error code if the run failed', max_length=50, verbose_name='Error Code')),
                ('error_message', models.TextField(blank=True, help_text='Error or cancellation detail', verbose_name='Error Message')),
                ('config', models.JSONField(blank=True, default=dict, help_text='Effective discovery settings when the run was created', verbose_name='Config')),
                ('plexus', models.ForeignKey(help_text='The plexus whose repositories are compared', on_delete=django.db.models.deletion.CASCADE, related_name='discovery_runs', to='plexus.plexus', verbose_name='Plexus')),
                ('resumed_from', models.ForeignKey(blank=True, help_text='Terminal run whose progress this run continues', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='continuations', to='weaves.discoveryrun', verbose_name='Resumed From')),
            ],
            options={
                'verbose_name': 'Discovery Run',
                'verbose_name_plural': 'Discovery Runs',
                'db_table': 'weave_discovery_runs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['plexus', '-created_at'], name='weave_runs_plexus_created_idx'),
                    models.Index(fields=['status', 'lease_expires_at'], name='weave_runs_status_lease_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['pending', 'running'])), fields=('plexus',), name='weave_runs_one_active_per_plexus'),
                    models.CheckConstraint(condition=models.Q(('repo_pairs_checked__lte', models.F('repo_pairs_total'))), name='weave_runs_checked_lte_total'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Weave',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('type', models.CharField(choices=[('INTEGRATION_OPPORTUNITY', 'Integration Opportunity'), ('GLOSSARY_ALIGNMENT', 'Glossary Alignment'), ('SHARED_DEPENDENCY', 'Shared Dependency'), ('SIMILAR_DOMAIN', 'Similar Domain'), ('ACTIONABLE_INTEGRATION', 'Actionable Integration')], db_index=True, max_length=40, verbose_name='Type')),
                ('score', models.FloatField(help_text='Comparator score, at or above the persistence threshold', verbose_name='Score')),
                ('title', models.CharField(blank=True, max_length=300, verbose_name='Title')),
                ('description', models.TextField(blank=True, verbose_name='Description')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Comparator-specific evidence', verbose_name='Metadata')),
                ('discovery_run', models.ForeignKey(help_text='Run that found this weave', on_delete=django.db.models.deletion.CASCADE, related_name='weaves', to='weaves.discoveryrun', verbose_name='Discovery Run')),
                ('plexus', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='weaves', to='plexus.plexus', verbose_name='Plexus')),
                ('source_repo', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='outgoing_weaves', to='plexus.repo', verbose_name='Source Repo')),
                ('target_repo', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='incoming_weaves', to='plexus.repo', verbose_name='Target Repo')),
            ],
            options={
                'verbose_name': 'Weave',
                'verbose_name_plural': 'Weaves',
                'db_table': 'weaves',
                'ordering': ['-score', 'created_at'],
                'indexes': [
                    models.Index(fields=['plexus', 'type'], name='weaves_plexus_type_idx'),
                    models.Index(fields=['plexus', '-score'], name='weaves_plexus_score_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('plexus', 'source_repo', 'target_repo', 'type'), name='weaves_unique_pair_type'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DiscoveryRunEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Unique identifier (UUID)', primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now, editable=False, help_text='Timestamp when record was created', verbose_name='Created At')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when record was last updated', verbose_name='Updated At')),
                ('event_type', models.CharField(choices=[('start', 'Run Started'), ('resume', 'Run Resumed'), ('pair_skipped', 'Pair Skipped'), ('store_retry', 'Store Write Retried'), ('cancel_requested', 'Cancel Requested'), ('complete', 'Run Completed'), ('fail', 'Run Failed'), ('cancel', 'Run Cancelled'), ('recovered', 'Run Recovered')], db_index=True, max_length=30, verbose_name='Event Type')),
                ('severity', models.CharField(choices=[('debug', 'Debug'), ('info', 'Info'), ('warning', 'Warning'), ('error', 'Error')], default='info', max_length=20, verbose_name='Severity')),
                ('message', models.TextField(verbose_name='Message')),
                ('pair_index', models.PositiveIntegerField(blank=True, help_text='Position in the pair enumeration, for pair-level events', null=True, verbose_name='Pair Index')),
                ('details', models.JSONField(blank=True, default=dict, help_text='Additional structured data', verbose_name='Details')),
                ('run', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='weaves.discoveryrun', verbose_name='Discovery Run')),
            ],
            options={
                'verbose_name': 'Discovery Run Event',
                'verbose_name_plural': 'Discovery Run Events',
                'db_table': 'weave_discovery_run_events',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['run', 'event_type'], name='weave_events_run_type_idx'),
                ],
            },
        ),
    ]
