"""
Celery configuration for the Symploke engine.

Includes request ID propagation for cross-service tracing and the
worker-start recovery of discovery runs left behind by a crashed worker.
"""

import logging
import os
from celery import Celery
from celery.signals import task_prerun, task_postrun, worker_ready

# Set default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

logger = logging.getLogger(__name__)

app = Celery('symploke')

# Load configuration from Django settings with CELERY namespace
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

# Discovery runs hold a worker slot for a long time; keep them off the default queue
app.conf.task_routes = {
    'apps.weaves.tasks.run_weave_discovery': {'queue': 'weaves'},
}

# Default queue if not specified
app.conf.task_default_queue = 'default'


@task_prerun.connect
def setup_task_request_context(task_id, task, args, kwargs, **signals_kwargs):
    """
    Set up request context at the start of each Celery task.

    Extracts request_id from task headers (if passed via celery_request_id_headers)
    so log lines emitted by the task carry the originating request's ID.
    """
    from apps.core.middleware import setup_celery_request_context

    headers = getattr(task.request, 'headers', None) or {}
    setup_celery_request_context(headers)


@task_postrun.connect
def cleanup_task_request_context(task_id, task, args, kwargs, retval, state, **signals_kwargs):
    """Clean up request context after task completes."""
    from apps.core.middleware import clear_request_context
    clear_request_context()


@worker_ready.connect
def recover_runs_on_worker_start(sender=None, **kwargs):
    """Resume discovery runs whose owner died before they finished."""
    try:
        from apps.weaves.tasks import recover_stuck_runs
        recover_stuck_runs.delay()
    except Exception as e:
        logger.warning(f"Could not queue stuck-run recovery on worker start: {e}")
