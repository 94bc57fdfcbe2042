"""
Request ID middleware.

Every API request gets an ID (taken from X-Request-ID when it is a valid
UUID, generated otherwise). The ID is echoed back in the response, attached
to log records through RequestIDFilter, and forwarded to Celery tasks so a
discovery run's log lines can be traced back to the request that submitted it.

    run_weave_discovery.apply_async(
        args=[str(run.id)],
        headers=celery_request_id_headers(),
    )
"""

import uuid
import threading
import logging
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

# Thread-local storage for request context
_request_context = threading.local()


def get_request_id():
    """Current request ID, or None outside a request/task context."""
    return getattr(_request_context, 'request_id', None)


def set_request_context(request_id, user_id=None, path=None):
    _request_context.request_id = request_id
    _request_context.user_id = user_id
    _request_context.path = path


def clear_request_context():
    """Clear request context from thread-local storage."""
    _request_context.request_id = None
    _request_context.user_id = None
    _request_context.path = None


class RequestIDMiddleware(MiddlewareMixin):
    """Attach a request ID to the request, the thread context and the response."""

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    RESPONSE_HEADER = 'X-Request-ID'

    def process_request(self, request):
        request_id = request.META.get(self.REQUEST_ID_HEADER)

        if request_id:
            try:
                uuid.UUID(request_id)
            except (ValueError, TypeError):
                request_id = str(uuid.uuid4())
        else:
            request_id = str(uuid.uuid4())

        user_id = None
        if hasattr(request, 'user') and request.user.is_authenticated:
            user_id = str(request.user.id)

        set_request_context(request_id, user_id=user_id, path=request.path)
        request.request_id = request_id
        return None

    def process_response(self, request, response):
        request_id = getattr(request, 'request_id', None)
        if request_id:
            response[self.RESPONSE_HEADER] = request_id

        clear_request_context()
        return response


class RequestIDFilter(logging.Filter):
    """Logging filter that adds request_id to log records."""

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        return True


def celery_request_id_headers():
    """Headers to pass to Celery tasks for log correlation."""
    request_id = get_request_id()
    if request_id:
        return {'request_id': request_id}
    return {}


def setup_celery_request_context(headers):
    """Set up request context in a Celery task from its headers."""
    request_id = headers.get('request_id')
    if request_id:
        set_request_context(request_id)
    else:
        set_request_context(str(uuid.uuid4()))
