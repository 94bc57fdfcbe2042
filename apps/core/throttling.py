"""
Rate Limiting / Throttling for the Symploke API.

Usage in settings:
    REST_FRAMEWORK = {
        'DEFAULT_THROTTLE_RATES': {
            'weave_trigger': '10/minute',  # Discovery run submission
            'destructive': '20/minute',    # Cancel, reset
        }
    }
"""

from rest_framework.throttling import UserRateThrottle
import logging

logger = logging.getLogger(__name__)


class WeaveTriggerThrottle(UserRateThrottle):
    """
    Throttle for discovery run submission.

    Applies to:
    - POST /api/plexus/{id}/weaves/run/

    Default: 10 requests/minute
    """
    scope = 'weave_trigger'

    def get_rate(self):
        try:
            return super().get_rate()
        except Exception:
            return '10/minute'


class DestructiveActionThrottle(UserRateThrottle):
    """
    Throttle for destructive actions.

    Applies to:
    - POST /api/weaves/runs/{id}/cancel/
    - POST /api/plexus/{id}/reset/

    Default: 20 requests/minute
    """
    scope = 'destructive'

    def get_rate(self):
        try:
            return super().get_rate()
        except Exception:
            return '20/minute'
