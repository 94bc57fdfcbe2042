"""
Development settings for the Symploke engine.
"""

from .base import *

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = True

ALLOWED_HOSTS = ['localhost', '127.0.0.1', '[::1]', 'testserver']

# Disable HTTPS redirect in development
SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False

# Show more detailed error pages
DEBUG_PROPAGATE_EXCEPTIONS = True

# Development logging - more verbose
LOGGING['root']['level'] = 'DEBUG'
LOGGING['loggers']['apps']['level'] = 'DEBUG'

# Progress events go to the log unless a Redis publisher is configured explicitly
WEAVE_PROGRESS_PUBLISHER = os.getenv(
    'WEAVE_PROGRESS_PUBLISHER',
    'apps.weaves.publisher.LoggingProgressPublisher',
)
