"""
Test settings for the Symploke engine.
"""

from .base import *

DEBUG = False

ALLOWED_HOSTS = ['localhost', 'testserver']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

# Run tasks inline
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    'DEFAULT_THROTTLE_RATES': {
        'weave_trigger': '1000/minute',
        'destructive': '1000/minute',
    },
}

# Deterministic, fast discovery runs
WEAVE_PROGRESS_PUBLISHER = 'apps.weaves.publisher.NullProgressPublisher'
WEAVE_COMPARATOR = 'apps.weaves.comparators.NullComparator'
WEAVE_COMPARATOR_BACKOFF = 0
WEAVE_STORE_BACKOFF = 0
WEAVE_COMPARATOR_TIMEOUT = 5
WEAVE_DRAIN_TIMEOUT = 5
WEAVE_CANCEL_POLL_INTERVAL = 0
WEAVE_WORKER_CONCURRENCY = 2

LOGGING['root']['level'] = 'WARNING'
LOGGING['loggers']['apps']['level'] = 'WARNING'
