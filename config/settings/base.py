"""
Django settings for the Symploke engine.
Base settings shared across all environments.
"""

import os
from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-change-this-in-production')

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third-party apps
    'rest_framework',
    'rest_framework_simplejwt',
    'rest_framework_simplejwt.token_blacklist',
    'django_celery_beat',

    # Symploke apps
    'apps.core',
    'apps.plexus',
    'apps.weaves',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    # Custom middleware
    'apps.core.middleware.RequestIDMiddleware',  # Request ID tracing
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
# Use SQLite for development if no PostgreSQL configured
if os.getenv('DB_NAME'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('DB_NAME'),
            'USER': os.getenv('DB_USER'),
            'PASSWORD': os.getenv('DB_PASSWORD'),
            'HOST': os.getenv('DB_HOST', 'localhost'),
            'PORT': os.getenv('DB_PORT', '5432'),
            'CONN_MAX_AGE': int(os.getenv('DB_CONN_MAX_AGE', '60')),
            'CONN_HEALTH_CHECKS': True,
            'OPTIONS': {
                'connect_timeout': 10,
            },
        }
    }
else:
    # SQLite fallback for local development
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Celery Configuration
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
# Discovery runs are long-lived; the lease, not the time limit, bounds ownership
CELERY_TASK_TIME_LIMIT = int(os.getenv('CELERY_TASK_TIME_LIMIT', '21600'))  # 6 hours
CELERY_TASK_SOFT_TIME_LIMIT = int(os.getenv('CELERY_TASK_SOFT_TIME_LIMIT', '21000'))
CELERY_TASK_ALWAYS_EAGER = os.getenv('CELERY_TASK_ALWAYS_EAGER', 'False').lower() == 'true'
CELERY_TASK_EAGER_PROPAGATES = True

# Additional Celery settings for production reliability
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_RESULT_EXTENDED = True
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_ACKS_LATE = True
CELERY_WORKER_PREFETCH_MULTIPLIER = 1  # One discovery run per worker slot

# Celery Beat (scheduled tasks) - using django-celery-beat DB scheduler
CELERY_BEAT_SCHEDULER = 'django_celery_beat.schedulers:DatabaseScheduler'
CELERY_BEAT_SCHEDULE = {
    'weave-intake-heartbeat': {
        'task': 'apps.weaves.tasks.intake_heartbeat',
        'schedule': 60.0,  # Every minute
    },
    'weave-recover-stuck-runs': {
        'task': 'apps.weaves.tasks.recover_stuck_runs',
        'schedule': 300.0,  # Every 5 minutes
    },
}

# Redis Configuration
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# Caching
CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
    }
}

# Django REST Framework
REST_FRAMEWORK = {
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 50,
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_THROTTLE_RATES': {
        'weave_trigger': os.getenv('THROTTLE_WEAVE_TRIGGER', '10/minute'),
        'destructive': os.getenv('THROTTLE_DESTRUCTIVE', '20/minute'),
    },
    # Custom exception handler for standardized error responses
    'EXCEPTION_HANDLER': 'apps.core.exceptions.symploke_exception_handler',
}

# Simple JWT Configuration
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=60),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'ROTATE_REFRESH_TOKENS': True,
    'BLACKLIST_AFTER_ROTATION': True,

    'ALGORITHM': 'HS256',
    'SIGNING_KEY': SECRET_KEY,

    'AUTH_HEADER_TYPES': ('Bearer',),
    'USER_ID_FIELD': 'id',
    'USER_ID_CLAIM': 'user_id',
}

# Logging
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'request_id': {
            '()': 'apps.core.middleware.RequestIDFilter',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} [{request_id}] {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
            'filters': ['request_id'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'apps': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}

# Optional rotating file log (LOG_DIR must exist and be writable)
LOG_DIR = os.getenv('LOG_DIR', '')
if LOG_DIR:
    LOGGING['handlers']['file'] = {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': os.path.join(LOG_DIR, 'symploke.log'),
        'maxBytes': 1024 * 1024 * 5,  # 5MB
        'backupCount': 5,
        'formatter': 'verbose',
        'filters': ['request_id'],
    }
    for _logger in ('django', 'apps', 'celery'):
        LOGGING['loggers'][_logger]['handlers'].append('file')


# =============================================================================
# Weave Discovery
# =============================================================================

# Comparator used to propose relationships for a repo pair (dotted path)
WEAVE_COMPARATOR = os.getenv('WEAVE_COMPARATOR', 'apps.weaves.comparators.NullComparator')

# Minimum comparator score persisted as a weave
WEAVE_SCORE_THRESHOLD = float(os.getenv('WEAVE_SCORE_THRESHOLD', '0.5'))

# Worker threads per discovery run
WEAVE_WORKER_CONCURRENCY = int(os.getenv('WEAVE_WORKER_CONCURRENCY', '4'))

# Per-invocation comparator ceiling (seconds)
WEAVE_COMPARATOR_TIMEOUT = float(os.getenv('WEAVE_COMPARATOR_TIMEOUT', '60'))

# Comparator attempts per pair before the pair is skipped
WEAVE_COMPARATOR_MAX_ATTEMPTS = int(os.getenv('WEAVE_COMPARATOR_MAX_ATTEMPTS', '3'))

# Base backoff between comparator attempts (seconds, doubled per attempt)
WEAVE_COMPARATOR_BACKOFF = float(os.getenv('WEAVE_COMPARATOR_BACKOFF', '1.0'))

# Store write attempts before the run fails
WEAVE_STORE_MAX_ATTEMPTS = int(os.getenv('WEAVE_STORE_MAX_ATTEMPTS', '3'))

# Base backoff between store write attempts (seconds)
WEAVE_STORE_BACKOFF = float(os.getenv('WEAVE_STORE_BACKOFF', '0.5'))

# Progress publisher backend (dotted path)
WEAVE_PROGRESS_PUBLISHER = os.getenv(
    'WEAVE_PROGRESS_PUBLISHER',
    'apps.weaves.publisher.RedisProgressPublisher',
)

# Redis used for the live progress channel
WEAVE_PROGRESS_REDIS_URL = os.getenv('WEAVE_PROGRESS_REDIS_URL', REDIS_URL)

# Publish a snapshot after this many pairs...
WEAVE_PROGRESS_EVERY_PAIRS = int(os.getenv('WEAVE_PROGRESS_EVERY_PAIRS', '5'))

# ...or after this many milliseconds, whichever comes first
WEAVE_PROGRESS_INTERVAL_MS = int(os.getenv('WEAVE_PROGRESS_INTERVAL_MS', '1000'))

# Bounded wait for in-flight pairs on cancel/failure (seconds)
WEAVE_DRAIN_TIMEOUT = float(os.getenv('WEAVE_DRAIN_TIMEOUT', '30'))

# Maximum pair indices dispatched beyond the resume cursor
WEAVE_DISPATCH_WINDOW = int(os.getenv('WEAVE_DISPATCH_WINDOW', '64'))

# Orchestrator ownership lease (seconds)
WEAVE_LEASE_TTL = int(os.getenv('WEAVE_LEASE_TTL', '300'))

# Re-leases after a crash before the run is failed
WEAVE_MAX_RECOVERY_ATTEMPTS = int(os.getenv('WEAVE_MAX_RECOVERY_ATTEMPTS', '5'))

# How often the orchestrator checks for a cancel request (seconds)
WEAVE_CANCEL_POLL_INTERVAL = float(os.getenv('WEAVE_CANCEL_POLL_INTERVAL', '2'))

# Intake heartbeat older than this marks the process as not live (seconds)
INTAKE_HEARTBEAT_MAX_AGE = int(os.getenv('INTAKE_HEARTBEAT_MAX_AGE', '180'))

# Application version
VERSION = os.getenv('APP_VERSION', '1.0.0')
