"""
Django settings for the AAGAM real-time dispatch node.

Configuration for:
- Django Channels (rider / admin WebSocket connections)
- In-memory dispatch state (presence, ledger) bound to this process
- Optional JWT verification of presented rider/admin credentials
"""

from pathlib import Path
from datetime import timedelta
from decouple import config, Csv

# ===========================================
# BASE CONFIGURATION
# ===========================================
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='dev-secret-key-change-in-production')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,0.0.0.0', cast=Csv())

# ===========================================
# APPLICATION DEFINITION
# ===========================================
INSTALLED_APPS = [
    # Django Core
    'django.contrib.contenttypes',
    'django.contrib.auth',

    # Daphne MUST be before staticfiles
    'daphne',  # ASGI server for WebSocket support
    'channels',  # Django Channels for real-time

    'django.contrib.staticfiles',

    # Third Party
    'rest_framework',

    # AAGAM Apps
    'dispatch.apps.DispatchConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'aagam_core.urls'

TEMPLATES = []

# ===========================================
# DATABASE
# ===========================================
# The dispatch core keeps its state in memory; the database only backs
# django.contrib.auth for the framework itself.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': config('DB_NAME', default=str(BASE_DIR / 'db.sqlite3')),
    }
}

# ===========================================
# INTERNATIONALIZATION
# ===========================================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = config('TIME_ZONE', default='Asia/Kolkata')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===========================================
# DJANGO CHANNELS (WebSocket Real-time)
# ===========================================
ASGI_APPLICATION = 'aagam_core.asgi.application'

REDIS_URL = config('REDIS_URL', default='redis://redis:6379/1')
CHANNEL_LAYER_BACKEND = config('CHANNEL_LAYER_BACKEND', default='memory')

if CHANNEL_LAYER_BACKEND == 'redis':
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels_redis.core.RedisChannelLayer',
            'CONFIG': {
                'hosts': [REDIS_URL],
                'capacity': 1500,
                'expiry': 10,
            },
        },
    }
else:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels.layers.InMemoryChannelLayer',
            'CONFIG': {
                'capacity': 1500,
                'expiry': 10,
            },
        },
    }

# ===========================================
# DJANGO REST FRAMEWORK
# ===========================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [],
    'UNAUTHENTICATED_USER': None,
}

# ===========================================
# JWT CONFIGURATION
# ===========================================
# Tokens are issued by the external auth service; the dispatch node only
# verifies them when DISPATCH_VERIFY_TOKENS is enabled.
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(hours=12),
    'SIGNING_KEY': config('JWT_SIGNING_KEY', default=SECRET_KEY),
    'AUTH_HEADER_TYPES': ('Bearer',),
    'USER_ID_CLAIM': 'user_id',
}

# ===========================================
# BUSINESS RULES - DISPATCH ENGINE
# ===========================================
DISPATCH_STALE_TIMEOUT = config('DISPATCH_STALE_TIMEOUT', default=300, cast=int)                # seconds
DISPATCH_MAINTENANCE_INTERVAL = config('DISPATCH_MAINTENANCE_INTERVAL', default=60, cast=int)  # seconds
DISPATCH_PROGRESS_INTERVAL = config('DISPATCH_PROGRESS_INTERVAL', default=10, cast=float)      # seconds
DISPATCH_OFFER_STAGGER = config('DISPATCH_OFFER_STAGGER', default=5.0, cast=float)             # seconds
DISPATCH_OPTIMIZE_DELAY = config('DISPATCH_OPTIMIZE_DELAY', default=2.0, cast=float)           # seconds
DISPATCH_SYNTHETIC_DELIVERIES = config('DISPATCH_SYNTHETIC_DELIVERIES', default=True, cast=bool)
DISPATCH_SYNTHETIC_BATCH = config('DISPATCH_SYNTHETIC_BATCH', default=3, cast=int)
DISPATCH_MAX_OFFERS = config('DISPATCH_MAX_OFFERS', default=10, cast=int)
DISPATCH_ARCHIVE_SIZE = config('DISPATCH_ARCHIVE_SIZE', default=200, cast=int)
DISPATCH_VERIFY_TOKENS = config('DISPATCH_VERIFY_TOKENS', default=False, cast=bool)
DISPATCH_API_TOKEN = config('DISPATCH_API_TOKEN', default='')

# ===========================================
# LOGGING CONFIGURATION
# ===========================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': config('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'dispatch': {
            'handlers': ['console'],
            'level': config('DISPATCH_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}
