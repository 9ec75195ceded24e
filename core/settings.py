import os
from pathlib import Path
from dotenv import load_dotenv # 🔥 Cargador de secretos

BASE_DIR = Path(__file__).resolve().parent.parent

# --- CARGAR VARIABLES DE ENTORNO ---
# Carga el archivo .env desde la raíz del proyecto
load_dotenv(BASE_DIR / '.env')

# --- SEGURIDAD ---
SECRET_KEY = os.getenv('SECRET_KEY')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
ALLOWED_HOSTS = [h for h in os.getenv('ALLOWED_HOSTS', '').split(',') if h]

CSRF_TRUSTED_ORIGINS = [o for o in os.getenv('TRUSTED_ORIGINS', '').split(',') if o]
CSRF_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = not DEBUG

# -------------------------------------------------
# Apps Instaladas
# -------------------------------------------------
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Facturación electrónica Hacienda CR (v4.3)
    'facturacion.apps.FacturacionConfig',
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
]

ROOT_URLCONF = 'core.urls'
WSGI_APPLICATION = 'passenger_wsgi.application'

LANGUAGE_CODE = 'es-cr'
TIME_ZONE = 'America/Costa_Rica'
USE_I18N = True
USE_TZ = True

# --- Base de datos (Blindada) ---
DATABASE_ENGINE = os.getenv('DATABASE_ENGINE', 'django.db.backends.mysql')

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': os.getenv('DATABASE_NAME', str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': os.getenv('DATABASE_NAME'),
            'USER': os.getenv('DATABASE_USER'),
            'PASSWORD': os.getenv('DATABASE_PASSWORD'),
            'HOST': os.getenv('DATABASE_HOST', 'localhost'),
            'PORT': os.getenv('DATABASE_PORT', '3306'),
            'OPTIONS': {
                'charset': 'utf8mb4',
                'init_command': "SET sql_mode='STRICT_TRANS_TABLES'",
            },
        }
    }

# --- Cache (lock del poller entre workers) ---
# Debe ser compartida entre procesos; LocMemCache solo sirve con un worker.
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/1')

CACHES = {
    'default': {
        'BACKEND': os.getenv('CACHE_BACKEND', 'django.core.cache.backends.redis.RedisCache'),
        'LOCATION': os.getenv('CACHE_LOCATION', REDIS_URL),
        'KEY_PREFIX': 'facturacion',
    }
}

# --- Templates ---
TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
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

# --- Archivos estáticos/medios (cPanel Passenger Ready) ---
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'whitenoise.storage.CompressedManifestStaticFilesStorage'},
}

MEDIA_URL = '/media/'
MEDIA_ROOT = BASE_DIR / 'public' / 'media'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# --- Email (Blindaje de datos) ---
EMAIL_BACKEND = 'django.core.mail.backends.smtp.EmailBackend'
EMAIL_HOST = os.getenv('EMAIL_HOST')
_EMAIL_PORT = int(os.getenv('EMAIL_PORT', 587))
EMAIL_PORT = _EMAIL_PORT
EMAIL_USE_SSL = (_EMAIL_PORT == 465)
EMAIL_USE_TLS = (_EMAIL_PORT == 587)
EMAIL_HOST_USER = os.getenv('EMAIL_HOST_USER')
EMAIL_HOST_PASSWORD = os.getenv('EMAIL_HOST_PASSWORD')
DEFAULT_FROM_EMAIL = os.getenv('EMAIL_HOST_USER')

# -------------------------------------------------
# Hacienda CR (comprobantes electrónicos v4.3)
# -------------------------------------------------
# Staging: https://api-sandbox.comprobanteselectronicos.go.cr/recepcion/v1/recepcion
HACIENDA_API_URL = os.getenv('HACIENDA_API_URL', 'https://api.hacienda.go.cr/fe/recepcion')
HACIENDA_IDP_URL = os.getenv(
    'HACIENDA_IDP_URL',
    'https://idp.comprobanteselectronicos.go.cr/auth/realms/rut-stag/protocol/openid-connect/token',
)
HACIENDA_IDP_CLIENT_ID = os.getenv('HACIENDA_IDP_CLIENT_ID', 'api-stag')
HACIENDA_REQUEST_TIMEOUT = int(os.getenv('HACIENDA_REQUEST_TIMEOUT', 20))  # segundos
HACIENDA_SSL_VERIFY = os.getenv('HACIENDA_SSL_VERIFY', 'True').lower() == 'true'
HACIENDA_TOKEN_MARGEN_SEGUNDOS = int(os.getenv('HACIENDA_TOKEN_MARGEN_SEGUNDOS', 30))

HACIENDA_POLL_MAX_INTENTOS = int(os.getenv('HACIENDA_POLL_MAX_INTENTOS', 5))
HACIENDA_POLL_INTERVALO_SEGUNDOS = int(os.getenv('HACIENDA_POLL_INTERVALO_SEGUNDOS', 120))
HACIENDA_POLL_LOCK_TTL = int(os.getenv('HACIENDA_POLL_LOCK_TTL', 600))

# aleatorio | consecutivo (ver facturacion.services.hacienda.workflow)
HACIENDA_CODIGO_SEGURIDAD_MODO = os.getenv('HACIENDA_CODIGO_SEGURIDAD_MODO', 'aleatorio')
HACIENDA_CODIGO_ACTIVIDAD = os.getenv('HACIENDA_CODIGO_ACTIVIDAD', '')
HACIENDA_PDF_SUBDIR = os.getenv('HACIENDA_PDF_SUBDIR', 'pdfs')

# --- Celery ---
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_BEAT_SCHEDULE = {
    'revisar-comprobantes-pendientes': {
        'task': 'facturacion.tasks.revisar_comprobantes_pendientes_task',
        'schedule': HACIENDA_POLL_INTERVALO_SEGUNDOS,
    },
}

# --- LOGGING (v4.1 cPanel Optimized) ---
LOG_DIR = BASE_DIR / 'logs'
LOG_DIR.mkdir(exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'level': 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'file': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_DIR / 'django.log',
            'maxBytes': 1024 * 1024 * 5,  # 5MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['file'],
            'level': 'INFO',
            'propagate': True,
        },
        'facturacion': {
            'handlers': ['console', 'file'],
            'level': os.getenv('FACTURACION_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
