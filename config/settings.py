# config/settings.py
"""
Configuration for the notes background-job service

Values come from environment variables with development-friendly defaults.
Select a profile with FLASK_ENV (development, testing, production).
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class BaseConfig:
    """Settings shared by every environment"""

    SERVICE_NAME = 'notes-jobs'
    VERSION = os.environ.get('APP_VERSION', '1.0.0')

    # Backend the job handlers call into
    BACKEND_URL = os.environ.get('BACKEND_URL', 'http://localhost:3000')
    BACKEND_API_TOKEN = os.environ.get('BACKEND_API_TOKEN')

    # Per-handler outbound timeouts (seconds)
    BACKEND_TIMEOUTS = {
        'cleanup-marked-images': 300,
        'cleanup-orphaned-images': 300,
        'process-image-upload': 120,
        'process-page-save': 60,
        'send-task-reminders': 120,
    }

    # Redis: job-status store, broker and rate limiting
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    REDIS_REQUIRED = _env_bool('REDIS_REQUIRED', True)
    CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL') or REDIS_URL
    CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND') or REDIS_URL
    CELERY_TASK_ALWAYS_EAGER = False

    # Job-status records
    JOB_STATUS_PREFIX = 'job-status'
    JOB_STATUS_TTL_SECONDS = int(os.environ.get('JOB_STATUS_TTL_SECONDS', 7 * 24 * 3600))

    # Cron expressions (minute hour day-of-month month day-of-week)
    IMAGE_CLEANUP_SCHEDULE = os.environ.get('IMAGE_CLEANUP_SCHEDULE', '0 */6 * * *')
    TASK_REMINDER_SCHEDULE = os.environ.get('TASK_REMINDER_SCHEDULE', '*/5 * * * *')
    SCHEDULED_CLEANUP_BATCH_SIZE = 50
    RUN_JOBS_ON_STARTUP = _env_bool('RUN_JOBS_ON_STARTUP', True)

    # Trigger endpoint protection
    JOB_TRIGGER_TOKEN = os.environ.get('JOB_TRIGGER_TOKEN')

    # Rate limiting
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI') or REDIS_URL
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = '600 per hour;60 per minute'

    # CORS
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get('CORS_ORIGINS', 'http://localhost:5173').split(',')
        if origin.strip()
    ]

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')
    SLOW_REQUEST_THRESHOLD = 1000  # ms

    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # base64 images arrive in the JSON body


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')
    REDIS_REQUIRED = _env_bool('REDIS_REQUIRED', False)


class TestingConfig(BaseConfig):
    TESTING = True
    REDIS_REQUIRED = False
    BACKEND_URL = 'http://backend.test'
    BACKEND_API_TOKEN = None
    JOB_TRIGGER_TOKEN = None
    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'
    CELERY_TASK_ALWAYS_EAGER = True
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    RUN_JOBS_ON_STARTUP = False
    LOG_FILE = None


class ProductionConfig(BaseConfig):
    """Production settings, deployed behind nginx"""

    DEBUG = False
    PROXY_FIX = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


CONFIG_BY_NAME = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(config_name: str = None):
    """Return the config class for an environment name, defaulting to FLASK_ENV"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'production')
    return CONFIG_BY_NAME.get(config_name, ProductionConfig)
