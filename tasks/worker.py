# tasks/worker.py
"""
Celery application for the notes background jobs

Run a worker (with the beat scheduler embedded) with:

    celery -A tasks.worker worker -B --loglevel=info

Handlers live in tasks.jobs; this module owns the Celery app, its
configuration and the shared job dependencies (status store, backend client).
"""

from typing import Any, Dict, Optional

import redis
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_postrun, task_prerun, worker_ready
from celery.utils.log import get_task_logger
from kombu import Queue

from config.settings import get_config
from core.backend_client import BackendClient
from core.status_store import JobStatusStore

logger = get_task_logger(__name__)

celery_app = Celery('notes_jobs', include=['tasks.jobs'])

# Settings the handlers read at run time; refreshed by configure_jobs()
job_settings: Dict[str, Any] = {}

_status_store: Optional[JobStatusStore] = None
_backend_client: Optional[BackendClient] = None


def crontab_from_expression(expression: str) -> crontab:
    """Build a celery crontab from a five-field cron expression"""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 fields: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def build_celery_config(config) -> Dict[str, Any]:
    return {
        # Broker and result backend
        'broker_url': config['CELERY_BROKER_URL'],
        'result_backend': config['CELERY_RESULT_BACKEND'],

        # Serialization
        'task_serializer': 'json',
        'result_serializer': 'json',
        'accept_content': ['json'],

        # Timezone
        'timezone': 'UTC',
        'enable_utc': True,

        # Each job is attempted once
        'task_acks_late': False,
        'worker_prefetch_multiplier': 1,
        'result_expires': 3600,

        # Eager mode for tests
        'task_always_eager': config['CELERY_TASK_ALWAYS_EAGER'],
        'task_eager_propagates': config['CELERY_TASK_ALWAYS_EAGER'],

        # Routing: one queue per flow
        'task_default_queue': 'default',
        'task_queues': (
            Queue('image_management', routing_key='image_management'),
            Queue('page_management', routing_key='page_management'),
            Queue('task_management', routing_key='task_management'),
            Queue('default', routing_key='default'),
        ),
        'task_routes': {
            'tasks.jobs.cleanup_marked_images': {'queue': 'image_management'},
            'tasks.jobs.cleanup_orphaned_images': {'queue': 'image_management'},
            'tasks.jobs.process_image_upload': {'queue': 'image_management'},
            'tasks.jobs.scheduled_image_cleanup': {'queue': 'image_management'},
            'tasks.jobs.process_page_save': {'queue': 'page_management'},
            'tasks.jobs.send_task_reminders': {'queue': 'task_management'},
            'tasks.jobs.scheduled_task_reminders': {'queue': 'task_management'},
        },

        # Cron triggers
        'beat_schedule': {
            'scheduled-image-cleanup': {
                'task': 'tasks.jobs.scheduled_image_cleanup',
                'schedule': crontab_from_expression(config['IMAGE_CLEANUP_SCHEDULE']),
            },
            'scheduled-task-reminders': {
                'task': 'tasks.jobs.scheduled_task_reminders',
                'schedule': crontab_from_expression(config['TASK_REMINDER_SCHEDULE']),
            },
        },

        # Monitoring
        'worker_send_task_events': True,
        'task_send_sent_event': True,
        'worker_hijack_root_logger': False,
        'worker_log_color': False,
    }


def configure_jobs(config, status_store: Optional[JobStatusStore] = None,
                   backend_client: Optional[BackendClient] = None) -> Celery:
    """
    Apply a Flask-style config mapping to the Celery app and job dependencies

    Args:
        config: mapping with the keys defined in config.settings.BaseConfig
        status_store: store to use instead of one built from REDIS_URL
        backend_client: client to use instead of one built from BACKEND_URL
    """
    global _status_store, _backend_client

    celery_app.conf.update(build_celery_config(config))
    job_settings.clear()
    job_settings.update({
        'REDIS_URL': config['REDIS_URL'],
        'JOB_STATUS_PREFIX': config['JOB_STATUS_PREFIX'],
        'JOB_STATUS_TTL_SECONDS': config['JOB_STATUS_TTL_SECONDS'],
        'BACKEND_URL': config['BACKEND_URL'],
        'BACKEND_API_TOKEN': config['BACKEND_API_TOKEN'],
        'BACKEND_TIMEOUTS': dict(config['BACKEND_TIMEOUTS']),
        'SCHEDULED_CLEANUP_BATCH_SIZE': config['SCHEDULED_CLEANUP_BATCH_SIZE'],
        'RUN_JOBS_ON_STARTUP': config['RUN_JOBS_ON_STARTUP'],
    })

    _status_store = status_store
    if _backend_client is not None and _backend_client is not backend_client:
        _backend_client.close()
    _backend_client = backend_client
    return celery_app


def _config_from_object(config_class) -> Dict[str, Any]:
    return {name: getattr(config_class, name) for name in dir(config_class) if name.isupper()}


def get_status_store() -> JobStatusStore:
    global _status_store
    if _status_store is None:
        client = redis.Redis.from_url(job_settings['REDIS_URL'], decode_responses=True)
        _status_store = JobStatusStore(
            client,
            prefix=job_settings['JOB_STATUS_PREFIX'],
            ttl_seconds=job_settings['JOB_STATUS_TTL_SECONDS'],
        )
    return _status_store


def get_backend_client() -> BackendClient:
    global _backend_client
    if _backend_client is None:
        _backend_client = BackendClient(
            job_settings['BACKEND_URL'],
            api_token=job_settings['BACKEND_API_TOKEN'],
        )
    return _backend_client


def backend_timeout(topic: str) -> float:
    return job_settings['BACKEND_TIMEOUTS'][topic]


# Standalone workers configure themselves from the environment
configure_jobs(_config_from_object(get_config()))


# Celery signal handlers for monitoring
@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None, **extra):
    logger.info(f"Task {task.name} [{task_id}] starting")


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, args=None, kwargs=None,
                         retval=None, state=None, **extra):
    logger.info(f"Task {task.name} [{task_id}] completed with state: {state}")


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, einfo=None, **extra):
    logger.error(f"Task {sender.name} [{task_id}] failed: {exception}")


@worker_ready.connect
def run_startup_jobs(sender=None, **extra):
    """Fire one cleanup and one reminder check when a worker comes up"""
    if not job_settings.get('RUN_JOBS_ON_STARTUP'):
        return

    celery_app.send_task('tasks.jobs.scheduled_image_cleanup')
    logger.info("Triggered initial image cleanup")
    celery_app.send_task('tasks.jobs.scheduled_task_reminders')
    logger.info("Triggered initial reminder check")
