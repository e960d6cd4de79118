# tasks/events.py
"""
Event topics connecting triggers (HTTP and cron) to job handlers

A handler task subscribes to exactly one topic. Emitting an event writes a
``pending`` status record and enqueues the subscribed task with the event
payload as keyword arguments.
"""

from typing import Callable, Dict, NamedTuple

import redis
from celery import Task
from celery.result import AsyncResult
from celery.utils.log import get_task_logger

from core.errors import UnknownTopicError
from core.schemas import JobEvent
from tasks.worker import get_status_store

logger = get_task_logger(__name__)

CLEANUP_MARKED_IMAGES = 'cleanup-marked-images'
CLEANUP_ORPHANED_IMAGES = 'cleanup-orphaned-images'
PROCESS_IMAGE_UPLOAD = 'process-image-upload'
PROCESS_PAGE_SAVE = 'process-page-save'
SEND_TASK_REMINDERS = 'send-task-reminders'


class Subscription(NamedTuple):
    task: Task
    namespace: str
    job_type: str


SUBSCRIPTIONS: Dict[str, Subscription] = {}


def subscribes(topic: str, namespace: str, job_type: str) -> Callable[[Task], Task]:
    """Register a Celery task as the handler for ``topic``"""
    def decorator(task: Task) -> Task:
        if topic in SUBSCRIPTIONS:
            raise ValueError(f"Topic {topic} already has a handler: {SUBSCRIPTIONS[topic].task.name}")
        SUBSCRIPTIONS[topic] = Subscription(task, namespace, job_type)
        return task
    return decorator


def emit(topic: str, event: JobEvent) -> AsyncResult:
    """
    Queue ``event`` for the handler subscribed to ``topic``

    Raises:
        UnknownTopicError: nothing subscribes to the topic
    """
    subscription = SUBSCRIPTIONS.get(topic)
    if subscription is None:
        raise UnknownTopicError(f"No handler subscribes to topic {topic}")

    store = get_status_store()
    try:
        store.mark_pending(subscription.namespace, event.job_id, subscription.job_type)
    except redis.RedisError as e:
        # The job is queued even without a pending record
        logger.error(f"Failed to record pending job {event.job_id} in {subscription.namespace}: {str(e)}")

    logger.info(f"Emitting {topic} for job {event.job_id}")
    try:
        return subscription.task.apply_async(kwargs=event.to_task_kwargs())
    except Exception as e:
        logger.error(f"Failed to queue {topic} for job {event.job_id}: {str(e)}")
        store.mark_failed(subscription.namespace, event.job_id, subscription.job_type, str(e))
        raise
