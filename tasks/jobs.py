# tasks/jobs.py
"""
Background job handlers for the notes application

Every handler follows the same shape:
- validate the event payload
- make one POST to the backend's internal endpoint with a fixed timeout
- record ``completed`` with the backend's response, or ``failed`` with the
  error message and re-raise so the worker sees the failure

Handlers are attempted once. A failed scheduled job waits for the next tick.
"""

from typing import Any, Dict, Optional

from celery.utils.log import get_task_logger

from core.backend_client import (
    IMAGE_UPLOAD_PATH,
    MARKED_IMAGES_CLEANUP_PATH,
    ORPHANED_IMAGES_CLEANUP_PATH,
    PAGE_SAVE_PATH,
    TASK_REMINDERS_PATH,
)
from core.job_ids import scheduled_job_id
from core.schemas import (
    CheckType,
    CleanupType,
    ImageUploadEvent,
    JobEvent,
    MarkedCleanupEvent,
    OrphanedCleanupEvent,
    PageSaveEvent,
    TaskReminderEvent,
)
from core.status_store import StatusNamespace
from tasks.events import (
    CLEANUP_MARKED_IMAGES,
    CLEANUP_ORPHANED_IMAGES,
    PROCESS_IMAGE_UPLOAD,
    PROCESS_PAGE_SAVE,
    SEND_TASK_REMINDERS,
    emit,
    subscribes,
)
from tasks.worker import (
    backend_timeout,
    celery_app,
    get_backend_client,
    get_status_store,
    job_settings,
)

logger = get_task_logger(__name__)


def _field(result: Any, key: str, default: Any = None) -> Any:
    if isinstance(result, dict):
        return result.get(key, default)
    return default


def run_backend_job(topic: str, event: JobEvent, path: str, namespace: str,
                    job_type: str, context: Optional[Dict[str, Any]] = None) -> Any:
    """
    Forward ``event`` to the backend and record the outcome

    Args:
        topic: event topic, selects the outbound timeout
        event: validated event payload
        path: backend endpoint
        namespace: status-store namespace for the record
        job_type: ``type`` field of the record
        context: extra fields copied into the record (user and page ids)

    Returns:
        The backend's decoded JSON response
    """
    context = context or {}
    store = get_status_store()

    try:
        result = get_backend_client().post(
            path,
            event.to_backend_payload(),
            timeout=backend_timeout(topic),
        )
        store.mark_completed(namespace, event.job_id, job_type, result, **context)
    except Exception as e:
        logger.error(f"Job {event.job_id} ({job_type}) failed: {str(e)}", exc_info=True)
        store.mark_failed(namespace, event.job_id, job_type, str(e), **context)
        raise

    return result


@subscribes(CLEANUP_MARKED_IMAGES, StatusNamespace.CLEANUP, 'marked-images')
@celery_app.task(bind=True, name='tasks.jobs.cleanup_marked_images')
def cleanup_marked_images(self, job_id: str, batch_size: int, cleanup_type: str) -> Any:
    """Delete images from storage that are marked for deletion"""
    event = MarkedCleanupEvent(job_id=job_id, batch_size=batch_size, cleanup_type=cleanup_type)
    logger.info(f"Starting cleanup of marked images: job {job_id}, batch size {batch_size}, type {cleanup_type}")

    result = run_backend_job(
        CLEANUP_MARKED_IMAGES,
        event,
        MARKED_IMAGES_CLEANUP_PATH,
        StatusNamespace.CLEANUP,
        'marked-images',
    )

    logger.info(
        f"Marked images cleanup completed for job {job_id}: "
        f"{_field(result, 'deletedCount', 0)} deleted, "
        f"{_field(result, 'failedCount', 0)} failed, "
        f"{_field(result, 'totalProcessed', 0)} processed"
    )
    return result


@subscribes(CLEANUP_ORPHANED_IMAGES, StatusNamespace.CLEANUP, 'orphaned-images')
@celery_app.task(bind=True, name='tasks.jobs.cleanup_orphaned_images')
def cleanup_orphaned_images(self, job_id: str, cleanup_type: str) -> Any:
    """Find images no page references and mark them for deletion"""
    event = OrphanedCleanupEvent(job_id=job_id, cleanup_type=cleanup_type)
    logger.info(f"Starting orphaned images detection: job {job_id}, type {cleanup_type}")

    result = run_backend_job(
        CLEANUP_ORPHANED_IMAGES,
        event,
        ORPHANED_IMAGES_CLEANUP_PATH,
        StatusNamespace.CLEANUP,
        'orphaned-images',
    )

    logger.info(f"Orphaned images detection completed for job {job_id}: {_field(result, 'markedCount', 0)} marked")
    return result


@subscribes(PROCESS_IMAGE_UPLOAD, StatusNamespace.IMAGE_UPLOAD, 'image-upload')
@celery_app.task(bind=True, name='tasks.jobs.process_image_upload')
def process_image_upload(self, job_id: str, image: str, user_id: str,
                         original_name: Optional[str] = None, page_id: Optional[str] = None) -> Any:
    """Upload an image through the backend and save its metadata"""
    event = ImageUploadEvent(
        job_id=job_id,
        image=image,
        original_name=original_name,
        page_id=page_id,
        user_id=user_id,
    )
    logger.info(f"Processing image upload: job {job_id}, user {user_id}, page {page_id or 'none'}")

    result = run_backend_job(
        PROCESS_IMAGE_UPLOAD,
        event,
        IMAGE_UPLOAD_PATH,
        StatusNamespace.IMAGE_UPLOAD,
        'image-upload',
        context={'userId': user_id, 'pageId': page_id},
    )

    logger.info(
        f"Image upload completed for job {job_id}: "
        f"image {_field(result, 'imageId')} at {_field(result, 'imageUrl')}"
    )
    return result


@subscribes(PROCESS_PAGE_SAVE, StatusNamespace.PAGE_SAVE, 'page-save')
@celery_app.task(bind=True, name='tasks.jobs.process_page_save')
def process_page_save(self, job_id: str, page_id: str, new_page_data: str, user_id: str) -> Any:
    """Save page content, image references and caches through the backend"""
    event = PageSaveEvent(job_id=job_id, page_id=page_id, new_page_data=new_page_data, user_id=user_id)
    logger.info(f"Processing page save: job {job_id}, page {page_id}, user {user_id}")

    result = run_backend_job(
        PROCESS_PAGE_SAVE,
        event,
        PAGE_SAVE_PATH,
        StatusNamespace.PAGE_SAVE,
        'page-save',
        context={'pageId': page_id, 'userId': user_id},
    )

    logger.info(f"Page save completed for job {job_id}: updated={_field(result, 'updated')}")
    return result


@subscribes(SEND_TASK_REMINDERS, StatusNamespace.REMINDER, 'task-reminders')
@celery_app.task(bind=True, name='tasks.jobs.send_task_reminders')
def send_task_reminders(self, job_id: str, check_type: str) -> Any:
    """Email owners of tasks due within the hour or overdue"""
    event = TaskReminderEvent(job_id=job_id, check_type=check_type)
    logger.info(f"Starting task reminder check: job {job_id}, type {check_type}")

    result = run_backend_job(
        SEND_TASK_REMINDERS,
        event,
        TASK_REMINDERS_PATH,
        StatusNamespace.REMINDER,
        'task-reminders',
    )

    logger.info(
        f"Task reminder check completed for job {job_id}: "
        f"{_field(result, 'oneHourReminders', 0)} one-hour, "
        f"{_field(result, 'overdueReminders', 0)} overdue"
    )
    return result


# Cron triggers

@celery_app.task(name='tasks.jobs.scheduled_image_cleanup')
def scheduled_image_cleanup() -> Dict[str, Any]:
    """Comprehensive image cleanup, every 6 hours by default"""
    job_id = scheduled_job_id('cleanup')
    logger.info(f"Starting scheduled comprehensive image cleanup: {job_id}")

    marked = MarkedCleanupEvent(
        job_id=f"{job_id}-marked",
        batch_size=job_settings['SCHEDULED_CLEANUP_BATCH_SIZE'],
        cleanup_type=CleanupType.COMPREHENSIVE.value,
    )
    orphaned = OrphanedCleanupEvent(
        job_id=f"{job_id}-orphaned",
        cleanup_type=CleanupType.COMPREHENSIVE.value,
    )

    try:
        emit(CLEANUP_MARKED_IMAGES, marked)
        emit(CLEANUP_ORPHANED_IMAGES, orphaned)
    except Exception as e:
        logger.error(f"Failed to trigger scheduled image cleanup {job_id}: {str(e)}")
        raise

    logger.info(f"Scheduled image cleanup jobs triggered: {job_id}")
    return {'jobId': job_id, 'jobIds': [marked.job_id, orphaned.job_id]}


@celery_app.task(name='tasks.jobs.scheduled_task_reminders')
def scheduled_task_reminders() -> Dict[str, Any]:
    """Task reminder check, every 5 minutes by default"""
    job_id = scheduled_job_id('reminder')
    logger.info(f"Starting scheduled task reminder check: {job_id}")

    try:
        emit(SEND_TASK_REMINDERS, TaskReminderEvent(job_id=job_id, check_type=CheckType.ALL.value))
    except Exception as e:
        logger.error(f"Failed to trigger scheduled task reminders {job_id}: {str(e)}")
        raise

    logger.info(f"Scheduled task reminder check triggered: {job_id}")
    return {'jobId': job_id}
