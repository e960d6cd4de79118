# api/jobs.py
"""
Job trigger and inspection API

Triggers validate the JSON body, generate a job id, emit the matching event
topics and answer immediately; the handlers run on the Celery workers.
"""

import logging
from typing import Tuple

from flask import Blueprint, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from pydantic import ValidationError

from core.job_ids import new_job_id
from core.schemas import (
    ImageCleanupRequest,
    ImageUploadEvent,
    ImageUploadRequest,
    MarkedCleanupEvent,
    OrphanedCleanupEvent,
    PageSaveEvent,
    PageSaveRequest,
    TaskReminderEvent,
    TaskReminderRequest,
)
from core.status_store import StatusNamespace
from middleware.security import require_job_token
from tasks.events import (
    CLEANUP_MARKED_IMAGES,
    CLEANUP_ORPHANED_IMAGES,
    PROCESS_IMAGE_UPLOAD,
    PROCESS_PAGE_SAVE,
    SEND_TASK_REMINDERS,
    emit,
)
from tasks.worker import get_status_store

jobs_bp = Blueprint('jobs', __name__)
logger = logging.getLogger(__name__)

# Rate limiter for the trigger endpoints; storage comes from RATELIMIT_STORAGE_URI
limiter = Limiter(key_func=get_remote_address)

MAX_LIST_LIMIT = 200


def invalid_request() -> Tuple:
    return jsonify({'error': 'Invalid request data'}), 400


def queue_failed(job_id: str, error: Exception) -> Tuple:
    logger.error(f"Failed to queue job {job_id}: {str(error)}", exc_info=True)
    return jsonify({'error': 'Failed to queue job', 'jobId': job_id}), 500


@jobs_bp.route('/cleanup/images', methods=['POST'])
@limiter.limit("10 per minute")
@require_job_token
def trigger_image_cleanup():
    """Start marked and/or orphaned image cleanup"""
    try:
        body = ImageCleanupRequest.model_validate(request.get_json(silent=True))
    except ValidationError as e:
        logger.warning(f"Rejected image cleanup trigger: {e.error_count()} validation error(s)")
        return invalid_request()

    job_id = new_job_id('cleanup')
    logger.info(f"Starting image cleanup job {job_id}: type {body.cleanup_type}, batch size {body.batch_size}")

    try:
        if body.runs_marked:
            emit(CLEANUP_MARKED_IMAGES, MarkedCleanupEvent(
                job_id=job_id,
                batch_size=body.batch_size,
                cleanup_type=body.cleanup_type,
            ))
        if body.runs_orphaned:
            emit(CLEANUP_ORPHANED_IMAGES, OrphanedCleanupEvent(
                job_id=job_id,
                cleanup_type=body.cleanup_type,
            ))
    except Exception as e:
        return queue_failed(job_id, e)

    return jsonify({
        'message': f"Image cleanup job started: {body.cleanup_type}",
        'cleanupType': body.cleanup_type,
        'jobId': job_id,
    }), 200


@jobs_bp.route('/images/upload', methods=['POST'])
@limiter.limit("60 per minute")
@require_job_token
def trigger_image_upload():
    try:
        body = ImageUploadRequest.model_validate(request.get_json(silent=True))
    except ValidationError as e:
        logger.warning(f"Rejected image upload: {e.error_count()} validation error(s)")
        return invalid_request()

    job_id = new_job_id('image-upload')
    logger.info(f"Starting async image upload {job_id}: user {body.user_id}, page {body.page_id or 'none'}")

    try:
        emit(PROCESS_IMAGE_UPLOAD, ImageUploadEvent(
            job_id=job_id,
            image=body.image,
            original_name=body.original_name,
            page_id=body.page_id,
            user_id=body.user_id,
        ))
    except Exception as e:
        return queue_failed(job_id, e)

    return jsonify({
        'message': 'Image upload job queued for processing',
        'jobId': job_id,
    }), 202


@jobs_bp.route('/pages/save', methods=['POST'])
@limiter.limit("120 per minute")
@require_job_token
def trigger_page_save():
    try:
        body = PageSaveRequest.model_validate(request.get_json(silent=True))
    except ValidationError as e:
        logger.warning(f"Rejected page save: {e.error_count()} validation error(s)")
        return invalid_request()

    job_id = new_job_id('page-save')
    logger.info(f"Starting async page save {job_id}: page {body.page_id}, user {body.user_id}")

    try:
        emit(PROCESS_PAGE_SAVE, PageSaveEvent(
            job_id=job_id,
            page_id=body.page_id,
            new_page_data=body.new_page_data,
            user_id=body.user_id,
        ))
    except Exception as e:
        return queue_failed(job_id, e)

    return jsonify({
        'message': 'Page save job queued for processing',
        'jobId': job_id,
        'pageId': body.page_id,
    }), 202


@jobs_bp.route('/reminders/tasks', methods=['POST'])
@limiter.limit("10 per minute")
@require_job_token
def trigger_task_reminders():
    try:
        body = TaskReminderRequest.model_validate(request.get_json(silent=True))
    except ValidationError as e:
        logger.warning(f"Rejected task reminder trigger: {e.error_count()} validation error(s)")
        return invalid_request()

    job_id = new_job_id('reminder')
    logger.info(f"Starting task reminder check {job_id}: type {body.check_type}")

    try:
        emit(SEND_TASK_REMINDERS, TaskReminderEvent(job_id=job_id, check_type=body.check_type))
    except Exception as e:
        return queue_failed(job_id, e)

    return jsonify({
        'message': f"Task reminder check started: {body.check_type}",
        'checkType': body.check_type,
        'jobId': job_id,
    }), 200


@jobs_bp.route('/jobs/<namespace>/<job_id>', methods=['GET'])
@require_job_token
def get_job_status(namespace, job_id):
    """Return the recorded outcome of one job"""
    if namespace not in StatusNamespace.ALL:
        return jsonify({'error': f"Unknown job namespace: {namespace}"}), 404

    record = get_status_store().get(namespace, job_id)
    if record is None:
        return jsonify({'error': 'Job not found', 'jobId': job_id}), 404

    return jsonify({'jobId': job_id, **record})


@jobs_bp.route('/jobs/<namespace>', methods=['GET'])
@require_job_token
def list_job_statuses(namespace):
    if namespace not in StatusNamespace.ALL:
        return jsonify({'error': f"Unknown job namespace: {namespace}"}), 404

    try:
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return invalid_request()
    if not 1 <= limit <= MAX_LIST_LIMIT:
        return invalid_request()

    jobs = get_status_store().list(namespace, limit=limit)
    return jsonify({'namespace': namespace, 'count': len(jobs), 'jobs': jobs})
