import re
from unittest import mock

import pytest
import redis

from app import create_app
from config import settings
from core.backend_client import MARKED_IMAGES_CLEANUP_PATH, ORPHANED_IMAGES_CLEANUP_PATH
from core.status_store import StatusNamespace
from tasks import jobs

JOB_ID_PATTERN = r'{prefix}-\d{{13}}-[0-9a-z]{{9}}'


def assert_job_id(job_id, prefix):
    assert re.fullmatch(JOB_ID_PATTERN.format(prefix=prefix), job_id), job_id


# Image cleanup

def test_cleanup_marked(client, backend, status_store):
    response = client.post('/cleanup/images', json={'cleanupType': 'marked', 'batchSize': 50})

    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Image cleanup job started: marked'
    assert body['cleanupType'] == 'marked'
    assert_job_id(body['jobId'], 'cleanup')

    backend.post.assert_called_once_with(
        MARKED_IMAGES_CLEANUP_PATH, {'batchSize': 50, 'jobId': body['jobId']}, timeout=300
    )
    record = status_store.get(StatusNamespace.CLEANUP, body['jobId'])
    assert record['status'] == 'completed'
    assert record['type'] == 'marked-images'


def test_cleanup_orphaned(client, backend):
    response = client.post('/cleanup/images', json={'cleanupType': 'orphaned'})

    assert response.status_code == 200
    job_id = response.get_json()['jobId']
    backend.post.assert_called_once_with(ORPHANED_IMAGES_CLEANUP_PATH, {'jobId': job_id}, timeout=300)


def test_cleanup_defaults_to_comprehensive(client, backend, status_store):
    response = client.post('/cleanup/images', json={})

    assert response.status_code == 200
    body = response.get_json()
    assert body['cleanupType'] == 'comprehensive'
    paths = [c.args[0] for c in backend.post.call_args_list]
    assert paths == [MARKED_IMAGES_CLEANUP_PATH, ORPHANED_IMAGES_CLEANUP_PATH]
    assert backend.post.call_args_list[0].args[1] == {'batchSize': 50, 'jobId': body['jobId']}
    # Both handlers share the job id; the later write is what remains
    assert status_store.get(StatusNamespace.CLEANUP, body['jobId'])['type'] == 'orphaned-images'


@pytest.mark.parametrize('payload', [
    {'cleanupType': 'everything'},
    {'batchSize': 0},
    {'batchSize': 101},
    {'batchSize': '50'},
    [{'cleanupType': 'marked'}],
])
def test_cleanup_rejects_invalid_payloads(client, backend, payload):
    response = client.post('/cleanup/images', json=payload)

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid request data'}
    backend.post.assert_not_called()


def test_cleanup_rejects_non_json_body(client):
    response = client.post('/cleanup/images', data='cleanupType=marked', content_type='text/plain')
    assert response.status_code == 400
    assert 'error' in response.get_json()


# Image upload

def test_image_upload_accepted(client, backend, status_store):
    response = client.post('/images/upload', json={
        'image': 'data:image/png;base64,iVBORw0KGgo=',
        'originalName': 'diagram.png',
        'pageId': 'page-1',
        'userId': 'user-1',
    })

    assert response.status_code == 202
    body = response.get_json()
    assert body['message'] == 'Image upload job queued for processing'
    assert_job_id(body['jobId'], 'image-upload')

    record = status_store.get(StatusNamespace.IMAGE_UPLOAD, body['jobId'])
    assert record['status'] == 'completed'
    assert record['userId'] == 'user-1'


@pytest.mark.parametrize('payload', [
    {'userId': 'user-1'},
    {'image': '', 'userId': 'user-1'},
    {'image': 'data:image/png;base64,AA'},
    {'image': 'data:image/png;base64,AA', 'userId': 42},
])
def test_image_upload_rejects_invalid_payloads(client, payload):
    response = client.post('/images/upload', json=payload)
    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid request data'}


# Page save

def test_page_save_accepted(client, backend, status_store):
    response = client.post('/pages/save', json={'pageId': 'page-1', 'newPageData': '# Notes', 'userId': 'user-1'})

    assert response.status_code == 202
    body = response.get_json()
    assert body['message'] == 'Page save job queued for processing'
    assert body['pageId'] == 'page-1'
    assert_job_id(body['jobId'], 'page-save')
    assert status_store.get(StatusNamespace.PAGE_SAVE, body['jobId'])['status'] == 'completed'


def test_page_save_accepts_empty_content(client):
    response = client.post('/pages/save', json={'pageId': 'page-1', 'newPageData': '', 'userId': 'user-1'})
    assert response.status_code == 202


@pytest.mark.parametrize('payload', [
    {'newPageData': 'x', 'userId': 'user-1'},
    {'pageId': 'page-1', 'newPageData': None, 'userId': 'user-1'},
    {'pageId': 'page-1', 'newPageData': 'x', 'userId': ''},
])
def test_page_save_rejects_invalid_payloads(client, payload):
    assert client.post('/pages/save', json=payload).status_code == 400


# Task reminders

def test_task_reminders_default(client, backend):
    response = client.post('/reminders/tasks', json={})

    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Task reminder check started: all'
    assert body['checkType'] == 'all'
    assert_job_id(body['jobId'], 'reminder')


def test_task_reminders_overdue(client, backend):
    response = client.post('/reminders/tasks', json={'checkType': 'overdue'})

    assert response.status_code == 200
    job_id = response.get_json()['jobId']
    assert backend.post.call_args.args[1] == {'jobId': job_id, 'checkType': 'overdue'}


def test_task_reminders_rejects_unknown_check_type(client):
    assert client.post('/reminders/tasks', json={'checkType': 'weekly'}).status_code == 400


# Job ids and failures

def test_job_ids_are_unique_across_triggers(client):
    ids = {client.post('/reminders/tasks', json={}).get_json()['jobId'] for _ in range(20)}
    assert len(ids) == 20


def test_queue_failure_returns_500(client):
    with mock.patch('api.jobs.emit', side_effect=ConnectionError('broker down')):
        response = client.post('/reminders/tasks', json={})

    assert response.status_code == 500
    assert response.get_json()['error'] == 'Failed to queue job'


def test_trigger_still_queues_when_status_store_is_down(client, fake_redis):
    with mock.patch.object(fake_redis, 'set', side_effect=redis.ConnectionError('redis down')), \
            mock.patch.object(jobs.send_task_reminders, 'apply_async') as apply_async:
        response = client.post('/reminders/tasks', json={})

    assert response.status_code == 200
    apply_async.assert_called_once()


def test_queue_failure_marks_the_job_failed(client, backend, status_store):
    with mock.patch.object(jobs.process_page_save, 'apply_async', side_effect=ConnectionError('broker down')):
        response = client.post('/pages/save', json={'pageId': 'p', 'newPageData': 'x', 'userId': 'u'})

    assert response.status_code == 500
    job_id = response.get_json()['jobId']
    record = status_store.get(StatusNamespace.PAGE_SAVE, job_id)
    assert record['status'] == 'failed'
    assert record['error'] == 'broker down'
    backend.post.assert_not_called()


def test_trigger_returns_before_worker_runs(client, backend, status_store):
    with mock.patch.object(jobs.process_page_save, 'apply_async') as apply_async:
        response = client.post('/pages/save', json={'pageId': 'p', 'newPageData': 'x', 'userId': 'u'})

    assert response.status_code == 202
    apply_async.assert_called_once()
    backend.post.assert_not_called()
    job_id = response.get_json()['jobId']
    assert status_store.get(StatusNamespace.PAGE_SAVE, job_id)['status'] == 'pending'


# Schedule / trigger parity

def test_cron_and_http_cleanup_emit_the_same_shapes(client):
    with mock.patch('api.jobs.emit') as http_emit:
        client.post('/cleanup/images', json={'cleanupType': 'comprehensive', 'batchSize': 50})
    with mock.patch('tasks.jobs.emit') as cron_emit:
        jobs.scheduled_image_cleanup()

    def shapes(fake_emit):
        return [
            (topic, type(event), sorted(event.to_task_kwargs()), sorted(event.to_backend_payload()))
            for topic, event in (c.args for c in fake_emit.call_args_list)
        ]

    assert shapes(http_emit) == shapes(cron_emit)
    http_marked = http_emit.call_args_list[0].args[1]
    cron_marked = cron_emit.call_args_list[0].args[1]
    assert (http_marked.batch_size, http_marked.cleanup_type) == (cron_marked.batch_size, cron_marked.cleanup_type)


def test_cron_and_http_reminders_emit_the_same_shapes(client):
    with mock.patch('api.jobs.emit') as http_emit:
        client.post('/reminders/tasks', json={'checkType': 'all'})
    with mock.patch('tasks.jobs.emit') as cron_emit:
        jobs.scheduled_task_reminders()

    (http_topic, http_event), = [c.args for c in http_emit.call_args_list]
    (cron_topic, cron_event), = [c.args for c in cron_emit.call_args_list]
    assert http_topic == cron_topic == 'send-task-reminders'
    assert http_event.to_task_kwargs().keys() == cron_event.to_task_kwargs().keys()
    assert http_event.check_type == cron_event.check_type == 'all'


# Trigger token

def test_trigger_token_required_when_configured(app, client):
    app.config['JOB_TRIGGER_TOKEN'] = 'let-me-in'

    assert client.post('/reminders/tasks', json={}).status_code == 401
    assert client.post('/reminders/tasks', json={}, headers={'X-Job-Token': 'nope'}).status_code == 401
    response = client.post('/reminders/tasks', json={}, headers={'X-Job-Token': 'let-me-in'})
    assert response.status_code == 200


# Job status inspection

def test_get_job_status(client):
    job_id = client.post('/pages/save', json={'pageId': 'p', 'newPageData': 'x', 'userId': 'u'}).get_json()['jobId']

    response = client.get(f'/jobs/page-save-jobs/{job_id}')

    assert response.status_code == 200
    body = response.get_json()
    assert body['jobId'] == job_id
    assert body['status'] == 'completed'
    assert body['type'] == 'page-save'


def test_get_job_status_not_found(client):
    assert client.get('/jobs/page-save-jobs/page-save-0-missing').status_code == 404
    assert client.get('/jobs/unknown-jobs/abc').status_code == 404


def test_list_job_statuses(client):
    for _ in range(3):
        client.post('/reminders/tasks', json={})

    response = client.get('/jobs/reminder-jobs?limit=2')

    assert response.status_code == 200
    body = response.get_json()
    assert body['namespace'] == 'reminder-jobs'
    assert body['count'] == 2
    assert all(job['status'] == 'completed' for job in body['jobs'])
    assert client.get('/jobs/reminder-jobs?limit=0').status_code == 400
    assert client.get('/jobs/reminder-jobs?limit=abc').status_code == 400


# Service endpoints

def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'healthy'
    assert body['service'] == 'notes-jobs'
    assert 'timestamp' in body
    assert response.headers['X-Content-Type-Options'] == 'nosniff'


def test_detailed_health_with_workers(app, client):
    with mock.patch.object(app.celery.control, 'inspect') as inspect:
        inspect.return_value.ping.return_value = {'celery@worker1': {'ok': 'pong'}}
        response = client.get('/health/detailed')

    assert response.status_code == 200
    body = response.get_json()
    assert body['components']['redis'] == 'healthy'
    assert body['components']['celery_workers'] == 'healthy (1 workers)'


def test_detailed_health_without_workers(app, client):
    with mock.patch.object(app.celery.control, 'inspect') as inspect:
        inspect.return_value.ping.return_value = None
        response = client.get('/health/detailed')

    assert response.status_code == 503
    assert response.get_json()['status'] == 'degraded'


def test_unknown_route_is_json(client):
    response = client.get('/nope')
    assert response.status_code == 404
    assert 'error' in response.get_json()


# Rate limiting

class RateLimitedConfig(settings.TestingConfig):
    RATELIMIT_ENABLED = True
    RATELIMIT_DEFAULT = '2 per minute'


@pytest.fixture
def limited_client(fake_redis, backend):
    with mock.patch.dict(settings.CONFIG_BY_NAME, {'rate-limited': RateLimitedConfig}):
        app = create_app('rate-limited', redis_client=fake_redis, backend_client=backend)
    return app.test_client()


def test_cleanup_trigger_is_rate_limited(limited_client):
    for _ in range(10):
        assert limited_client.post('/cleanup/images', json={'cleanupType': 'marked'}).status_code == 200

    response = limited_client.post('/cleanup/images', json={'cleanupType': 'marked'})

    assert response.status_code == 429
    assert 'Too many requests' in response.get_json()['error']


def test_health_checks_are_not_rate_limited(limited_client):
    with mock.patch('app.celery_app.control.inspect') as inspect:
        inspect.return_value.ping.return_value = {'celery@worker1': {'ok': 'pong'}}
        for _ in range(5):
            assert limited_client.get('/health').status_code == 200
            assert limited_client.get('/health/detailed').status_code == 200
