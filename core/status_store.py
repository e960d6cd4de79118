# core/status_store.py
"""
Redis-backed job-status store

One JSON record per (namespace, job id). Records are replaced wholesale on
every write, so the newest outcome for a job id wins.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Job execution status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class StatusNamespace:
    CLEANUP = 'cleanup-jobs'
    IMAGE_UPLOAD = 'image-upload-jobs'
    PAGE_SAVE = 'page-save-jobs'
    REMINDER = 'reminder-jobs'

    ALL = (CLEANUP, IMAGE_UPLOAD, PAGE_SAVE, REMINDER)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class JobStatusStore:
    """Reads and writes job-status records in Redis"""

    def __init__(self, redis_client: redis.Redis, prefix: str = 'job-status',
                 ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds or None

    def _key(self, namespace: str, job_id: str) -> str:
        return f"{self.prefix}:{namespace}:{job_id}"

    def set(self, namespace: str, job_id: str, record: Dict[str, Any]) -> None:
        self.redis.set(self._key(namespace, job_id), json.dumps(record), ex=self.ttl_seconds)

    def get(self, namespace: str, job_id: str) -> Optional[Dict[str, Any]]:
        raw = self.redis.get(self._key(namespace, job_id))
        if raw is None:
            return None
        return json.loads(raw)

    def list(self, namespace: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Return up to ``limit`` records of a namespace, each with its ``jobId``"""
        match = self._key(namespace, '*')
        prefix_length = len(self._key(namespace, ''))
        records = []
        for key in self.redis.scan_iter(match=match, count=100):
            if isinstance(key, bytes):
                key = key.decode('utf-8')
            record = self.get(namespace, key[prefix_length:])
            if record is None:
                continue  # expired between scan and read
            records.append({'jobId': key[prefix_length:], **record})
            if len(records) >= limit:
                break
        return records

    def mark_pending(self, namespace: str, job_id: str, job_type: str, **context: Any) -> Dict[str, Any]:
        record = {
            'type': job_type,
            'status': JobStatus.PENDING.value,
            **context,
            'queuedAt': _utc_timestamp(),
        }
        self.set(namespace, job_id, record)
        return record

    def mark_completed(self, namespace: str, job_id: str, job_type: str,
                       result: Any, **context: Any) -> Dict[str, Any]:
        record = {
            'type': job_type,
            'status': JobStatus.COMPLETED.value,
            'result': result,
            **context,
            'completedAt': _utc_timestamp(),
        }
        self.set(namespace, job_id, record)
        return record

    def mark_failed(self, namespace: str, job_id: str, job_type: str,
                    error: str, **context: Any) -> Dict[str, Any]:
        record = {
            'type': job_type,
            'status': JobStatus.FAILED.value,
            'error': error,
            **context,
            'failedAt': _utc_timestamp(),
        }
        try:
            self.set(namespace, job_id, record)
        except redis.RedisError as e:
            # The caller re-raises the job's own error; don't replace it with ours
            logger.error(f"Failed to record failure of job {job_id} in {namespace}: {str(e)}")
        return record

    def ping(self) -> bool:
        return bool(self.redis.ping())
