# core/job_ids.py
"""
Job identifiers

Triggered jobs:  <prefix>-<epoch millis>-<9 base36 chars>
Scheduled jobs:  scheduled-<prefix>-<epoch millis>
"""

import secrets
import string
import time

BASE36_ALPHABET = string.digits + string.ascii_lowercase
SUFFIX_LENGTH = 9


def _now_millis() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return ''.join(secrets.choice(BASE36_ALPHABET) for _ in range(length))


def new_job_id(prefix: str) -> str:
    """Job id for an HTTP-triggered job, e.g. ``cleanup-1718000000000-k3j9x0a2b``"""
    return f"{prefix}-{_now_millis()}-{random_suffix()}"


def scheduled_job_id(prefix: str) -> str:
    """Job id for a cron-triggered job, e.g. ``scheduled-cleanup-1718000000000``"""
    return f"scheduled-{prefix}-{_now_millis()}"
