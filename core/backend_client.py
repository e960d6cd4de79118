# core/backend_client.py
"""
HTTP client for the notes backend's internal job endpoints
"""

import logging
from typing import Any, Dict, Optional

import requests

from core.errors import (
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
)

logger = logging.getLogger(__name__)

# Internal endpoints exposed by the backend for the job handlers
MARKED_IMAGES_CLEANUP_PATH = '/api/cleanup/marked-images'
ORPHANED_IMAGES_CLEANUP_PATH = '/api/cleanup/orphaned-images'
IMAGE_UPLOAD_PATH = '/api/images/upload-async'
PAGE_SAVE_PATH = '/api/pages/save-async'
TASK_REMINDERS_PATH = '/api/reminders/check'


class BackendClient:
    """Issues one POST per call; no retries"""

    def __init__(self, base_url: str, api_token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if api_token:
            self.session.headers['X-Internal-Token'] = api_token

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def post(self, path: str, payload: Dict[str, Any], timeout: float) -> Any:
        """
        POST ``payload`` as JSON and return the decoded response body

        ``timeout`` bounds the connect and each socket read, as requests
        applies it. A backend that keeps trickling bytes can hold the call
        longer than ``timeout`` in total.

        Raises:
            BackendTimeoutError: no answer within ``timeout`` seconds
            BackendUnavailableError: connection refused, DNS failure, ...
            BackendResponseError: non-2xx status or a body that is not JSON
        """
        url = self.url_for(path)
        logger.debug(f"POST {url} (timeout {timeout}s)")

        try:
            response = self.session.post(url, json=payload, timeout=timeout)
        except requests.Timeout as e:
            raise BackendTimeoutError(
                f"timeout of {int(timeout * 1000)}ms exceeded calling {path}", path=path
            ) from e
        except requests.ConnectionError as e:
            raise BackendUnavailableError(f"backend unreachable at {url}: {e}", path=path) from e

        if not response.ok:
            raise BackendResponseError(
                f"Request to {path} failed with status code {response.status_code}",
                path=path,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise BackendResponseError(
                f"Response from {path} is not valid JSON",
                path=path,
                status_code=response.status_code,
            ) from e

    def close(self) -> None:
        self.session.close()
