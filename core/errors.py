# core/errors.py
"""Exceptions raised by the job layer"""

from typing import Optional


class JobError(Exception):
    """Base exception for background job operations"""
    pass


class UnknownTopicError(JobError):
    """No handler subscribes to the emitted topic"""
    pass


class BackendRequestError(JobError):
    """The outbound call to the notes backend did not succeed"""

    def __init__(self, message: str, path: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class BackendTimeoutError(BackendRequestError):
    """Backend did not answer within the handler timeout"""
    pass


class BackendUnavailableError(BackendRequestError):
    """Backend could not be reached"""
    pass


class BackendResponseError(BackendRequestError):
    """Backend answered with a non-2xx status or an unreadable body"""
    pass
