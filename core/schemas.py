# core/schemas.py
"""
Request and event payload schemas

Trigger bodies arrive as camelCase JSON. Events travel through the queue as
snake_case keyword arguments and go back to camelCase when forwarded to the
backend.
"""

from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class CleanupType(str, Enum):
    MARKED = 'marked'
    ORPHANED = 'orphaned'
    COMPREHENSIVE = 'comprehensive'


class CheckType(str, Enum):
    ALL = 'all'
    ONE_HOUR = 'one-hour'
    OVERDUE = 'overdue'


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)


# Trigger request bodies

class ImageCleanupRequest(CamelModel):
    cleanup_type: CleanupType = Field(CleanupType.COMPREHENSIVE, alias='cleanupType')
    batch_size: StrictInt = Field(50, alias='batchSize', ge=1, le=100)

    @property
    def runs_marked(self) -> bool:
        return self.cleanup_type in (CleanupType.MARKED.value, CleanupType.COMPREHENSIVE.value)

    @property
    def runs_orphaned(self) -> bool:
        return self.cleanup_type in (CleanupType.ORPHANED.value, CleanupType.COMPREHENSIVE.value)


class ImageUploadRequest(CamelModel):
    image: StrictStr = Field(..., min_length=1)
    original_name: Optional[StrictStr] = Field(None, alias='originalName')
    page_id: Optional[StrictStr] = Field(None, alias='pageId')
    user_id: StrictStr = Field(..., alias='userId', min_length=1)


class PageSaveRequest(CamelModel):
    page_id: StrictStr = Field(..., alias='pageId', min_length=1)
    new_page_data: StrictStr = Field(..., alias='newPageData')
    user_id: StrictStr = Field(..., alias='userId', min_length=1)


class TaskReminderRequest(CamelModel):
    check_type: CheckType = Field(CheckType.ALL, alias='checkType')


# Event payloads

class JobEvent(CamelModel):
    """Base payload for every event topic"""

    # Field names forwarded to the backend; None forwards everything
    backend_fields: ClassVar[Optional[Set[str]]] = None

    job_id: StrictStr = Field(..., alias='jobId', min_length=1)

    def to_task_kwargs(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')

    def to_backend_payload(self) -> Dict[str, Any]:
        return self.model_dump(
            mode='json',
            by_alias=True,
            include=self.backend_fields,
            exclude_none=True,
        )


class MarkedCleanupEvent(JobEvent):
    backend_fields: ClassVar[Optional[Set[str]]] = {'batch_size', 'job_id'}

    batch_size: StrictInt = Field(..., alias='batchSize', ge=1, le=100)
    cleanup_type: StrictStr = Field(..., alias='cleanupType')


class OrphanedCleanupEvent(JobEvent):
    backend_fields: ClassVar[Optional[Set[str]]] = {'job_id'}

    cleanup_type: StrictStr = Field(..., alias='cleanupType')


class ImageUploadEvent(JobEvent):
    image: StrictStr
    original_name: Optional[StrictStr] = Field(None, alias='originalName')
    page_id: Optional[StrictStr] = Field(None, alias='pageId')
    user_id: StrictStr = Field(..., alias='userId')


class PageSaveEvent(JobEvent):
    page_id: StrictStr = Field(..., alias='pageId')
    new_page_data: StrictStr = Field(..., alias='newPageData')
    user_id: StrictStr = Field(..., alias='userId')


class TaskReminderEvent(JobEvent):
    check_type: StrictStr = Field(..., alias='checkType')
