from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator


def _naive_utc(value):
    if isinstance(value, str) and value.endswith('Z'):
        # Заменяем 'Z' на '+00:00' для правильной обработки UTC
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if isinstance(value, datetime) and value.tzinfo is not None:
        # В базе храним даты без часового пояса
        return value.replace(tzinfo=None)
    return value


class TaskBase(BaseModel):
    """Base schema for task data"""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None

    @field_validator('due_date', mode='before')
    @classmethod
    def parse_due_date(cls, value):
        return _naive_utc(value)


class TaskCreate(TaskBase):
    """Schema for task creation; the task is appended to the end of the list"""
    pass


class TaskUpdate(BaseModel):
    """Schema for task update. Position is changed only through a move"""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None

    @field_validator('due_date', mode='before')
    @classmethod
    def parse_due_date(cls, value):
        return _naive_utc(value)


class TaskMove(BaseModel):
    """Schema for moving a task inside its list or to another list"""
    dest_list_id: int
    target_index: int = Field(..., ge=0)


class TaskResponse(TaskBase):
    id: int
    list_id: int
    position: int
    creator_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
