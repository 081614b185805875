from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from taskboard.schemas.task import TaskResponse


class TaskListBase(BaseModel):
    """Base schema for list data"""
    title: str = Field(..., min_length=1)


class TaskListCreate(TaskListBase):
    """Schema for list creation; the list is appended to the end of the board"""
    pass


class TaskListUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)


class TaskListMove(BaseModel):
    """Schema for moving a list to a new index on its board"""
    board_id: int
    target_index: int = Field(..., ge=0)


class TaskListInDB(TaskListBase):
    """List without its tasks"""
    id: int
    board_id: int
    position: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskListResponse(TaskListInDB):
    """List with its tasks in position order"""
    tasks: List[TaskResponse] = []

