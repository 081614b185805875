from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from taskboard.schemas.task_list import TaskListResponse


class BoardBase(BaseModel):
    """Base schema for board data"""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None


class BoardCreate(BoardBase):
    """Schema for board creation"""
    pass


class BoardUpdate(BaseModel):
    """Schema for board update"""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class BoardInDB(BoardBase):
    """Schema for board representation in the database"""
    id: int
    owner_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BoardResponse(BoardInDB):
    """Schema for board response"""
    pass


class BoardList(BaseModel):
    """Schema for list of boards"""
    boards: List[BoardResponse]
    total: int = 0


class BoardCompleteResponse(BoardInDB):
    """Schema for complete board response with lists and their tasks"""
    lists: List[TaskListResponse] = []
