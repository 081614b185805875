from pydantic import BaseModel
from typing import Dict, Any
from enum import Enum


class WebSocketEventType(str, Enum):
    """Types of WebSocket events"""
    BOARD_UPDATED = "board_updated"
    BOARD_DELETED = "board_deleted"
    LIST_CREATED = "list_created"
    LIST_UPDATED = "list_updated"
    LIST_DELETED = "list_deleted"
    LISTS_REORDERED = "lists_reordered"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_MOVED = "task_moved"
    USER_ADDED = "user_added"
    USER_REMOVED = "user_removed"
    USER_ROLE_CHANGED = "user_role_changed"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


class WebSocketMessage(BaseModel):
    """Base message for WebSocket communication"""
    event: WebSocketEventType
    data: Dict[str, Any]

