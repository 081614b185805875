from fastapi import WebSocket
from typing import Dict, List, Set, Any, Optional

from taskboard.schemas.websocket import WebSocketEventType, WebSocketMessage
from taskboard.logs.server_log import api_logger


class ConnectionManager:
    """WebSocket connection manager: the board broadcast channel"""

    def __init__(self):
        # {user_id: set(connections)}
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        # {board_id: set(user_ids)}
        self.board_subscribers: Dict[int, Set[int]] = {}

    async def connect(self, websocket: WebSocket, user_id: int):
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)

        client_host = websocket.client.host if websocket.client else "unknown"
        api_logger.info(f"WebSocket: User {user_id} connected from {client_host}")

    def disconnect(self, websocket: WebSocket, user_id: int):
        if user_id not in self.active_connections:
            return
        self.active_connections[user_id].discard(websocket)
        if not self.active_connections[user_id]:
            del self.active_connections[user_id]
            # Без соединений подписки пользователя больше не нужны
            for board_id in list(self.board_subscribers):
                self.unsubscribe_from_board(user_id, board_id)

        api_logger.info(f"WebSocket: User {user_id} disconnected")

    def subscribe_to_board(self, user_id: int, board_id: int):
        """Subscribe a user to a board; membership is checked by the caller"""
        self.board_subscribers.setdefault(board_id, set()).add(user_id)
        api_logger.info(f"WebSocket: User {user_id} subscribed to board {board_id}")

    def unsubscribe_from_board(self, user_id: int, board_id: int):
        if board_id in self.board_subscribers:
            self.board_subscribers[board_id].discard(user_id)
            if not self.board_subscribers[board_id]:
                del self.board_subscribers[board_id]

    async def broadcast_to_board(self, board_id: int, message: WebSocketMessage):
        """Broadcast a message to all users subscribed to a board"""
        if board_id not in self.board_subscribers:
            return

        try:
            self._validate_message_data(message)
        except ValueError as e:
            api_logger.error(f"WebSocket: Invalid message data for event {message.event}: {str(e)}")
            return

        json_message = message.model_dump_json()
        subscribers = list(self.board_subscribers[board_id])

        api_logger.info(
            f"WebSocket: Broadcasting event '{message.event.value}' to {len(subscribers)} subscribers of board {board_id}"
        )

        for user_id in subscribers:
            await self.send_to_user(user_id, json_message)

    def _validate_message_data(self, message: WebSocketMessage):
        required_fields = {
            WebSocketEventType.BOARD_UPDATED: ["board_id", "board"],
            WebSocketEventType.BOARD_DELETED: ["board_id"],
            WebSocketEventType.LIST_CREATED: ["board_id", "list"],
            WebSocketEventType.LIST_UPDATED: ["board_id", "list"],
            WebSocketEventType.LIST_DELETED: ["board_id", "list_id"],
            WebSocketEventType.LISTS_REORDERED: ["board_id", "lists"],
            WebSocketEventType.TASK_CREATED: ["board_id", "task"],
            WebSocketEventType.TASK_UPDATED: ["board_id", "task"],
            WebSocketEventType.TASK_DELETED: ["board_id", "task_id", "list_id"],
            WebSocketEventType.TASK_MOVED: ["board_id", "task", "from_list_id", "to_list_id"],
            WebSocketEventType.USER_ROLE_CHANGED: ["board_id", "user_id", "role"],
            WebSocketEventType.USER_ADDED: ["board_id", "user"],
            WebSocketEventType.USER_REMOVED: ["board_id", "user_id"],
        }

        for field in required_fields.get(message.event, []):
            if field not in message.data:
                raise ValueError(f"Missing required field '{field}' for event '{message.event.value}'")

    async def send_to_user(self, user_id: int, message: str):
        """Send a message to a specific user on all their connections"""
        if user_id not in self.active_connections:
            return

        disconnected_websockets = set()
        for websocket in list(self.active_connections[user_id]):
            try:
                await websocket.send_text(message)
            except Exception as e:
                api_logger.error(f"WebSocket: Failed to send message to user {user_id}: {str(e)}")
                disconnected_websockets.add(websocket)

        for websocket in disconnected_websockets:
            self.disconnect(websocket, user_id)


manager = ConnectionManager()


async def notify(board_id: int, event_type: WebSocketEventType, data: dict, log_details: Optional[str] = None):
    """Universal notification function for board events"""
    message = WebSocketMessage(event=event_type, data=data)
    await manager.broadcast_to_board(board_id, message)

    log_msg = f"WebSocket: Notified {event_type.value} for board {board_id}"
    if log_details:
        log_msg += f", {log_details}"
    api_logger.info(log_msg)


async def notify_board_updated(board_id: int, board_data: dict):
    data = {"board_id": board_id, "board": board_data}
    await notify(board_id, WebSocketEventType.BOARD_UPDATED, data)


async def notify_board_deleted(board_id: int):
    data = {"board_id": board_id}
    await notify(board_id, WebSocketEventType.BOARD_DELETED, data)
    # удалённая доска больше не получает событий
    manager.board_subscribers.pop(board_id, None)


async def notify_list_created(board_id: int, list_data: dict):
    data = {"board_id": board_id, "list": list_data}
    await notify(board_id, WebSocketEventType.LIST_CREATED, data)


async def notify_list_updated(board_id: int, list_data: dict):
    data = {"board_id": board_id, "list": list_data}
    await notify(board_id, WebSocketEventType.LIST_UPDATED, data)


async def notify_list_deleted(board_id: int, list_id: int):
    data = {"board_id": board_id, "list_id": list_id}
    await notify(board_id, WebSocketEventType.LIST_DELETED, data, f"list {list_id}")


async def notify_lists_reordered(board_id: int, lists_data: List[Dict[str, Any]]):
    """Notify subscribers about the new order of all lists on the board"""
    data = {"board_id": board_id, "lists": lists_data}
    await notify(board_id, WebSocketEventType.LISTS_REORDERED, data)


async def notify_task_created(board_id: int, task_data: dict):
    data = {"board_id": board_id, "task": task_data}
    await notify(board_id, WebSocketEventType.TASK_CREATED, data)


async def notify_task_updated(board_id: int, task_data: dict):
    data = {"board_id": board_id, "task": task_data}
    await notify(board_id, WebSocketEventType.TASK_UPDATED, data)


async def notify_task_deleted(board_id: int, task_id: int, list_id: int):
    data = {"board_id": board_id, "task_id": task_id, "list_id": list_id}
    await notify(board_id, WebSocketEventType.TASK_DELETED, data, f"task {task_id}")


async def notify_task_moved(board_id: int, task_data: dict, from_list_id: int, to_list_id: int):
    data = {
        "board_id": board_id,
        "task": task_data,
        "from_list_id": from_list_id,
        "to_list_id": to_list_id
    }
    log_details = f"from list {from_list_id} to list {to_list_id}"
    await notify(board_id, WebSocketEventType.TASK_MOVED, data, log_details)


async def notify_user_role_changed(board_id: int, user_id: int, new_role: str):
    data = {"board_id": board_id, "user_id": user_id, "role": new_role}
    await notify(board_id, WebSocketEventType.USER_ROLE_CHANGED, data, f"user {user_id}, new role {new_role}")


async def notify_user_added(board_id: int, user_data: Dict[str, Any]):
    data = {"board_id": board_id, "user": user_data}
    await notify(board_id, WebSocketEventType.USER_ADDED, data, f"user {user_data.get('id', 'unknown')}")


async def notify_user_removed(board_id: int, user_id: int):
    data = {"board_id": board_id, "user_id": user_id}
    await notify(board_id, WebSocketEventType.USER_REMOVED, data, f"user {user_id}")
    manager.unsubscribe_from_board(user_id, board_id)
