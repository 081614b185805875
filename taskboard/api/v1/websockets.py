from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import json
from typing import Optional

from taskboard.db.database import get_async_session
from taskboard.api.dependencies.auth import get_current_user_from_token
from taskboard.models.user import User
from taskboard.services.board_service import BoardService
from taskboard.services.websocket_service import manager
from taskboard.logs.server_log import api_logger
from taskboard.schemas.websocket import WebSocketEventType, WebSocketMessage

router = APIRouter(tags=["websockets"])


async def send_event(websocket: WebSocket, event: WebSocketEventType, data: Optional[dict] = None):
    message = WebSocketMessage(event=event, data=data or {})
    await websocket.send_text(message.model_dump_json())


async def send_error(websocket: WebSocket, message: str, code: int):
    await send_event(websocket, WebSocketEventType.ERROR, {"message": message, "code": code})


async def handle_command(websocket: WebSocket, db: AsyncSession, user: User, message_data: dict):
    """Handle one client command: ping, subscribe or unsubscribe"""
    command = message_data.get("command")
    api_logger.info(f"WebSocket: Received command '{command}' from user {user.id}")

    if command == "ping":
        await send_event(websocket, WebSocketEventType.PONG)
        return

    if command not in ("subscribe", "unsubscribe"):
        await send_error(websocket, f"Unknown command: {command}", 400)
        api_logger.warning(f"WebSocket: User {user.id} sent unknown command: {command}")
        return

    board_id = (message_data.get("data") or {}).get("board_id")
    if not board_id:
        await send_error(websocket, "Missing board_id", 400)
        api_logger.warning(f"WebSocket: User {user.id} tried to {command} without board_id")
        return

    if command == "unsubscribe":
        manager.unsubscribe_from_board(user.id, board_id)
        await send_event(websocket, WebSocketEventType.PING, {"message": f"Unsubscribed from board {board_id}"})
        return

    # Подписка только для участников доски
    user_role = await BoardService.get_user_role(db, board_id, user.id)
    if not user_role:
        await send_error(websocket, "Access denied to this board", 403)
        api_logger.warning(f"WebSocket: User {user.id} denied access to board {board_id}")
        return

    manager.subscribe_to_board(user.id, board_id)
    await send_event(websocket, WebSocketEventType.PING, {"message": f"Subscribed to board {board_id}"})


@router.websocket("/ws/updates")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session)
):
    """
    WebSocket endpoint for real-time board updates.

    Authentication is done via token query parameter:
    ws://example.com/api/v1/ws/updates?token=your_access_token

    Commands from client:
    - {"command": "subscribe", "data": {"board_id": 123}}
    - {"command": "unsubscribe", "data": {"board_id": 123}}
    - {"command": "ping", "data": {}}
    """
    client_host = websocket.client.host if websocket.client else "unknown"
    api_logger.info(f"WebSocket: New connection attempt from {client_host}")

    try:
        user = await get_current_user_from_token(token=token or websocket.query_params.get("token"), db=db)
    except HTTPException as he:
        api_logger.warning(f"WebSocket: Authentication failed from {client_host}: {he.detail}")
        await websocket.accept()
        await send_error(websocket, "Authentication failed", 401)
        await websocket.close(code=1008)  # Policy violation
        return

    api_logger.info(f"WebSocket: User {user.id} ({user.username}) authenticated from {client_host}")
    await manager.connect(websocket, user.id)
    await send_event(websocket, WebSocketEventType.PING, {"message": "Connected to the updates stream"})

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await send_error(websocket, "Invalid JSON", 400)
                continue

            if isinstance(message_data, dict) and "command" in message_data:
                await handle_command(websocket, db, user, message_data)
            else:
                await send_error(websocket, "Invalid message format", 400)
    except WebSocketDisconnect:
        api_logger.info(f"WebSocket: User {user.id} disconnected (normal)")
    except Exception as e:
        api_logger.error(f"WebSocket: Error in connection for user {user.id}: {str(e)}")
        raise
    finally:
        manager.disconnect(websocket, user.id)
