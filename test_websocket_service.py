import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from taskboard.schemas.websocket import WebSocketEventType, WebSocketMessage
from taskboard.services import websocket_service
from taskboard.services.websocket_service import ConnectionManager


def make_socket():
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_text = AsyncMock()
    websocket.client.host = "127.0.0.1"
    return websocket


class TestConnectionManager:
    def setup_method(self):
        self.manager = ConnectionManager()

    @pytest.mark.asyncio
    async def test_broadcast_reaches_only_subscribers(self):
        subscriber, other = make_socket(), make_socket()
        await self.manager.connect(subscriber, 1)
        await self.manager.connect(other, 2)
        self.manager.subscribe_to_board(1, 10)

        message = WebSocketMessage(event=WebSocketEventType.BOARD_DELETED, data={"board_id": 10})
        await self.manager.broadcast_to_board(10, message)

        subscriber.send_text.assert_awaited_once()
        assert json.loads(subscriber.send_text.await_args.args[0])["event"] == "board_deleted"
        other.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload_is_not_sent(self):
        websocket = make_socket()
        await self.manager.connect(websocket, 1)
        self.manager.subscribe_to_board(1, 10)

        message = WebSocketMessage(event=WebSocketEventType.TASK_MOVED, data={"board_id": 10})
        await self.manager.broadcast_to_board(10, message)

        websocket.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_broken_socket_is_dropped(self):
        websocket = make_socket()
        websocket.send_text.side_effect = RuntimeError("closed")
        await self.manager.connect(websocket, 1)
        self.manager.subscribe_to_board(1, 10)

        await self.manager.send_to_user(1, "{}")

        assert 1 not in self.manager.active_connections
        assert 10 not in self.manager.board_subscribers


class TestNotifications:
    @pytest.mark.asyncio
    async def test_task_moved_payload(self):
        with patch.object(websocket_service.manager, "broadcast_to_board", new_callable=AsyncMock) as mock_broadcast:
            await websocket_service.notify_task_moved(10, {"id": 7}, 3, 4)

        board_id, message = mock_broadcast.await_args.args
        assert board_id == 10
        assert message.event == WebSocketEventType.TASK_MOVED
        assert message.data == {"board_id": 10, "task": {"id": 7}, "from_list_id": 3, "to_list_id": 4}

    @pytest.mark.asyncio
    async def test_lists_reordered_payload(self):
        ordering = [{"id": 2, "position": 0}, {"id": 1, "position": 1}]
        with patch.object(websocket_service.manager, "broadcast_to_board", new_callable=AsyncMock) as mock_broadcast:
            await websocket_service.notify_lists_reordered(10, ordering)

        _, message = mock_broadcast.await_args.args
        assert message.event == WebSocketEventType.LISTS_REORDERED
        assert message.data["lists"] == ordering

    @pytest.mark.asyncio
    async def test_removed_user_stops_receiving_board_events(self):
        manager = ConnectionManager()
        removed, remaining = make_socket(), make_socket()
        await manager.connect(removed, 1)
        await manager.connect(remaining, 2)
        manager.subscribe_to_board(1, 10)
        manager.subscribe_to_board(2, 10)

        with patch.object(websocket_service, "manager", manager):
            await websocket_service.notify_user_removed(10, 1)
            removed.send_text.reset_mock()
            remaining.send_text.reset_mock()
            await websocket_service.notify_task_created(10, {"id": 5})

        assert manager.board_subscribers[10] == {2}
        removed.send_text.assert_not_awaited()
        remaining.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_deleted_board_drops_its_subscribers(self):
        manager = ConnectionManager()
        websocket = make_socket()
        await manager.connect(websocket, 1)
        manager.subscribe_to_board(1, 10)

        with patch.object(websocket_service, "manager", manager):
            await websocket_service.notify_board_deleted(10)
            websocket.send_text.reset_mock()
            await websocket_service.notify_board_updated(10, {"id": 10, "title": "Gone"})

        assert 10 not in manager.board_subscribers
        websocket.send_text.assert_not_awaited()
