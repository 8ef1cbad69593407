import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from fastapi import WebSocket

from pintuchat.config import get_settings


logger = logging.getLogger(__name__)

CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class PushConnection:
    """One open push channel: a WebSocket, its outbox and the task writing it."""

    def __init__(self, user_id: str, websocket: WebSocket, queue_size: int, send_timeout: float) -> None:
        self.user_id = user_id
        self.websocket = websocket
        self.state = ConnectionState.CONNECTING
        self._send_timeout = send_timeout
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    def enqueue(self, payload: str) -> bool:
        if self.state is not ConnectionState.OPEN:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    async def drain(self) -> None:
        await self._outbox.join()

    def start(self, on_failure: Callable[["PushConnection", Exception], None]) -> None:
        self.state = ConnectionState.OPEN
        self._writer = asyncio.create_task(self._write_loop(on_failure), name=f"push-writer:{self.user_id}")

    def stop(self) -> None:
        self.state = ConnectionState.CLOSED
        writer = self._writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()
        self._discard_pending()

    async def _write_loop(self, on_failure: Callable[["PushConnection", Exception], None]) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                await asyncio.wait_for(self.websocket.send_text(payload), timeout=self._send_timeout)
            except Exception as exc:
                self._discard_pending()
                on_failure(self, exc)
                return
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()


class ConnectionManager:
    """
    Process-wide map of user id to the push connections currently open for it.

    Every mutation happens without an intervening ``await`` so a user's set is
    never observed half-updated. Sends only enqueue; the network write is done
    by each connection's writer task, so a slow socket never blocks a caller.
    """

    def __init__(self) -> None:
        self.active_connections: Dict[str, Set[PushConnection]] = {}
        self._closing: Set[asyncio.Task] = set()

    async def connect(self, user_id: str, websocket: WebSocket) -> PushConnection:
        settings = get_settings()
        connection = PushConnection(user_id, websocket, settings.push_queue_size, settings.push_send_timeout)
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(connection)
        connection.start(self._on_send_failure)
        logger.info("Push channel opened for user %s (%d open)", user_id, len(self.active_connections[user_id]))
        return connection

    def disconnect(self, connection: PushConnection) -> None:
        was_open = connection.state is not ConnectionState.CLOSED
        connection.stop()
        handles = self.active_connections.get(connection.user_id)
        if handles is not None:
            handles.discard(connection)
            if not handles:
                del self.active_connections[connection.user_id]
        if was_open:
            logger.info("Push channel closed for user %s", connection.user_id)

    def evict(self, connection: PushConnection, reason: str, code: int = CLOSE_INTERNAL_ERROR) -> None:
        if connection.state is ConnectionState.CLOSED:
            return
        logger.warning("Evicting push connection of user %s: %s", connection.user_id, reason)
        self.disconnect(connection)
        # the client sees the close, reconnects and resyncs over REST
        task = asyncio.create_task(self._close_quietly(connection, code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def connections_for(self, user_id: str) -> List[PushConnection]:
        return list(self.active_connections.get(user_id, ()))

    def deliver(self, connection: PushConnection, payload: str) -> bool:
        if connection.enqueue(payload):
            return True
        self.evict(connection, "outbox full", code=CLOSE_TRY_AGAIN_LATER)
        return False

    def send_personal_message(self, receiver_id: str, message: str) -> int:
        return sum(1 for conn in self.connections_for(receiver_id) if self.deliver(conn, message))

    async def close_all(self) -> None:
        connections = [conn for handles in self.active_connections.values() for conn in handles]
        for conn in connections:
            self.disconnect(conn)
            await self._close_quietly(conn, CLOSE_GOING_AWAY)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    def _on_send_failure(self, connection: PushConnection, exc: Exception) -> None:
        self.evict(connection, f"send failed: {exc!r}")

    async def _close_quietly(self, connection: PushConnection, code: int) -> None:
        try:
            await connection.websocket.close(code=code)
        except Exception as exc:
            # already closed by the peer
            logger.debug("Close of push connection for user %s failed: %r", connection.user_id, exc)
