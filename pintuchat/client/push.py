"""
Keeps a session's push channel connected.

Frames go to ``MessagingSession.handle_push``. A dropped channel is marked
closed and reopened after a growing delay; reopening invalidates the session's
caches, so whatever was pushed during the gap is pulled on the next read.
"""

import asyncio
import contextlib
import logging
from typing import Optional
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import InvalidStatus, WebSocketException

from pintuchat.client.session import MessagingSession


logger = logging.getLogger(__name__)


class PushChannel:

    def __init__(
        self,
        session: MessagingSession,
        url: str,
        token: str,
        reconnect_interval: float = 5.0,
        max_reconnect_interval: float = 60.0,
    ) -> None:
        self.session = session
        self.url = url
        self.reconnect_interval = reconnect_interval
        self.max_reconnect_interval = max_reconnect_interval
        self._token = token
        self._stopping = asyncio.Event()
        self._ws: Optional[ClientConnection] = None
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run(), name=f"push-channel:{self.session.cache.user_id}")
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        delay = self.reconnect_interval
        while not self._stopping.is_set():
            try:
                async with connect(f"{self.url}?{urlencode({'token': self._token})}") as ws:
                    self._ws = ws
                    self.session.channel_opened()
                    delay = self.reconnect_interval
                    try:
                        async for frame in ws:
                            self.session.handle_push(frame)
                    finally:
                        self._ws = None
                        self.session.channel_closed()
                logger.info("Push channel to %s closed (code %s)", self.url, ws.close_code)
            except InvalidStatus as exc:
                if exc.response.status_code == 403:
                    # the token was refused; retrying it cannot succeed
                    logger.error("Push channel to %s rejected the session token", self.url)
                    return
                logger.warning("Push channel handshake with %s failed: %s", self.url, exc)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning("Push channel to %s dropped: %r", self.url, exc)

            if self._stopping.is_set():
                return
            logger.debug("Reconnecting push channel in %.2fs", delay)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            delay = min(delay * 2, self.max_reconnect_interval)
