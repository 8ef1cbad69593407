import asyncio
import logging
from typing import Optional, Union

from pintuchat.config import get_settings
from pintuchat.errors import DeliveryFailure
from pintuchat.models.message import MessageDocument
from pintuchat.schemas.events import MessagesReadEvent, NewMessageEvent, encode_event
from pintuchat.schemas.message import Message
from pintuchat.utils.realtime_bus import Bus, user_channel
from pintuchat.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)


class RealtimeDispatcher:
    """
    Best-effort push of committed changes to the affected user's connections.

    Nothing raised here reaches the request that triggered it: a user with no
    open connection, a full outbox or a bus outage all degrade to "the client
    sees it on its next pull".
    """

    def __init__(self, manager: ConnectionManager, bus: Bus, publish_timeout: Optional[float] = None) -> None:
        self._manager = manager
        self._bus = bus
        self._publish_timeout = publish_timeout or get_settings().push_send_timeout

    async def notify_new_message(self, message: MessageDocument) -> None:
        event = NewMessageEvent(message=Message.from_document(message))
        await self._deliver(message["receiver_id"], event)

    async def notify_read(self, reader_id: str, counterpart_id: str) -> None:
        # the original sender learns that its thread with the reader was read
        await self._deliver(counterpart_id, MessagesReadEvent(counterpart_id=reader_id))

    async def _deliver(self, user_id: str, event: Union[NewMessageEvent, MessagesReadEvent]) -> None:
        payload = encode_event(event)
        if self._bus.enabled:
            try:
                await self._publish(user_channel(user_id), payload)
            except DeliveryFailure as exc:
                logger.warning("Dropped %s event for user %s: %s", event.type, user_id, exc.message)
            return
        delivered = self._manager.send_personal_message(user_id, payload)
        if not delivered:
            logger.debug("No open push connection for user %s, %s left to pull", user_id, event.type)

    async def _publish(self, channel: str, payload: str) -> None:
        # runs under the conversation lock, so it is bounded like a socket send
        try:
            await asyncio.wait_for(self._bus.publish(channel, payload), timeout=self._publish_timeout)
        except asyncio.TimeoutError:
            raise DeliveryFailure("Realtime bus publish timed out", details={"channel": channel}) from None
