import logging
from typing import List, Optional, Union

from pintuchat.client.api import MessagingApiClient
from pintuchat.client.reconciliation import ReconciliationCache
from pintuchat.schemas.events import MessagesReadEvent, NewMessageEvent
from pintuchat.schemas.message import Conversation, Message


logger = logging.getLogger(__name__)


class MessagingSession:
    """
    One signed-in user's view of their messages.

    Reads are served from the cache until something marks it stale, then pulled
    again. Push events and the user's own actions only ever patch or invalidate.
    """

    def __init__(self, api: MessagingApiClient, user_id: str) -> None:
        self.api = api
        self.cache = ReconciliationCache(user_id)

    async def conversations(self) -> List[Conversation]:
        if self.cache.conversations_stale or self.cache.conversations is None:
            self.cache.store_conversations(await self.api.list_conversations())
        return self.cache.conversations or []

    async def open_thread(self, counterpart_id: str) -> List[Message]:
        self.cache.open(counterpart_id)
        await self._pull_thread(counterpart_id)
        updated = await self.api.mark_read(counterpart_id)
        if updated:
            self.cache.record_read(counterpart_id)
        return self.cache.thread

    def close_thread(self) -> None:
        self.cache.close_thread()

    async def thread(self) -> List[Message]:
        counterpart_id = self.cache.open_counterpart
        if counterpart_id is None:
            return []
        if self.cache.thread_stale:
            await self._pull_thread(counterpart_id)
        return self.cache.thread

    async def load_older(self) -> List[Message]:
        counterpart_id = self.cache.open_counterpart
        if counterpart_id is None or not self.cache.next_cursor:
            return self.cache.thread
        page = await self.api.get_thread(counterpart_id, cursor=self.cache.next_cursor)
        self.cache.prepend_older(counterpart_id, page)
        return self.cache.thread

    async def send(self, receiver_id: str, content: str) -> Message:
        message = await self.api.send_message(receiver_id, content)
        self.cache.record_sent(message)
        return message

    def handle_push(self, payload: Union[str, bytes, dict]) -> Optional[Union[NewMessageEvent, MessagesReadEvent]]:
        return self.cache.apply_event(payload)

    def channel_opened(self) -> None:
        logger.debug("Push channel open for %s, caches invalidated", self.cache.user_id)
        self.cache.channel_opened()

    def channel_closed(self) -> None:
        self.cache.channel_closed()

    async def _pull_thread(self, counterpart_id: str) -> None:
        page = await self.api.get_thread(counterpart_id)
        self.cache.store_thread(counterpart_id, page)
