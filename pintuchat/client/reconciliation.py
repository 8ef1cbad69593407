"""
Client-side cache of the conversation list and the open thread.

Two sources update it: pulls over REST and events from the push channel. The
store behind the REST API is the source of truth, so a push never replaces
pulled state; it either patches the open thread optimistically or marks a
cache stale so the next read pulls again.
"""

import bisect
import logging
from typing import List, Optional, Union

from pydantic import ValidationError as PayloadError

from pintuchat.schemas.events import MessagesReadEvent, NewMessageEvent, push_event_adapter
from pintuchat.schemas.message import Conversation, Message, ThreadPage
from pintuchat.utils.websocket_manager import ConnectionState


logger = logging.getLogger(__name__)


def _created_at(message: Message):
    return message.created_at


class ReconciliationCache:

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.channel_state = ConnectionState.CLOSED
        self._conversations: Optional[List[Conversation]] = None
        self.conversations_stale = True
        self.open_counterpart: Optional[str] = None
        self._thread: List[Message] = []
        self.thread_stale = True
        self.next_cursor: Optional[str] = None

    @property
    def conversations(self) -> Optional[List[Conversation]]:
        return list(self._conversations) if self._conversations is not None else None

    @property
    def thread(self) -> List[Message]:
        return list(self._thread)

    def store_conversations(self, items: List[Conversation]) -> None:
        self._conversations = list(items)
        self.conversations_stale = False

    def open(self, counterpart_id: str) -> None:
        if counterpart_id != self.open_counterpart:
            self._thread = []
            self.next_cursor = None
        self.open_counterpart = counterpart_id
        self.thread_stale = True

    def close_thread(self) -> None:
        self.open_counterpart = None
        self._thread = []
        self.next_cursor = None
        self.thread_stale = True

    def store_thread(self, counterpart_id: str, page: ThreadPage) -> bool:
        """
        Replace the open thread with a freshly pulled latest page.

        A page for a thread that is no longer open is dropped. Messages pushed
        while the pull was in flight survive when they are newer than the page,
        and a read flag already seen locally is kept since reads never revert.
        """
        if counterpart_id != self.open_counterpart:
            return False
        known = {m.id: m for m in self._thread}
        merged: List[Message] = []
        for msg in page.items:
            cached = known.pop(msg.id, None)
            if cached is not None and cached.is_read and not msg.is_read:
                msg = msg.model_copy(update={"is_read": True})
            merged.append(msg)
        newest = merged[-1].created_at if merged else None
        self._thread = merged
        for msg in known.values():
            if newest is None or msg.created_at >= newest:
                bisect.insort_right(self._thread, msg, key=_created_at)
        self.next_cursor = page.next_cursor
        self.thread_stale = False
        return True

    def prepend_older(self, counterpart_id: str, page: ThreadPage) -> bool:
        if counterpart_id != self.open_counterpart:
            return False
        ids = {m.id for m in self._thread}
        self._thread = [m for m in page.items if m.id not in ids] + self._thread
        self.next_cursor = page.next_cursor
        return True

    def invalidate_conversations(self) -> None:
        self.conversations_stale = True

    def invalidate_thread(self) -> None:
        self.thread_stale = True

    def apply_event(self, payload: Union[str, bytes, dict]) -> Optional[Union[NewMessageEvent, MessagesReadEvent]]:
        try:
            if isinstance(payload, (str, bytes)):
                event = push_event_adapter.validate_json(payload)
            else:
                event = push_event_adapter.validate_python(payload)
        except PayloadError as exc:
            logger.warning("Ignoring unrecognised push event: %s", exc.errors(include_url=False))
            return None

        if isinstance(event, NewMessageEvent):
            self._insert_into_thread(event.message)
        elif event.counterpart_id == self.open_counterpart:
            self._mark_thread_read(sender_id=self.user_id)
        self.invalidate_conversations()
        return event

    def channel_opened(self) -> None:
        # anything may have happened while the channel was down
        if self.channel_state is not ConnectionState.OPEN:
            self.invalidate_conversations()
            self.invalidate_thread()
        self.channel_state = ConnectionState.OPEN

    def channel_closed(self) -> None:
        self.channel_state = ConnectionState.CLOSED

    def record_sent(self, message: Message) -> None:
        # the server does not echo our own sends back to us
        self._insert_into_thread(message)
        self.invalidate_conversations()

    def record_read(self, counterpart_id: str) -> None:
        if counterpart_id == self.open_counterpart:
            self._mark_thread_read(sender_id=counterpart_id)
        self.invalidate_conversations()

    def _insert_into_thread(self, message: Message) -> bool:
        if self.open_counterpart is None or not message.involves(self.user_id, self.open_counterpart):
            return False
        if any(m.id == message.id for m in self._thread):
            return False
        bisect.insort_right(self._thread, message, key=_created_at)
        return True

    def _mark_thread_read(self, sender_id: str) -> None:
        self._thread = [
            m.model_copy(update={"is_read": True}) if m.sender_id == sender_id and not m.is_read else m
            for m in self._thread
        ]
