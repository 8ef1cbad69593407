import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Tuple

from pymongo.errors import PyMongoError

from pintuchat.errors import NotFoundError, StoreUnavailableError
from pintuchat.models.conversation import ConversationDocument
from pintuchat.models.message import MessageDocument
from pintuchat.repositories.conversation_repository import ConversationRepository
from pintuchat.repositories.message_repository import MessageRepository
from pintuchat.repositories.user_repository import UserRepository
from pintuchat.services.realtime_dispatcher import RealtimeDispatcher
from pintuchat.utils.locks import KeyedLocks, pair_key


logger = logging.getLogger(__name__)

# serializes store write + dispatch per conversation so events leave in commit order
_pair_locks = KeyedLocks()


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except PyMongoError as exc:
        logger.error("Message store failure during %s", operation, exc_info=True)
        raise StoreUnavailableError(
            "Message store is temporarily unavailable, please retry",
            code="store_unavailable",
            details={"operation": operation},
        ) from exc


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        dispatcher: RealtimeDispatcher,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._dispatcher = dispatcher

    async def list_conversations(self, user_id: str) -> List[ConversationDocument]:
        async with store_errors("list_conversations"):
            return await self._conversation_repo.list_for_user(user_id)

    async def get_thread(
        self,
        user_id: str,
        counterpart_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        # reading a thread never marks it read; that is an explicit call
        async with store_errors("list_thread"):
            return await self._message_repo.list_thread(user_id, counterpart_id, limit=limit, cursor=cursor)

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> MessageDocument:
        async with store_errors("send"):
            reachable = await self._user_repo.is_reachable(receiver_id)
        if not reachable:
            raise NotFoundError("Receiver not found", code="receiver_not_found", details={"receiver_id": receiver_id})

        async with _pair_locks.hold(pair_key(sender_id, receiver_id)):
            async with store_errors("send"):
                saved = await self._message_repo.append(sender_id, receiver_id, content)
            await self._dispatcher.notify_new_message(saved)
        logger.debug("Message %s stored from %s to %s", saved["_id"], sender_id, receiver_id)
        return saved

    async def mark_read(self, reader_id: str, counterpart_id: str) -> int:
        async with _pair_locks.hold(pair_key(reader_id, counterpart_id)):
            async with store_errors("mark_read"):
                updated = await self._message_repo.mark_read(reader_id, counterpart_id)
            if updated:
                await self._dispatcher.notify_read(reader_id, counterpart_id)
        return updated
