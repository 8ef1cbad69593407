from typing import List

from pintuchat.models.conversation import ConversationDocument
from pintuchat.repositories.message_repository import MessageRepository
from pintuchat.repositories.user_repository import UserRepository


class ConversationRepository:
    """
    Read projection of the ``messages`` collection into one row per counterpart.

    Nothing here is persisted: every call aggregates the requesting user's
    messages as they are in the store right now.
    """

    def __init__(self, message_repo: MessageRepository, user_repo: UserRepository) -> None:
        self._message_repo = message_repo
        self._user_repo = user_repo

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        items = await self._message_repo.conversation_summaries(user_id)
        profiles = await self._user_repo.get_users_by_ids(row["counterpart_id"] for row in items)
        for row in items:
            row["counterpart"] = profiles.get(row["counterpart_id"])
        return items
