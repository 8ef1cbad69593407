from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from pintuchat.schemas.user import UserPublic


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Message(CamelModel):

    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    is_read: bool = False

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def from_document(cls, doc: dict) -> "Message":
        return cls(
            id=str(doc["_id"]),
            sender_id=doc["sender_id"],
            receiver_id=doc["receiver_id"],
            content=doc["content"],
            created_at=doc["created_at"],
            is_read=doc.get("is_read", False),
        )

    def involves(self, user_a: str, user_b: str) -> bool:
        return {self.sender_id, self.receiver_id} == {user_a, user_b}


class SendMessageRequest(CamelModel):

    receiver_id: str
    # bounds are checked by the store so the error shape matches every other rejection
    content: str


class Conversation(CamelModel):

    counterpart: UserPublic
    last_message: Message
    unread_count: int

    @classmethod
    def from_document(cls, doc: dict) -> "Conversation":
        return cls(
            counterpart=UserPublic.from_document(doc["counterpart_id"], doc.get("counterpart")),
            last_message=Message.from_document(doc["last_message"]),
            unread_count=doc["unread_count"],
        )


class ThreadPage(CamelModel):

    items: List[Message]
    next_cursor: Optional[str] = None


class MarkReadResponse(CamelModel):

    updated_count: int
