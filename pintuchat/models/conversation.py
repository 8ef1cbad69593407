from typing import Optional, TypedDict

from pintuchat.models.message import MessageDocument
from pintuchat.models.user import UserDocument


class ConversationDocument(TypedDict, total=False):
    # derived on every read, never written
    counterpart_id: str
    counterpart: Optional[UserDocument]
    last_message: MessageDocument
    unread_count: int
