from datetime import datetime
from typing import Optional, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    # store-wide insertion order
    seq: int
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    # the only mutable fields
    is_read: bool
    read_at: Optional[datetime]
