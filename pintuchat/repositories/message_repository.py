from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.write_concern import WriteConcern

from pintuchat.errors import ValidationError
from pintuchat.models.conversation import ConversationDocument
from pintuchat.models.message import MessageDocument


SEQUENCE_ID = "messages"


def validate_message(sender_id: str, receiver_id: str, content: Optional[str], max_length: int) -> str:
    if sender_id == receiver_id:
        raise ValidationError("Cannot send a message to yourself", code="self_addressed")
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty", code="empty_content")
    if len(text) > max_length:
        raise ValidationError(
            "Message content is too long",
            code="content_too_long",
            details={"max_length": max_length, "length": len(text)},
        )
    return text


def decode_cursor(cursor: str) -> int:
    # cursor is the seq of the oldest message on the previous page
    try:
        seq = int(cursor)
    except (TypeError, ValueError):
        raise ValidationError("Invalid cursor", code="invalid_cursor", details={"cursor": cursor}) from None
    if seq < 1:
        raise ValidationError("Invalid cursor", code="invalid_cursor", details={"cursor": cursor})
    return seq


def normalize(doc: Dict[str, Any]) -> MessageDocument:
    doc["_id"] = str(doc.get("_id"))
    created_at = doc.get("created_at")
    # pymongo hands back naive UTC unless the client is tz_aware
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        doc["created_at"] = created_at.replace(tzinfo=timezone.utc)
    return doc  # type: ignore[return-value]


def _pair_query(user_a: str, user_b: str) -> Dict[str, Any]:
    return {
        "$or": [
            {"sender_id": user_a, "receiver_id": user_b},
            {"sender_id": user_b, "receiver_id": user_a},
        ]
    }


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, max_length: int = 2000) -> None:
        self._db = db
        self._max_length = max_length

    @property
    def collection(self):
        # acknowledged by a majority before append returns
        return self._db.get_collection("messages", write_concern=WriteConcern(w="majority"))

    @property
    def counters(self):
        return self._db.get_collection("counters", write_concern=WriteConcern(w="majority"))

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("seq", ASCENDING)], unique=True)
        await self.collection.create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("seq", DESCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("sender_id", ASCENDING), ("is_read", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("seq", DESCENDING)])

    async def _next_sequence(self) -> Tuple[int, datetime]:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        counter = await self.counters.find_one_and_update(
            {"_id": SEQUENCE_ID},
            {"$inc": {"seq": 1}, "$max": {"last_ms": now_ms}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        created_at = datetime.fromtimestamp(counter["last_ms"] / 1000.0, tz=timezone.utc)
        return counter["seq"], created_at

    async def latest_sequence(self) -> int:
        counter = await self.counters.find_one({"_id": SEQUENCE_ID})
        return int(counter["seq"]) if counter else 0

    async def append(self, sender_id: str, receiver_id: str, content: str) -> MessageDocument:
        text = validate_message(sender_id, receiver_id, content, self._max_length)
        seq, created_at = await self._next_sequence()
        doc: Dict[str, Any] = {
            "seq": seq,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": text,
            "created_at": created_at,
            "is_read": False,
            "read_at": None,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc  # type: ignore[return-value]

    async def list_thread(
        self,
        user_a: str,
        user_b: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageDocument], Optional[str]]:
        """
        Return the newest ``limit`` messages of the pair older than ``cursor``.

        Items come back oldest first. ``next_cursor`` fetches the page before
        this one and is ``None`` once the start of the thread is reached.
        """
        query = _pair_query(user_a, user_b)
        if cursor:
            query["seq"] = {"$lt": decode_cursor(cursor)}
        cur = self.collection.find(query).sort([("seq", DESCENDING)]).limit(limit + 1)
        items = await cur.to_list(length=limit + 1)
        has_more = len(items) > limit
        items = [normalize(it) for it in items[:limit]]
        next_cursor = str(items[-1]["seq"]) if has_more else None
        return list(reversed(items)), next_cursor

    async def conversation_summaries(self, user_id: str) -> List[ConversationDocument]:
        """
        One row per counterpart of ``user_id``, most recent activity first.

        Each row holds the latest message of the pair and how many messages from
        the counterpart ``user_id`` has not read yet, folded by MongoDB.
        """
        pipeline = [
            {"$match": {"$or": [{"sender_id": user_id}, {"receiver_id": user_id}]}},
            {"$sort": {"seq": DESCENDING}},
            {
                "$group": {
                    "_id": {"$cond": [{"$eq": ["$sender_id", user_id]}, "$receiver_id", "$sender_id"]},
                    "last_seq": {"$first": "$seq"},
                    "last_message": {"$first": "$$ROOT"},
                    "unread_count": {
                        "$sum": {
                            "$cond": [
                                {"$and": [{"$eq": ["$receiver_id", user_id]}, {"$eq": ["$is_read", False]}]},
                                1,
                                0,
                            ]
                        }
                    },
                }
            },
            {"$sort": {"last_seq": DESCENDING}},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return [
            {
                "counterpart_id": row["_id"],
                "last_message": normalize(row["last_message"]),
                "unread_count": row["unread_count"],
            }
            for row in rows
        ]

    async def mark_read(self, reader_id: str, counterpart_id: str) -> int:
        # messages appended after this point must stay unread
        high_water = await self.latest_sequence()
        if not high_water:
            return 0
        result = await self.collection.update_many(
            {
                "receiver_id": reader_id,
                "sender_id": counterpart_id,
                "is_read": False,
                "seq": {"$lte": high_water},
            },
            {"$set": {"is_read": True, "read_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0
