from typing import Dict, Iterable, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase

from pintuchat.models.user import UserDocument


def to_object_id(user_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(user_id)
    except (InvalidId, TypeError):
        return None


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        user = await self._collection.find_one({"_id": oid})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> Dict[str, UserDocument]:
        oids = [oid for oid in (to_object_id(uid) for uid in user_ids) if oid is not None]
        if not oids:
            return {}
        cursor = self._collection.find({"_id": {"$in": oids}}, {"hashed_password": 0})
        users = await cursor.to_list(length=len(oids))
        result: Dict[str, UserDocument] = {}
        for user in users:
            user["_id"] = str(user["_id"])
            result[user["_id"]] = user
        return result

    async def is_reachable(self, user_id: str) -> bool:
        user = await self.get_user_by_id(user_id)
        return bool(user) and not user.get("is_blocked", False)
