from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserPublic(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    # passed through as stored in the users collection
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_document(cls, user_id: str, doc: Optional[dict]) -> "UserPublic":
        if not doc:
            return cls(id=user_id)
        return cls(id=user_id, email=doc.get("email"), full_name=doc.get("full_name"), role=doc.get("role"))


class TokenPayload(BaseModel):

    sub: str
    exp: int
