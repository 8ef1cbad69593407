import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pintuchat.database.connection import mongo_db_dependency
from pintuchat.models.user import UserDocument
from pintuchat.repositories.user_repository import UserRepository
from pintuchat.utils.security import decode_access_token


logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def resolve_token_user(token: Optional[str], user_repo: UserRepository) -> Optional[UserDocument]:
    """Return the user a token was issued to, or ``None`` if it does not verify."""
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except jwt.PyJWTError as exc:
        logger.info("Rejected access token: %s", exc)
        return None
    return await user_repo.get_user_by_id(payload.sub)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(mongo_db_dependency),
) -> UserDocument:
    token = credentials.credentials if credentials else None
    user = await resolve_token_user(token, UserRepository(db))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if user.get("is_blocked", False):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is blocked")
    return user
