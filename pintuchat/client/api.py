from typing import Any, Dict, List, Optional

import httpx
from pydantic import TypeAdapter

from pintuchat.errors import NotFoundError, StoreUnavailableError, ValidationError
from pintuchat.schemas.message import Conversation, MarkReadResponse, Message, SendMessageRequest, ThreadPage


_conversation_list = TypeAdapter(List[Conversation])


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    error_cls = None
    if response.status_code == 400:
        error_cls = ValidationError
    elif response.status_code == 404:
        error_cls = NotFoundError
    elif response.status_code >= 500:
        error_cls = StoreUnavailableError
    if error_cls is None:
        # auth and request-shape errors are the caller's bug, not a messaging outcome
        response.raise_for_status()
    detail: Dict[str, Any] = {}
    try:
        body = response.json()
        if isinstance(body, dict) and isinstance(body.get("detail"), dict):
            detail = body["detail"]
    except ValueError:
        pass
    raise error_cls(
        detail.get("message") or response.reason_phrase or "Request failed",
        code=detail.get("code"),
        details=detail.get("details"),
    )


class MessagingApiClient:
    """Typed wrapper over the messaging REST endpoints for one authenticated user."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    @classmethod
    def connect(cls, base_url: str, token: str, **kwargs: Any) -> "MessagingApiClient":
        headers = {"Authorization": f"Bearer {token}"}
        return cls(httpx.AsyncClient(base_url=base_url, headers=headers, **kwargs))

    async def aclose(self) -> None:
        await self._http.aclose()

    async def list_conversations(self) -> List[Conversation]:
        response = await self._http.get("/messages")
        _raise_for_status(response)
        return _conversation_list.validate_python(response.json())

    async def get_thread(self, counterpart_id: str, cursor: Optional[str] = None, limit: Optional[int] = None) -> ThreadPage:
        params: Dict[str, Any] = {}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit
        response = await self._http.get(f"/messages/{counterpart_id}", params=params)
        _raise_for_status(response)
        return ThreadPage.model_validate(response.json())

    async def send_message(self, receiver_id: str, content: str) -> Message:
        body = SendMessageRequest(receiver_id=receiver_id, content=content).model_dump(by_alias=True)
        response = await self._http.post("/messages", json=body)
        _raise_for_status(response)
        return Message.model_validate(response.json())

    async def mark_read(self, counterpart_id: str) -> int:
        response = await self._http.patch(f"/messages/{counterpart_id}/read")
        _raise_for_status(response)
        return MarkReadResponse.model_validate(response.json()).updated_count

