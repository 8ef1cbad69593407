"""Push channel payloads (server to client only)."""

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from pintuchat.schemas.message import CamelModel, Message


class NewMessageEvent(CamelModel):

    type: Literal["new_message"] = "new_message"
    message: Message


class MessagesReadEvent(CamelModel):

    type: Literal["messages_read"] = "messages_read"
    # the user who read; the recipient's thread with them flipped to read
    counterpart_id: str


PushEvent = Annotated[Union[NewMessageEvent, MessagesReadEvent], Field(discriminator="type")]

push_event_adapter = TypeAdapter(PushEvent)


def encode_event(event: Union[NewMessageEvent, MessagesReadEvent]) -> str:
    return event.model_dump_json(by_alias=True)
