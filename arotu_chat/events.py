# Client -> server WebSocket frames. Every frame carries a 'type' tag and is
# validated here before any handler sees it.
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Event(BaseModel):
    model_config = ConfigDict(extra='ignore')


class AnnounceIdentity(_Event):
    type: Literal['announce-identity']
    identity: Optional[str] = None


class JoinUserTopic(_Event):
    type: Literal['join-user-topic']
    identity: Optional[str] = None


class JoinRoomTopic(_Event):
    type: Literal['join-room-topic']
    room: str


class LeaveRoomTopic(_Event):
    type: Literal['leave-room-topic']
    room: str


class SendPrivate(_Event):
    type: Literal['send-private']
    receiver: str
    text: str
    media: Optional[str] = None


class SendRoom(_Event):
    type: Literal['send-room']
    room: str
    text: str
    media: Optional[str] = None


class Typing(_Event):
    type: Literal['typing']
    receiver: str
    is_typing: bool = True


ClientEvent = Annotated[
    Union[AnnounceIdentity, JoinUserTopic, JoinRoomTopic, LeaveRoomTopic, SendPrivate, SendRoom, Typing],
    Field(discriminator='type'),
]

client_event = TypeAdapter(ClientEvent)
