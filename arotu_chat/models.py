# Pydantic models for messages, rooms and the REST bodies around them.
# Documents are stored with ObjectId references; everything leaving the
# service is converted to the string-id models below.
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import InvalidArgument


def parse_object_id(value: Any, field: str = 'id') -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidArgument(f'Malformed {field}', details={field: str(value)})
    return ObjectId(value)


def utcnow() -> datetime:
    # BSON dates keep milliseconds only; truncate so what we return on
    # create is identical to what a later read gives back
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MessageKind(str, Enum):
    PRIVATE = 'private'
    ROOM = 'room'


class RoomType(str, Enum):
    MAIN = 'main'
    SUB = 'sub'


class UserSummary(BaseModel):
    id: str
    username: Optional[str] = None
    avatar: str = ''


class Message(BaseModel):
    """Canonical resolved message, as returned by the API and delivered live."""

    id: str
    kind: MessageKind
    sender: UserSummary
    receiver: Optional[UserSummary] = None
    room: Optional[str] = None
    text: str
    media: Optional[str] = None
    seen: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator('created_at', 'updated_at')
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode='after')
    def _routing(self) -> 'Message':
        check_routing(self.kind, self.receiver, self.room)
        return self

    @property
    def routing_key(self) -> str:
        if self.kind == MessageKind.PRIVATE:
            return self.receiver.id
        return self.room


def check_routing(kind: Any, receiver: Any, room: Any) -> None:
    """Exactly one of receiver/room is set, and it matches the stored kind."""
    if kind == MessageKind.PRIVATE and (receiver is None or room is not None):
        raise ValueError('private message must have a receiver and no room')
    if kind == MessageKind.ROOM and (room is None or receiver is not None):
        raise ValueError('room message must have a room and no receiver')


class RecentConversation(BaseModel):
    participant: UserSummary
    last_message_time: datetime

    @field_validator('last_message_time')
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class Room(BaseModel):
    id: str
    name: str
    is_private: bool = False
    members: List[str] = []
    admins: List[str] = []
    creator: Optional[str] = None
    parent_room: Optional[str] = None
    type: RoomType = RoomType.MAIN
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Room':
        return cls(
            id=str(doc['_id']),
            name=doc['name'],
            is_private=doc.get('is_private', False),
            members=[str(m) for m in doc.get('members', [])],
            admins=[str(a) for a in doc.get('admins', [])],
            creator=str(doc['creator']) if doc.get('creator') else None,
            parent_room=str(doc['parent_room']) if doc.get('parent_room') else None,
            type=doc.get('type', RoomType.MAIN),
            created_at=doc.get('created_at'),
        )

    def can_access(self, identity: str) -> bool:
        return not self.is_private or identity in self.members

    def is_admin(self, identity: str) -> bool:
        return identity in self.admins


# Request bodies

class PrivateMessageCreate(BaseModel):
    receiver: str
    text: str
    media: Optional[str] = None


class RoomMessageCreate(BaseModel):
    text: str
    media: Optional[str] = None


class RoomCreate(BaseModel):
    name: str = Field(..., min_length=1)
    is_private: bool = False
    members: List[str] = []
    parent_room: Optional[str] = None
    type: RoomType = RoomType.MAIN


class MemberAdd(BaseModel):
    # omitted means "add myself"
    user_id: Optional[str] = None


class AdminAdd(BaseModel):
    user_id: str
