"""
Message store.

Append-only record of private and room messages. Every read resolves the
sender/receiver references into display summaries so callers always get the
canonical resolved shape. The store never publishes anything.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from .errors import Forbidden, InternalError, NotFound, Unauthenticated
from .models import (
    Message,
    MessageKind,
    RecentConversation,
    UserSummary,
    check_routing,
    parse_object_id,
    utcnow,
)
from .rooms import RoomDirectory
from .users import UserDirectory

logger = logging.getLogger(__name__)

# ties on created_at fall back to insertion order
OLDEST_FIRST = [('created_at', ASCENDING), ('_id', ASCENDING)]
NEWEST_FIRST = [('created_at', DESCENDING), ('_id', DESCENDING)]


class MessageStore:

    def __init__(self, db: AsyncIOMotorDatabase, users: UserDirectory, rooms: RoomDirectory):
        self.collection = db['messages']
        self.users = users
        self.rooms = rooms

    async def create_private_message(self, sender_id: str, receiver_id: str, text: str,
                                     media: Optional[str] = None) -> Message:
        sender = _actor(sender_id)
        receiver = parse_object_id(receiver_id, 'receiver')
        summaries = await self.users.get_summaries([sender, receiver])
        if sender not in summaries:
            raise Unauthenticated('Authenticated user no longer exists')
        if receiver not in summaries:
            raise NotFound('Receiver not found', details={'receiver': receiver_id})

        doc = _new_document(MessageKind.PRIVATE, sender, text, media, receiver=receiver)
        await self._insert(doc)
        return self._resolve(doc, summaries)

    async def create_room_message(self, sender_id: str, room_id: str, text: str,
                                  media: Optional[str] = None) -> Message:
        """Persist a room message.

        Membership is not checked here; public-room senders are added to the
        member list as a side effect.
        """
        sender = _actor(sender_id)
        room = await self.rooms.get(room_id)
        summaries = await self.users.get_summaries([sender])
        if sender not in summaries:
            raise Unauthenticated('Authenticated user no longer exists')

        doc = _new_document(MessageKind.ROOM, sender, text, media, room=ObjectId(room.id))
        await self._insert(doc)
        if str(sender) not in room.members:
            try:
                await self.rooms.ensure_member(room.id, str(sender))
            except PyMongoError:
                logger.warning('[STORE] could not add %s to members of room %s', sender_id, room.id, exc_info=True)
        return self._resolve(doc, summaries)

    async def get(self, message_id: str) -> Message:
        doc = await self._find_one(message_id)
        summaries = await self.users.get_summaries(_participants(doc))
        return self._resolve(doc, summaries)

    async def list_private_messages(self, user_a: str, user_b: str) -> List[Message]:
        a = parse_object_id(user_a, 'user')
        b = parse_object_id(user_b, 'user')
        query = {
            'kind': MessageKind.PRIVATE.value,
            '$or': [{'sender': a, 'receiver': b}, {'sender': b, 'receiver': a}],
        }
        docs = await self._find(query, OLDEST_FIRST)
        summaries = await self.users.get_summaries([a, b])
        return [self._resolve(doc, summaries) for doc in docs]

    async def list_room_messages(self, room_id: str) -> List[Message]:
        room = await self.rooms.get(room_id)
        docs = await self._find({'kind': MessageKind.ROOM.value, 'room': ObjectId(room.id)}, OLDEST_FIRST)
        summaries = await self.users.get_summaries(doc['sender'] for doc in docs)
        return [self._resolve(doc, summaries) for doc in docs]

    async def recent_conversations(self, user_id: str) -> List[RecentConversation]:
        """Latest message time per conversation partner, newest first.

        The query is already newest first, so the first message seen for a
        partner is its latest one and the map keeps that order.
        """
        uid = parse_object_id(user_id, 'user')
        query = {'kind': MessageKind.PRIVATE.value, '$or': [{'sender': uid}, {'receiver': uid}]}
        latest: Dict[ObjectId, Any] = {}
        for doc in await self._find(query, NEWEST_FIRST):
            other = doc['receiver'] if doc['sender'] == uid else doc['sender']
            if other not in latest:
                latest[other] = doc['created_at']

        summaries = await self.users.get_summaries(latest.keys())
        return [
            RecentConversation(participant=self.users.summary_for(summaries, other), last_message_time=when)
            for other, when in latest.items()
        ]

    async def conversation_participants(self, user_id: str) -> List[UserSummary]:
        uid = parse_object_id(user_id, 'user')
        kind = MessageKind.PRIVATE.value
        try:
            received_from = await self.collection.distinct('sender', {'kind': kind, 'receiver': uid})
            sent_to = await self.collection.distinct('receiver', {'kind': kind, 'sender': uid})
        except PyMongoError as exc:
            raise self._internal('participants lookup failed', exc, user=user_id)
        others = sorted(set(received_from) | set(sent_to))
        summaries = await self.users.get_summaries(others)
        return [self.users.summary_for(summaries, other) for other in others]

    async def mark_seen(self, message_id: str, actor_id: str) -> Message:
        doc = await self._find_one(message_id)
        if doc['kind'] != MessageKind.PRIVATE.value:
            raise Forbidden('Only private messages carry a seen flag', details={'message': message_id})
        if doc['receiver'] != parse_object_id(actor_id, 'actor'):
            raise Forbidden('Only the receiver can mark a message as seen', details={'message': message_id})
        if not doc.get('seen'):
            now = utcnow()
            try:
                await self.collection.update_one({'_id': doc['_id']}, {'$set': {'seen': True, 'updated_at': now}})
            except PyMongoError as exc:
                raise self._internal('mark seen failed', exc, message=message_id)
            doc.update(seen=True, updated_at=now)
        summaries = await self.users.get_summaries(_participants(doc))
        return self._resolve(doc, summaries)

    async def _insert(self, doc: Dict[str, Any]) -> None:
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            raise self._internal('insert failed', exc, sender=str(doc['sender']),
                                 receiver=str(doc.get('receiver')), room=str(doc.get('room')))
        doc['_id'] = result.inserted_id
        logger.info('[STORE] %s message %s from %s', doc['kind'], result.inserted_id, doc['sender'])

    async def _find(self, query: Dict[str, Any], sort) -> List[Dict[str, Any]]:
        try:
            return await self.collection.find(query).sort(sort).to_list(length=None)
        except PyMongoError as exc:
            raise self._internal('query failed', exc, query=str(query))

    async def _find_one(self, message_id: str) -> Dict[str, Any]:
        oid = parse_object_id(message_id, 'message')
        try:
            doc = await self.collection.find_one({'_id': oid})
        except PyMongoError as exc:
            raise self._internal('lookup failed', exc, message=message_id)
        if not doc:
            raise NotFound('Message not found', details={'message': message_id})
        return doc

    def _resolve(self, doc: Dict[str, Any], summaries: Dict[ObjectId, UserSummary]) -> Message:
        receiver = doc.get('receiver')
        return Message(
            id=str(doc['_id']),
            kind=doc['kind'],
            sender=self.users.summary_for(summaries, doc['sender']),
            receiver=self.users.summary_for(summaries, receiver) if receiver else None,
            room=str(doc['room']) if doc.get('room') else None,
            text=doc.get('text', ''),
            media=doc.get('media'),
            seen=doc.get('seen', False),
            created_at=doc['created_at'],
            updated_at=doc.get('updated_at', doc['created_at']),
        )

    @staticmethod
    def _internal(what: str, exc: Exception, **context: str) -> InternalError:
        logger.error('[STORE] %s: %s %s', what, exc, context)
        return InternalError('Message store unavailable', details=context)


def _actor(sender_id: Optional[str]) -> ObjectId:
    if not sender_id:
        raise Unauthenticated('No authenticated user')
    return parse_object_id(sender_id, 'sender')


def _participants(doc: Dict[str, Any]) -> List[ObjectId]:
    return [doc['sender']] + ([doc['receiver']] if doc.get('receiver') else [])


def _new_document(kind: MessageKind, sender: ObjectId, text: str, media: Optional[str],
                  receiver: Optional[ObjectId] = None, room: Optional[ObjectId] = None) -> Dict[str, Any]:
    check_routing(kind, receiver, room)
    now = utcnow()
    return {
        'kind': kind.value,
        'sender': sender,
        'receiver': receiver,
        'room': room,
        'text': text,
        'media': media,
        'seen': False,
        'created_at': now,
        'updated_at': now,
    }
