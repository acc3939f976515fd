"""
Room directory.

Room metadata (membership, admins, privacy, main/sub hierarchy) lives in
the rooms collection. The messaging core only asks it two things: does a
room exist, and may identity X publish to / subscribe to it.
"""
import logging
from typing import List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .errors import Forbidden, InvalidArgument, NotFound
from .models import Room, RoomCreate, RoomType, parse_object_id, utcnow

logger = logging.getLogger(__name__)


class RoomDirectory:

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db['rooms']

    async def get(self, room_id) -> Room:
        oid = parse_object_id(room_id, 'room')
        doc = await self.collection.find_one({'_id': oid})
        if not doc:
            raise NotFound('Room not found', details={'room': str(oid)})
        return Room.from_document(doc)

    async def create(self, creator_id: str, data: RoomCreate) -> Room:
        creator = parse_object_id(creator_id, 'creator')
        members = list(dict.fromkeys(parse_object_id(m, 'member') for m in data.members))
        if creator not in members:
            members.insert(0, creator)

        parent = None
        if data.type == RoomType.SUB:
            if not data.parent_room:
                raise InvalidArgument('A sub room needs a parent room')
            parent_room = await self.get(data.parent_room)
            if parent_room.type != RoomType.MAIN:
                raise InvalidArgument('Parent room must be a main room', details={'parent_room': parent_room.id})
            parent = ObjectId(parent_room.id)
        elif data.parent_room:
            raise InvalidArgument('A main room cannot have a parent room')

        doc = {
            'name': data.name,
            'is_private': data.is_private,
            'members': members,
            'admins': [creator],
            'creator': creator,
            'parent_room': parent,
            'type': data.type.value,
            'created_at': utcnow(),
        }
        result = await self.collection.insert_one(doc)
        doc['_id'] = result.inserted_id
        logger.info('[ROOMS] %s created room %s (private=%s)', creator_id, result.inserted_id, data.is_private)
        return Room.from_document(doc)

    async def list_accessible(self, user_id: str) -> List[Room]:
        uid = parse_object_id(user_id, 'user')
        query = {'$or': [{'is_private': False}, {'members': uid}]}
        cursor = self.collection.find(query).sort([('created_at', 1), ('_id', 1)])
        return [Room.from_document(doc) async for doc in cursor]

    async def get_for(self, room_id, user_id: str) -> Room:
        room = await self.get(room_id)
        if not room.can_access(user_id):
            raise Forbidden('Access denied to private room', details={'room': room.id})
        return room

    async def add_member(self, room_id, user_id: str, actor_id: str) -> Room:
        room = await self.get(room_id)
        uid = parse_object_id(user_id, 'user')
        if actor_id == str(uid):
            if room.is_private and not room.is_admin(actor_id):
                raise Forbidden('Private rooms are joined by invitation', details={'room': room.id})
        elif not room.is_admin(actor_id):
            raise Forbidden('Only room admins can add members', details={'room': room.id})
        return await self._update(room.id, {'$addToSet': {'members': uid}})

    async def ensure_member(self, room_id, user_id: str) -> None:
        await self.collection.update_one(
            {'_id': parse_object_id(room_id, 'room')},
            {'$addToSet': {'members': parse_object_id(user_id, 'user')}},
        )

    async def remove_member(self, room_id, user_id: str, actor_id: str) -> Room:
        room = await self.get(room_id)
        uid = parse_object_id(user_id, 'user')
        if actor_id != str(uid) and not room.is_admin(actor_id):
            raise Forbidden('Only room admins can remove members', details={'room': room.id})
        _keep_an_admin(room, uid)
        return await self._update(room.id, {'$pull': {'members': uid, 'admins': uid}})

    async def add_admin(self, room_id, user_id: str, actor_id: str) -> Room:
        room = await self.get(room_id)
        uid = parse_object_id(user_id, 'user')
        if not room.is_admin(actor_id):
            raise Forbidden('Only room admins can promote admins', details={'room': room.id})
        # admins are always members
        return await self._update(room.id, {'$addToSet': {'members': uid, 'admins': uid}})

    async def remove_admin(self, room_id, user_id: str, actor_id: str) -> Room:
        """Demote an admin. The user stays a member."""
        room = await self.get(room_id)
        uid = parse_object_id(user_id, 'user')
        if not room.is_admin(actor_id):
            raise Forbidden('Only room admins can demote admins', details={'room': room.id})
        _keep_an_admin(room, uid)
        return await self._update(room.id, {'$pull': {'admins': uid}})

    async def _update(self, room_id: str, update: dict) -> Room:
        doc = await self.collection.find_one_and_update(
            {'_id': ObjectId(room_id)}, update, return_document=ReturnDocument.AFTER
        )
        if not doc:
            raise NotFound('Room not found', details={'room': room_id})
        return Room.from_document(doc)


def _keep_an_admin(room: Room, uid: ObjectId) -> None:
    if room.admins == [str(uid)]:
        raise InvalidArgument('A room must keep at least one admin', details={'room': room.id})
