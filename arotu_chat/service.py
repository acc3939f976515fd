"""
Messaging service.

Single code path for every send: persist through the store, get back the
canonical resolved message, hand that exact object to the relay. The REST
routes and the WebSocket handler both call in here; neither writes on its
own.
"""
import asyncio
import logging
from typing import Awaitable, List, Optional, Set

from .channel import Connection, DeliveryChannel, room_topic, user_topic
from .errors import Forbidden, Unauthenticated
from .models import Message, RecentConversation, Room, UserSummary, parse_object_id
from .presence import PresenceChange, PresenceRegistry
from .relay import MessageRelay
from .rooms import RoomDirectory
from .store import MessageStore
from .users import UserDirectory

logger = logging.getLogger(__name__)


class MessagingService:

    def __init__(self, store: MessageStore, rooms: RoomDirectory, users: UserDirectory,
                 presence: PresenceRegistry, channel: DeliveryChannel, relay: MessageRelay):
        self.store = store
        self.rooms = rooms
        self.users = users
        self.presence = presence
        self.channel = channel
        self.relay = relay
        self._tasks: Set[asyncio.Task] = set()

    # -- create

    async def create_private(self, sender_id: str, receiver_id: str, text: str,
                             media: Optional[str] = None) -> Message:
        return await self.store.create_private_message(sender_id, receiver_id, text, media)

    async def create_room(self, sender_id: str, room_id: str, text: str,
                          media: Optional[str] = None) -> Message:
        # private rooms only take messages from members
        await self.rooms.get_for(room_id, sender_id)
        return await self.store.create_room_message(sender_id, room_id, text, media)

    async def send_private(self, sender_id: str, receiver_id: str, text: str,
                           media: Optional[str] = None) -> Message:
        message = await self.create_private(sender_id, receiver_id, text, media)
        await self.relay.publish_message(message)
        return message

    async def send_room(self, sender_id: str, room_id: str, text: str,
                        media: Optional[str] = None) -> Message:
        message = await self.create_room(sender_id, room_id, text, media)
        await self.relay.publish_message(message)
        return message

    # -- read

    async def private_history(self, user_id: str, other_id: str) -> List[Message]:
        return await self.store.list_private_messages(user_id, other_id)

    async def room_history(self, user_id: str, room_id: str) -> List[Message]:
        await self.rooms.get_for(room_id, user_id)
        return await self.store.list_room_messages(room_id)

    async def recent_conversations(self, user_id: str) -> List[RecentConversation]:
        return await self.store.recent_conversations(user_id)

    async def participants(self, user_id: str) -> List[UserSummary]:
        return await self.store.conversation_participants(user_id)

    async def mark_seen(self, message_id: str, user_id: str) -> Message:
        return await self.store.mark_seen(message_id, user_id)

    # -- live connections

    def connect(self, conn: Connection) -> None:
        self.channel.attach(conn)

    async def announce(self, conn: Connection, identity: str) -> PresenceChange:
        change = await self.presence.announce(identity, conn)
        if change.changed:
            logger.info('[PRESENCE] %s online', identity)
            self._presence_changed(identity, True)
        return change

    async def disconnect(self, conn: Connection) -> PresenceChange:
        self.channel.detach(conn)
        change = await self.presence.forget(conn)
        if change.changed:
            logger.info('[PRESENCE] %s offline', change.identity)
            self._presence_changed(change.identity, False)
        return change

    def join_user_topic(self, conn: Connection, identity: Optional[str] = None) -> str:
        own = self._announced(conn)
        if identity is not None and identity != own:
            raise Forbidden('Cannot join another user\'s topic')
        topic = user_topic(own)
        self.channel.subscribe(conn, topic)
        return topic

    async def join_room_topic(self, conn: Connection, room_id: str) -> str:
        room = await self.rooms.get_for(room_id, self._announced(conn))
        topic = room_topic(room.id)
        self.channel.subscribe(conn, topic)
        return topic

    def leave_room_topic(self, conn: Connection, room_id: str) -> str:
        topic = room_topic(str(parse_object_id(room_id, 'room')))
        self.channel.unsubscribe(conn, topic)
        return topic

    async def remove_member(self, room_id: str, member_id: str, actor_id: str) -> Room:
        """Take a user out of a room and off its topic if they lost access."""
        room = await self.rooms.remove_member(room_id, member_id, actor_id)
        member = str(parse_object_id(member_id, 'user'))
        if not room.can_access(member):
            topic = room_topic(room.id)
            for conn in self.presence.connections_for(member):
                self.channel.unsubscribe(conn, topic)
            logger.info('[ROOMS] %s unsubscribed from %s', member, topic)
        return room

    async def typing(self, sender_id: str, receiver_id: str, is_typing: bool) -> int:
        receiver = str(parse_object_id(receiver_id, 'receiver'))
        return await self.relay.publish_typing(sender_id, receiver, is_typing)

    def spawn(self, coro: Awaitable, what: str) -> asyncio.Task:
        """Run a side effect in the background; its errors are only logged."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning('[TASK] %s failed', what, exc_info=t.exception())

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _announced(self, conn: Connection) -> str:
        identity = self.presence.identity_of(conn)
        if identity is None:
            raise Unauthenticated('Announce identity before joining topics')
        return identity

    def _presence_changed(self, identity: str, online: bool) -> None:
        self.spawn(self.users.set_online(identity, online), f'online stamp for {identity}')
        self.spawn(self.relay.publish_online_users(self.presence), 'online users broadcast')
