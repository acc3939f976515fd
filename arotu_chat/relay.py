import logging
from typing import List

from .channel import DeliveryChannel, room_topic, user_topic
from .models import Message, MessageKind
from .presence import PresenceRegistry

logger = logging.getLogger(__name__)

RECEIVE_EVENTS = {
    MessageKind.PRIVATE: 'receive-private',
    MessageKind.ROOM: 'receive-room',
}


def delivery_payload(message: Message) -> dict:
    return {
        'type': RECEIVE_EVENTS[message.kind],
        'kind': message.kind.value,
        'routing_key': message.routing_key,
        'message': message.model_dump(mode='json'),
    }


class MessageRelay:
    """Fans already persisted messages out to the delivery channel.

    Failures here never undo or fail a send: the message is stored and
    shows up on the next history fetch.
    """

    def __init__(self, channel: DeliveryChannel):
        self.channel = channel

    def topics_for(self, message: Message) -> List[str]:
        if message.kind == MessageKind.ROOM:
            return [room_topic(message.room)]
        # the sender's other devices get the same message id
        return [user_topic(message.receiver.id), user_topic(message.sender.id)]

    async def publish_message(self, message: Message) -> int:
        topics = self.topics_for(message)
        try:
            delivered = await self.channel.publish_many(topics, delivery_payload(message))
        except Exception:
            logger.warning('[RELAY] publish of %s message %s to %s failed', message.kind.value, message.id, topics,
                           exc_info=True)
            return 0
        logger.debug('[RELAY] message %s delivered to %d connection(s)', message.id, delivered)
        return delivered

    async def publish_seen(self, message: Message) -> int:
        payload = {'type': 'message-seen', 'id': message.id, 'seen': message.seen,
                   'by': message.receiver.id if message.receiver else None}
        try:
            return await self.channel.publish(user_topic(message.sender.id), payload)
        except Exception:
            logger.warning('[RELAY] seen notification for %s failed', message.id, exc_info=True)
            return 0

    async def publish_typing(self, sender_id: str, receiver_id: str, is_typing: bool) -> int:
        return await self.channel.publish(user_topic(receiver_id),
                                          {'type': 'typing', 'from': sender_id, 'is_typing': is_typing})

    async def publish_online_users(self, presence: PresenceRegistry) -> int:
        return await self.channel.broadcast({'type': 'online-users', 'online': presence.online_identities()})
