"""
Delivery channel: topic based publish/subscribe over live connections.

Topics are either a user topic ('user:<id>') or a room topic ('room:<id>').
Nothing is queued: publishing to a topic nobody listens on delivers to no
one, and the message store stays the place to catch up from.
"""
import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Iterable, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


def user_topic(identity: str) -> str:
    return f'user:{identity}'


def room_topic(room_id: str) -> str:
    return f'room:{room_id}'


class Connection:
    """A live WebSocket as seen by the channel."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = next(_ids)

    async def send(self, payload: Dict[str, Any]) -> None:
        try:
            await self.websocket.send_text(json.dumps(jsonable_encoder(payload)))
        except (RuntimeError, OSError) as exc:
            # starlette raises RuntimeError once the socket is closed
            raise WebSocketDisconnect(code=1006) from exc

    def __repr__(self):
        return f'<Connection {self.id}>'


class DeliveryChannel:

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._topics: Dict[str, Set[Connection]] = {}
        self._subscriptions: Dict[Connection, Set[str]] = {}

    def attach(self, conn: Connection) -> None:
        self._subscriptions.setdefault(conn, set())

    def detach(self, conn: Connection) -> None:
        """Forget the connection and drop every subscription it holds."""
        for topic in self._subscriptions.pop(conn, set()):
            self._drop(topic, conn)

    def subscribe(self, conn: Connection, topic: str) -> None:
        self._subscriptions.setdefault(conn, set()).add(topic)
        self._topics.setdefault(topic, set()).add(conn)

    def unsubscribe(self, conn: Connection, topic: str) -> None:
        self._subscriptions.get(conn, set()).discard(topic)
        self._drop(topic, conn)

    def subscribers(self, topic: str) -> Set[Connection]:
        return set(self._topics.get(topic, ()))

    def topics_of(self, conn: Connection) -> Set[str]:
        return set(self._subscriptions.get(conn, ()))

    async def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        return await self.publish_many([topic], payload)

    async def publish_many(self, topics: Iterable[str], payload: Dict[str, Any]) -> int:
        """Deliver once to every connection subscribed to any of the topics."""
        targets: Set[Connection] = set()
        for topic in topics:
            targets |= self._topics.get(topic, set())
        return await self._deliver(targets, payload)

    async def broadcast(self, payload: Dict[str, Any]) -> int:
        return await self._deliver(set(self._subscriptions), payload)

    async def _deliver(self, targets: Set[Connection], payload: Dict[str, Any]) -> int:
        ordered = sorted(targets, key=lambda c: c.id)
        results = await asyncio.gather(*(self._send(conn, payload) for conn in ordered))
        return sum(results)

    async def _send(self, conn: Connection, payload: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(conn.send(payload), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning('[CHANNEL] send to %r timed out after %.1fs (type=%s)',
                           conn, self.send_timeout, payload.get('type'))
            return False
        except Exception:
            # a dead socket is cleaned up by its own disconnect handler
            logger.warning('[CHANNEL] send to %r failed (type=%s)', conn, payload.get('type'), exc_info=True)
            return False
        return True

    def _drop(self, topic: str, conn: Connection) -> None:
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del self._topics[topic]
