"""
Presence registry: which identities have at least one live connection.

One instance per process, owned by the application and handed to whoever
needs it. A user can hold several connections (tabs, devices); the user is
online while at least one of them is registered.
"""
import asyncio
from typing import Dict, Hashable, List, NamedTuple, Optional, Set

from .errors import Forbidden


class PresenceChange(NamedTuple):
    identity: Optional[str]
    # True when the identity flipped between offline and online
    changed: bool


class PresenceRegistry:

    def __init__(self):
        self._connections: Dict[str, Set[Hashable]] = {}
        self._owners: Dict[Hashable, str] = {}
        self._lock = asyncio.Lock()

    async def announce(self, identity: str, conn: Hashable) -> PresenceChange:
        async with self._lock:
            owner = self._owners.get(conn)
            if owner is not None and owner != identity:
                raise Forbidden('Connection already announced as another identity')
            handles = self._connections.setdefault(identity, set())
            came_online = not handles
            handles.add(conn)
            self._owners[conn] = identity
        return PresenceChange(identity, came_online)

    async def forget(self, conn: Hashable) -> PresenceChange:
        async with self._lock:
            identity = self._owners.pop(conn, None)
            if identity is None:
                return PresenceChange(None, False)
            handles = self._connections.get(identity, set())
            handles.discard(conn)
            went_offline = not handles
            if went_offline:
                self._connections.pop(identity, None)
        return PresenceChange(identity, went_offline)

    def is_online(self, identity: str) -> bool:
        return bool(self._connections.get(identity))

    def connections_for(self, identity: str) -> Set[Hashable]:
        return set(self._connections.get(identity, ()))

    def identity_of(self, conn: Hashable) -> Optional[str]:
        return self._owners.get(conn)

    def online_identities(self) -> List[str]:
        return sorted(self._connections)
