import logging
from typing import Dict, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from .models import UserSummary, utcnow

logger = logging.getLogger(__name__)


class UserDirectory:
    """Read side of the users collection plus the presence stamps on it.

    Accounts themselves are owned by the auth/profile service.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db['users']

    async def get_summaries(self, ids: Iterable[ObjectId]) -> Dict[ObjectId, UserSummary]:
        """Summaries for the users that exist; unknown ids are left out."""
        wanted = list(set(ids))
        if not wanted:
            return {}
        cursor = self.collection.find({'_id': {'$in': wanted}}, {'username': 1, 'avatar': 1})
        found = {}
        async for doc in cursor:
            found[doc['_id']] = UserSummary(
                id=str(doc['_id']),
                username=doc.get('username'),
                avatar=doc.get('avatar') or '',
            )
        return found

    @staticmethod
    def summary_for(summaries: Dict[ObjectId, UserSummary], user_id: ObjectId) -> UserSummary:
        # history can outlive the account; keep the id, drop the display data
        return summaries.get(user_id) or UserSummary(id=str(user_id))

    async def set_online(self, user_id: str, is_online: bool) -> None:
        if not ObjectId.is_valid(user_id):
            return
        await self.collection.update_one(
            {'_id': ObjectId(user_id)},
            {'$set': {'is_online': is_online, 'last_seen': None if is_online else utcnow()}},
        )
        logger.debug('[USERS] %s is_online=%s', user_id, is_online)
