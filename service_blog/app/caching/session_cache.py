"""
User profile cache keyed by ``user:{id}``.
"""

from typing import Any, Dict, Optional

from service_blog.app.caching.redis_client import RedisCacheClient

USER_TTL = 3600


class SessionCache:
    """Named helpers over the cache client for user objects."""

    def __init__(self, client: RedisCacheClient, ttl: int = USER_TTL):
        self.client = client
        self.ttl = ttl

    @staticmethod
    def user_key(user_id: str) -> str:
        return f"user:{user_id}"

    async def set_user(self, user_id: str, data: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        return await self.client.set(self.user_key(user_id), data, self.ttl if ttl is None else ttl)

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.client.get(self.user_key(user_id))

    async def invalidate_user(self, user_id: str) -> bool:
        return await self.client.delete(self.user_key(user_id))
