from typing import Optional

import redis

from app.platform.config import settings

_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    """Shared sync client, or None when REDIS_URL is not configured."""
    global _client

    if not settings.REDIS_URL:
        return None
    if _client is None:
        _client = redis.Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    return _client
