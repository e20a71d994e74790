import redis

from app.core.config import settings


class PurchaseLock:
    """Per (user, item) lock: second purchase of the same pair is refused while one is in flight."""

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.default_ttl = ttl_seconds if ttl_seconds is not None else settings.purchase_lock_ttl_seconds

    @staticmethod
    def key(user_id: str, item_id: str) -> str:
        return f"purchase_lock:{user_id}:{item_id}"

    def acquire(self, user_id: str, item_id: str, ttl_seconds: int | None = None) -> bool:
        """Atomic operation: setnx + expire in one call."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        created = self.client.set(self.key(user_id, item_id), "1", nx=True, ex=ttl)
        return bool(created)

    def release(self, user_id: str, item_id: str) -> None:
        self.client.delete(self.key(user_id, item_id))
