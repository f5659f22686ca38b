import json
import logging
from typing import Any, Dict

import redis.asyncio as aioredis

from config import REDIS_URL

logger = logging.getLogger(__name__)


def notification_channel(user_id: str) -> str:
    return f"user:{user_id}:notifications"


class RedisClient:
    """Publishes chat notifications to per-user Redis channels.

    Publishing is best effort: a failed publish is logged and never
    propagates, the database remains the source of truth.
    """

    def __init__(self, redis_url: str = REDIS_URL):
        self.redis_url = redis_url
        self.redis = None

    async def connect(self):
        try:
            self.redis = aioredis.from_url(self.redis_url, decode_responses=True)
            await self.redis.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            # Notifications are dropped until a restart; requests keep working
            logger.error(f"Redis connection failed, notifications disabled: {e}")
            self.redis = None

    async def close(self):
        if self.redis:
            await self.redis.close()
            self.redis = None

    async def ping(self):
        if self.redis is None:
            raise ConnectionError("Redis is not connected")
        return await self.redis.ping()

    async def publish(self, user_id: str, event: Dict[str, Any]) -> bool:
        if self.redis is None:
            logger.warning(f"Redis not connected, dropping {event.get('type')} event for {user_id}")
            return False
        try:
            await self.redis.publish(notification_channel(user_id), json.dumps(event, default=str))
            return True
        except Exception as e:
            logger.error(f"Notification publishing failed: {e}")
            return False

    async def notify_message(self, recipient_id: str, message) -> bool:
        return await self.publish(recipient_id, {
            "type": "message",
            "chat_id": message.chat_id,
            "message_id": message.id,
            "sender_id": message.sender_id,
            "content": message.content,
            "created_at": message.created_at.isoformat(),
        })

    async def notify_seen(self, sender_id: str, chat_id: int, reader_id: str) -> bool:
        return await self.publish(sender_id, {
            "type": "seen",
            "chat_id": chat_id,
            "reader_id": reader_id,
        })


redis_client = RedisClient()


def get_notifier() -> RedisClient:
    return redis_client
