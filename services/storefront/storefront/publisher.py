"""
Storefront: イベント発行

コミット済みの注文イベントを Redis Pub/Sub の order_events チャネルへ流す。
Pub/Sub は fire-and-forget なので、購読者がいなくても発行は成功する。
"""

import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class EventPublisher:
    def __init__(self, redis: aioredis.Redis, channel: str = ORDER_EVENTS_CHANNEL):
        self.redis = redis
        self.channel = channel

    async def publish(self, event_type: str, data: dict) -> None:
        """
        イベントを発行する。

        DB のコミット後に呼ばれるため、Redis の障害でリクエスト全体を
        失敗させない。失敗はログに残す。
        """
        try:
            await self.redis.publish(
                self.channel,
                json.dumps({"event_type": event_type, "data": data}, default=str),
            )
        except RedisError:
            logger.exception("Failed to publish %s to %s", event_type, self.channel)
            return
        logger.debug("Published %s to %s", event_type, self.channel)
