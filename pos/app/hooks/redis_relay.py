import json
import logging

from redis.asyncio import Redis

CHANNEL = "rt:events"

logger = logging.getLogger("pos.realtime")


def make_relay(redis_client: Redis, channel: str = CHANNEL):
    """Return a coroutine publishing broadcast envelopes to ``channel``."""

    async def relay(envelope: dict) -> None:
        try:
            await redis_client.publish(channel, json.dumps(envelope))
        except Exception as exc:
            logger.warning("redis relay failed: %s", exc)

    return relay
