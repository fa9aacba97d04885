import asyncio
import json

import pytest
from fakeredis import aioredis

from pos.app.events import ORDER_CREATED, EventBus
from pos.app.hooks.redis_relay import CHANNEL, make_relay
from pos.app.realtime import Broadcaster


async def next_message(pubsub):
    for _ in range(20):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            return message
        await asyncio.sleep(0)
    return None


@pytest.mark.anyio
async def test_broadcasts_are_relayed_to_redis() -> None:
    fake = aioredis.FakeRedis(decode_responses=True)
    pubsub = fake.pubsub()
    await pubsub.subscribe(CHANNEL)

    bus = EventBus()
    Broadcaster(bus, relay=make_relay(fake))
    await bus.publish(ORDER_CREATED, {"id": 3})

    message = await next_message(pubsub)
    envelope = json.loads(message["data"])
    assert envelope["type"] == ORDER_CREATED
    assert envelope["payload"] == {"id": 3}
    await pubsub.aclose()


@pytest.mark.anyio
async def test_relay_failure_is_swallowed() -> None:
    class Down:
        async def publish(self, channel, data):
            raise ConnectionError("redis unavailable")

    relay = make_relay(Down())

    await relay({"type": "ping", "payload": {}, "timestamp": "now"})
