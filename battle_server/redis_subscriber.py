import json
import logging
from typing import AsyncGenerator, Callable
from redis.asyncio import Redis

from battle_server.models.schema_models import BattleStateSchema

logging.basicConfig(level=logging.INFO)


class RedisSubscriber:
    """Redis subscriber class to handle SSE events."""

    def __init__(self, battle_id, read_state: Callable[[], BattleStateSchema]):
        """Initialize RedisSubscriber with the battle_id and a callable returning its current state."""
        self.battle_id = battle_id
        self.read_state = read_state

    async def event_generator(self, channel: str, redis: Redis) -> AsyncGenerator[str, None]:
        """Event generator to handle SSE events.

        Args:
            channel (str): To receive messages from Redis, the channel name is battle:{battle_id}.
            redis (Redis): Redis connection object.
        """
        pubsub = redis.pubsub()

        state = self.read_state()
        payload = json.dumps(state.model_dump(mode="json"))
        yield f"event: latest_state_update\ndata: {payload}\n\n"

        await pubsub.subscribe(channel)
        try:
            while True:
                msg = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=None
                )
                if msg and msg["type"] == "message":
                    event = json.loads(msg["data"])
                    logging.debug(f"Payload: {event}")
                    yield f"event: {event['event']}\ndata: {json.dumps(event['data'])}\n\n"

                    state = self.read_state()
                    payload = json.dumps(state.model_dump(mode="json"))
                    yield f"event: latest_state_update\ndata: {payload}\n\n"
                    if event["event"] == "battle_ended":
                        break
        finally:
            logging.info("Unsubscribing from channel")
            if pubsub:
                await pubsub.unsubscribe(channel)
                await pubsub.close()
