import json
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

logging.basicConfig(level=logging.INFO)


def battle_channel(battle_id) -> str:
    return f"battle:{battle_id}"


class RedisNotifier:
    """Publishes battle events on the battle's Redis channel.

    Events are published after the change is committed in memory, so a Redis
    outage loses the live update but never the event; clients recover from
    GET /battles/{battle_id}/events.
    """

    def __init__(self, redis: Redis):
        self.redis = redis

    async def notify(self, battle_id, event: str, payload: dict) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        try:
            await self.redis.publish(battle_channel(battle_id), message)
        except RedisError as e:
            logging.error(f"Failed to publish {event} for battle {battle_id}: {e}")
