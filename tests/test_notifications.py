import json
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from battle_server.domain.battle_session import BattleSession
from battle_server.domain.errors import BattleNotFoundError
from battle_server.manager import ConnectionManager
from battle_server.models.dc_models import EndReasonModel
from battle_server.redis_subscriber import RedisSubscriber
from battle_server.services.battle_registry import BattleRegistry
from battle_server.services.notifier import RedisNotifier, battle_channel

from tests.conftest import GrantedMedia, NOW, fixed_clock


class FakeRedis:
    def __init__(self, messages=None, fail=False):
        self.published = []
        self.messages = list(messages or [])
        self.fail = fail
        self.pubsub_client = FakePubSub(self.messages)

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("redis is down")
        self.published.append((channel, json.loads(message)))

    def pubsub(self):
        return self.pubsub_client


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.subscribed = []
        self.closed = False

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        self.subscribed.remove(channel)

    async def close(self):
        self.closed = True

    async def get_message(self, ignore_subscribe_messages=True, timeout=None):
        return self.messages.pop(0)


async def test_notifier_publishes_on_battle_channel():
    redis = FakeRedis()

    await RedisNotifier(redis).notify("b1", "gift", {"quantity": 2})

    assert redis.published == [("battle:b1", {"event": "gift", "data": {"quantity": 2}})]


async def test_notifier_survives_redis_outage():
    redis = FakeRedis(fail=True)

    await RedisNotifier(redis).notify("b1", "gift", {})

    assert redis.published == []


async def test_subscriber_streams_until_battle_ends(live_battle):
    messages = [
        {"type": "message", "data": json.dumps({"event": "vote", "data": {"points": 10}})},
        {"type": "message", "data": json.dumps({"event": "battle_ended", "data": {}})},
    ]
    redis = FakeRedis(messages)
    subscriber = RedisSubscriber(live_battle.battle_id, live_battle.snapshot)

    chunks = [
        chunk
        async for chunk in subscriber.event_generator(battle_channel(live_battle.battle_id), redis)
    ]

    events = [chunk.split("\n")[0] for chunk in chunks]
    assert events == [
        "event: latest_state_update",
        "event: vote",
        "event: latest_state_update",
        "event: battle_ended",
        "event: latest_state_update",
    ]
    assert redis.pubsub_client.subscribed == []
    assert redis.pubsub_client.closed


class TestRegistry:
    def test_unknown_battle(self):
        registry = BattleRegistry()

        with pytest.raises(BattleNotFoundError):
            registry.get("missing")
        with pytest.raises(BattleNotFoundError):
            registry.lock("missing")

    async def test_live_ids_and_purge(self, make_config, catalog):
        registry = BattleRegistry()
        waiting = registry.add(BattleSession(make_config(), catalog, clock=fixed_clock))
        ended = registry.add(BattleSession(make_config(), catalog, clock=fixed_clock))
        await ended.start(GrantedMedia())
        assert registry.live_ids() == [ended.battle_id]

        ended.end(EndReasonModel.stopped)
        assert registry.live_ids() == []
        # Pending settlements are kept until they are paid
        assert registry.purge_ended(NOW + timedelta(hours=1)) == 0

        ended.settlement.settled = True
        assert registry.purge_ended(NOW) == 0
        assert registry.purge_ended(NOW + timedelta(hours=1)) == 1
        assert list(registry.sessions) == [waiting.battle_id]


class TestConnectionManager:
    class Socket:
        def __init__(self, closed=False):
            self.closed = closed
            self.accepted = False
            self.sent = []

        async def accept(self):
            self.accepted = True

        async def send_json(self, message):
            if self.closed:
                raise RuntimeError("socket closed")
            self.sent.append(message)

    async def test_broadcast_drops_closed_sockets(self):
        manager = ConnectionManager()
        alive, closed = self.Socket(), self.Socket(closed=True)
        await manager.connect(alive, "b1")
        await manager.connect(closed, "b1")

        await manager.broadcast({"message": "hi"}, "b1")

        assert alive.accepted
        assert alive.sent == [{"message": "hi"}]
        assert manager.active_connections["b1"] == [alive]

    async def test_disconnect_cleans_up(self):
        manager = ConnectionManager()
        socket = self.Socket()
        await manager.connect(socket, "b1")

        manager.disconnect(socket, "b1")

        assert manager.active_connections == {}
