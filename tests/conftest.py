import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from uuid6 import uuid7

from battle_server.domain.battle_session import BattleSession
from battle_server.domain.errors import ExternalServiceError, ValidationError
from battle_server.domain.gift_catalog import GiftCatalog
from battle_server.manager import ConnectionManager
from battle_server.models.dc_models import ScoringMethodModel
from battle_server.models.schema_models import BattleConfigSchema, CreatorParticipantSchema
from battle_server.models.schemas import Base
from battle_server.services.battle_registry import BattleRegistry
from battle_server.services.battle_service import BattleService

NOW = datetime(2024, 5, 1, 12, 0, 0)


def fixed_clock() -> datetime:
    return NOW


STARTING_FUNDS = {"c1": Decimal("100"), "c2": Decimal("100")}


class FakeLedger:
    """In-memory wallet ledger. Fails the next ``fail_times`` credits.

    ``funds`` are balances held before any entry was written.
    """

    def __init__(self, fail_times: int = 0, funds=None):
        self.fail_times = fail_times
        self.funds = dict(funds or {})
        self.calls = 0
        self.entries = {}

    async def credit(self, user_id, amount, source_ref, role) -> bool:
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ExternalServiceError("ledger down", "ledger_unavailable")
        key = (source_ref, user_id, role)
        if key in self.entries:
            return False
        self.entries[key] = Decimal(amount)
        return True

    async def debit(self, user_id, amount, source_ref, role) -> bool:
        key = (source_ref, user_id, role)
        if key in self.entries:
            return False
        if self.balance(user_id) < amount:
            raise ValidationError("Insufficient balance.", "insufficient_balance")
        self.entries[key] = -Decimal(amount)
        return True

    def balance(self, user_id) -> Decimal:
        return self.funds.get(user_id, Decimal("0")) + sum(
            (amount for (_, recipient, _), amount in self.entries.items() if recipient == user_id),
            Decimal("0"),
        )


class FakeNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, battle_id, event, payload) -> None:
        self.events.append((battle_id, event, payload))

    def names(self):
        return [event for _, event, _ in self.events]


class GrantedMedia:
    def __init__(self):
        self.acquired = []
        self.released = []

    async def acquire(self, participant_id, constraints):
        self.acquired.append(participant_id)
        return f"stream:{participant_id}"

    async def release(self, participant_id):
        self.released.append(participant_id)


class GatedMedia(GrantedMedia):
    """Blocks every acquisition until ``gate`` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def acquire(self, participant_id, constraints):
        await self.gate.wait()
        return await super().acquire(participant_id, constraints)


@pytest.fixture
def make_config():
    def _make_config(**overrides) -> BattleConfigSchema:
        values = dict(
            battle_id=uuid7(),
            title="Friday night duel",
            duration=60,
            creator1=CreatorParticipantSchema(
                id="c1", username="alice", display_name="Alice", is_host=True
            ),
            creator2=CreatorParticipantSchema(id="c2", username="bob", display_name="Bob"),
            scoring_method=ScoringMethodModel.hybrid,
            allow_voting=True,
            allow_gifts=True,
            entry_fee=Decimal("10"),
            prize_pot=Decimal("200"),
            created_at=NOW,
        )
        values.update(overrides)
        return BattleConfigSchema(**values)

    return _make_config


@pytest.fixture
def catalog():
    return GiftCatalog()


@pytest.fixture
def battle(make_config, catalog):
    return BattleSession(make_config(), catalog, clock=fixed_clock)


@pytest.fixture
async def live_battle(battle):
    await battle.start(GrantedMedia())
    return battle


@pytest.fixture
def ledger():
    return FakeLedger(funds=STARTING_FUNDS)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def battle_service(catalog, ledger, notifier):
    return BattleService(
        BattleRegistry(),
        catalog,
        ledger,
        notifier,
        ConnectionManager(),
        platform_account_id="platform",
        moderator_ids=["mod"],
        media_acquire_timeout=1,
        ledger_retry_attempts=2,
        ledger_retry_backoff=0,
        clock=fixed_clock,
    )


@pytest.fixture
async def Session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'battle.sqlite3'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        bind=engine,
        expire_on_commit=False,
    )
    await engine.dispose()
