"""Process-wide services shared by the routers and the scheduler.

Routers receive them through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""

from redis.asyncio import Redis

from battle_server.db import Session
from battle_server.domain.battle_rules import DuetRevenueSplitter, PrizePoolCalculator
from battle_server.domain.gift_catalog import GiftCatalog
from battle_server.load_config import (
    invitation_ttl_minutes,
    ledger_retry_attempts,
    ledger_retry_backoff,
    media_acquire_timeout,
    moderator_ids,
    platform_account_id,
    platform_fee_percentage,
    prize_pot_multiplier,
    redis_host,
    redis_port,
    vote_points,
)
from battle_server.manager import ConnectionManager
from battle_server.services.battle_registry import BattleRegistry
from battle_server.services.battle_service import BattleService
from battle_server.services.duet_service import DuetService
from battle_server.services.ledger_db import SqlWalletLedger
from battle_server.services.notifier import RedisNotifier

redis = Redis(host=redis_host, port=redis_port, decode_responses=True, health_check_interval=30)

connection_manager = ConnectionManager()
gift_catalog = GiftCatalog()
wallet_ledger = SqlWalletLedger(Session)

battle_service = BattleService(
    BattleRegistry(),
    gift_catalog,
    wallet_ledger,
    RedisNotifier(redis),
    connection_manager,
    Session,
    prize_calculator=PrizePoolCalculator(prize_pot_multiplier),
    vote_points=vote_points,
    platform_account_id=platform_account_id,
    moderator_ids=moderator_ids,
    media_acquire_timeout=media_acquire_timeout,
    invitation_ttl_minutes=invitation_ttl_minutes,
    ledger_retry_attempts=ledger_retry_attempts,
    ledger_retry_backoff=ledger_retry_backoff,
)

duet_service = DuetService(
    Session,
    wallet_ledger,
    DuetRevenueSplitter(platform_fee_percentage),
    platform_account_id=platform_account_id,
    ledger_retry_attempts=ledger_retry_attempts,
    ledger_retry_backoff=ledger_retry_backoff,
)


def get_battle_service() -> BattleService:
    return battle_service


def get_duet_service() -> DuetService:
    return duet_service


def get_redis() -> Redis:
    return redis
