"""Battle use cases.

Every mutation of a battle runs under ``registry.lock(battle_id)`` and nothing
is awaited while it is held. Ledger credits, Redis publishes, WebSocket
broadcasts and DB writes happen after the lock is released.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker
from uuid6 import uuid7

from battle_server.converter import DataConverter
from battle_server.domain.battle_rules import (
    VOTE_POINTS,
    PrizePoolCalculator,
    payout_credits,
    validate_battle_settings,
)
from battle_server.domain.battle_session import BattleSession, MediaCapture
from battle_server.domain.errors import (
    BattleError,
    BattleNotFoundError,
    ExternalServiceError,
    ForbiddenError,
    InvitationNotFoundError,
    ResourceError,
    StateError,
    ValidationError,
)
from battle_server.domain.gift_catalog import GiftCatalog
from battle_server.manager import ConnectionManager
from battle_server.models.dc_models import (
    BattleStatusModel,
    ClientBattleModel,
    EndReasonModel,
    InvitationStatusModel,
)
from battle_server.models.schema_models import (
    BattleAuditSchema,
    BattleConfigSchema,
    BattleInvitationSchema,
    BattleStateSchema,
    ChatMessageSchema,
    CreatorStatsSchema,
    EventLogEntry,
    GiftEventSchema,
    PrizeDistributionSchema,
    SettlementSchema,
    VoteEventSchema,
)
from battle_server.services import battle_db
from battle_server.services.battle_registry import BattleRegistry
from battle_server.services.collaborators import Notifier, WalletLedger
from battle_server.services.ledger_db import credit_with_retry

logging.basicConfig(level=logging.INFO)

data_converter = DataConverter()


class BattleService:
    def __init__(
        self,
        registry: BattleRegistry,
        catalog: GiftCatalog,
        ledger: WalletLedger,
        notifier: Notifier,
        connection_manager: Optional[ConnectionManager] = None,
        Session: Optional[async_sessionmaker] = None,
        *,
        prize_calculator: Optional[PrizePoolCalculator] = None,
        vote_points: int = VOTE_POINTS,
        platform_account_id: str = "platform",
        moderator_ids: Optional[List[str]] = None,
        media_acquire_timeout: float = 30,
        invitation_ttl_minutes: int = 10,
        ledger_retry_attempts: int = 3,
        ledger_retry_backoff: float = 0.5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.catalog = catalog
        self.ledger = ledger
        self.notifier = notifier
        self.connection_manager = connection_manager
        self.Session = Session
        self.prize_calculator = prize_calculator or PrizePoolCalculator()
        self.vote_points = vote_points
        self.platform_account_id = platform_account_id
        self.moderator_ids = set(moderator_ids or [])
        self.media_acquire_timeout = media_acquire_timeout
        self.invitation_ttl_minutes = invitation_ttl_minutes
        self.invitations: Dict[UUID, BattleInvitationSchema] = {}
        self.ledger_retry_attempts = ledger_retry_attempts
        self.ledger_retry_backoff = ledger_retry_backoff
        self.clock = clock

    # ==== Lifecycle ===========================================================

    async def create_battle(self, client_data: ClientBattleModel) -> BattleConfigSchema:
        """Register a waiting battle once both creators accepted it

        Args:
            client_data (ClientBattleModel): Battle settings and the two creators

        Both creators pay the entry fee before the battle exists. Their win/loss
        records come from stored results, never from the request.

        Returns:
            BattleConfigSchema: Config with the new battle_id and prize pot

        Raises:
            ValidationError: Bad settings, or a creator cannot cover the entry fee
        """
        validate_battle_settings(client_data.duration, client_data.entry_fee)
        creator_stats = {
            creator.id: await self.get_creator_stats(creator.id)
            for creator in (client_data.creator1, client_data.creator2)
        }
        config = data_converter.convert_client_battle_to_config(
            client_data,
            battle_id=uuid7(),
            prize_pot=self.prize_calculator.prize_pot(client_data.entry_fee),
            created_at=self.clock(),
            creator_stats=creator_stats,
        )
        await self._collect_entry_fees(config)
        session = BattleSession(
            config,
            self.catalog,
            prize_calculator=self.prize_calculator,
            vote_points=self.vote_points,
            clock=self.clock,
        )
        self.registry.add(session)
        logging.info(
            f"Battle {config.battle_id} created: {config.creator1.username} vs {config.creator2.username}"
        )
        await self.notifier.notify(config.battle_id, "battle_created", session.snapshot().model_dump(mode="json"))
        return config

    async def _collect_entry_fees(self, config: BattleConfigSchema) -> None:
        """Debit both creators. If the second debit fails the first is refunded."""
        if config.entry_fee <= 0:
            return
        source_ref = f"battle:{config.battle_id}"
        collected: List[str] = []
        try:
            for creator in (config.creator1, config.creator2):
                await self.ledger.debit(creator.id, config.entry_fee, source_ref, "entry_fee")
                collected.append(creator.id)
        except BattleError as e:
            logging.warning(f"Entry fee collection for battle {config.battle_id} failed: {e.message}")
            for creator_id in collected:
                await credit_with_retry(
                    self.ledger,
                    creator_id,
                    config.entry_fee,
                    source_ref,
                    "entry_refund",
                    attempts=self.ledger_retry_attempts,
                    backoff=self.ledger_retry_backoff,
                )
            raise

    async def invite_battle(self, client_data: ClientBattleModel, requested_by: str) -> BattleInvitationSchema:
        """creator1 proposes a battle to creator2

        The invitation expires after ``invitation_ttl_minutes``. Nothing is
        charged until creator2 accepts.

        Raises:
            ForbiddenError: requested_by is not creator1
            ValidationError: Bad settings
        """
        if requested_by != client_data.creator1.id:
            raise ForbiddenError("Only the inviting creator can send this invitation.")
        if client_data.creator1.id == client_data.creator2.id:
            raise ValidationError("A creator cannot battle themselves.", "invalid_config")
        validate_battle_settings(client_data.duration, client_data.entry_fee)

        now = self.clock()
        invitation = BattleInvitationSchema(
            invitation_id=uuid7(),
            inviter_id=client_data.creator1.id,
            invitee_id=client_data.creator2.id,
            battle=ClientBattleModel.model_validate(client_data.model_dump(exclude={"requested_by"})),
            prize_pot=self.prize_calculator.prize_pot(client_data.entry_fee),
            created_at=now,
            expires_at=now + timedelta(minutes=self.invitation_ttl_minutes),
        )
        self.invitations[invitation.invitation_id] = invitation
        logging.info(
            f"Battle invitation {invitation.invitation_id}: {invitation.inviter_id} invited {invitation.invitee_id}"
        )
        return invitation

    def get_invitation(self, invitation_id: UUID) -> BattleInvitationSchema:
        invitation = self.invitations.get(invitation_id)
        if invitation is None:
            raise InvitationNotFoundError(invitation_id)
        return invitation

    async def accept_invitation(self, invitation_id: UUID, requested_by: str) -> BattleConfigSchema:
        """creator2 accepts; both entry fees are collected and a waiting battle is created

        Raises:
            InvitationNotFoundError: Unknown invitation
            ForbiddenError: requested_by is not the invited creator
            StateError: invitation_not_pending
            ValidationError: invitation_expired, or a creator cannot cover the entry fee
        """
        invitation = self.get_invitation(invitation_id)
        if requested_by != invitation.invitee_id:
            raise ForbiddenError("Only the invited creator can accept this invitation.")
        if invitation.status != InvitationStatusModel.pending:
            raise StateError("Invitation was already answered.", "invitation_not_pending")
        if self.clock() > invitation.expires_at:
            invitation.status = InvitationStatusModel.expired
            raise ValidationError("Invitation has expired.", "invitation_expired")

        # Claimed before awaiting so a second accept is rejected
        invitation.status = InvitationStatusModel.accepted
        try:
            config = await self.create_battle(invitation.battle)
        except BattleError:
            invitation.status = InvitationStatusModel.pending
            raise
        invitation.responded_at = self.clock()
        invitation.battle_id = config.battle_id
        return config

    def purge_invitations(self) -> int:
        """Scheduler job: forget invitations that expired or were answered"""
        now = self.clock()
        stale = [
            invitation_id
            for invitation_id, invitation in self.invitations.items()
            if invitation.status != InvitationStatusModel.pending or invitation.expires_at < now
        ]
        for invitation_id in stale:
            del self.invitations[invitation_id]
        return len(stale)

    async def get_creator_stats(self, user_id: str) -> CreatorStatsSchema:
        if self.Session is None:
            return CreatorStatsSchema(user_id=user_id)
        return await battle_db.read_creator_stats(self.Session, user_id)

    async def start_battle(self, battle_id: UUID, requested_by: str, media: MediaCapture) -> BattleStateSchema:
        """Acquire both creators' camera and microphone and go live

        The battle lock is not held while waiting for the devices; the session
        re-checks its state before going live.

        Raises:
            ForbiddenError: requested_by is not the host
            ResourceError: Devices could not be acquired; the battle stays waiting
        """
        session = self.registry.get(battle_id)
        host = session.config.creator1 if session.config.creator1.is_host else session.config.creator2
        if requested_by != host.id:
            raise ForbiddenError("Only the host can start the battle.")

        try:
            state = await asyncio.wait_for(session.start(media), timeout=self.media_acquire_timeout)
        except asyncio.TimeoutError:
            logging.warning(f"Media acquisition timed out for battle {battle_id}")
            raise ResourceError(ResourceError.TIMEOUT)

        logging.info(f"Battle {battle_id} is live")
        await self._publish(session, "battle_started", state.model_dump(mode="json"))
        return state

    async def tick(self, battle_id: UUID) -> BattleStateSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            state = session.tick()
        if state.status == BattleStatusModel.ended:
            logging.info(f"Battle {battle_id} timer expired")
            await self._settle(session)
        return state

    async def pause(self, battle_id: UUID, requested_by: str) -> BattleStateSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            self._ensure_can_control(session, requested_by)
            state = session.pause()
        await self._publish(session, "battle_paused", state.model_dump(mode="json"))
        return state

    async def resume(self, battle_id: UUID, requested_by: str) -> BattleStateSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            self._ensure_can_control(session, requested_by)
            state = session.resume()
        await self._publish(session, "battle_resumed", state.model_dump(mode="json"))
        return state

    async def end_battle(self, battle_id: UUID, requested_by: str, reason: EndReasonModel) -> PrizeDistributionSchema:
        """Stop or abort a battle and pay out its prize pool

        Args:
            battle_id (UUID): Battle to end
            requested_by (str): A creator of the battle or a moderator
            reason (EndReasonModel): stopped (prizes paid) or aborted (entry fees refunded)

        Returns:
            PrizeDistributionSchema: How the pot was split
        """
        if reason == EndReasonModel.timer_expired:
            raise ValidationError("Only the battle timer can expire a battle.", "invalid_reason")
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            self._ensure_can_control(session, requested_by)
            settlement = session.end(reason)
        logging.info(f"Battle {battle_id} ended by {requested_by}: {reason.value}")
        await self._settle(session)
        return settlement.distribution

    def _ensure_can_control(self, session: BattleSession, user_id: str) -> None:
        if not session.is_creator(user_id) and user_id not in self.moderator_ids:
            raise ForbiddenError("Only the battle's creators or a moderator can do this.")

    # ==== Viewer events =======================================================

    async def send_gift(
        self,
        battle_id: UUID,
        sender_id: str,
        gift_id: str,
        recipient_creator_id: str,
        quantity: int,
    ) -> GiftEventSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            event = session.apply_gift(sender_id, gift_id, recipient_creator_id, quantity)
        logging.debug(
            f"Battle {battle_id}: {sender_id} sent {quantity}x {gift_id} to {recipient_creator_id}"
        )
        await self._publish(session, "gift", event.model_dump(mode="json"))
        await self._broadcast(session, event)
        return event

    async def cast_vote(self, battle_id: UUID, voter_id: str, creator_id: str) -> VoteEventSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            event = session.apply_vote(voter_id, creator_id)
        await self._publish(session, "vote", event.model_dump(mode="json"))
        await self._broadcast(session, event)
        return event

    async def post_chat(self, battle_id: UUID, sender_id: str, message: str) -> ChatMessageSchema:
        async with self.registry.lock(battle_id):
            session = self.registry.get(battle_id)
            entry = session.post_chat(sender_id, message)
        await self._broadcast(session, entry)
        return entry

    def update_viewers(self, battle_id: UUID, viewer_count: int) -> BattleStateSchema:
        # Approximate telemetry, deliberately outside the battle lock.
        session = self.registry.get(battle_id)
        if not session.update_viewers(viewer_count):
            logging.debug(f"Ignoring viewer count for ended battle {battle_id}")
        return session.snapshot()

    # ==== Queries =============================================================

    def get_state(self, battle_id: UUID) -> BattleStateSchema:
        return self.registry.get(battle_id).snapshot()

    def get_config(self, battle_id: UUID) -> BattleConfigSchema:
        return self.registry.get(battle_id).config

    def get_events(self, battle_id: UUID, after: int = 0) -> List[EventLogEntry]:
        return self.registry.get(battle_id).event_log.since(after)

    def audit(self, battle_id: UUID) -> BattleAuditSchema:
        """Compare the live scores against the scores rebuilt from the event log"""
        session = self.registry.get(battle_id)
        state = session.snapshot()
        live_scores = {
            state.creator1.creator_id: state.creator1.score,
            state.creator2.creator_id: state.creator2.score,
        }
        reconstructed = {creator_id: 0 for creator_id in live_scores}
        reconstructed.update(session.event_log.reconstruct_scores())
        combos = [
            {"gift_id": gift_id, "recipient_creator_id": recipient_id, "quantity": quantity}
            for (gift_id, recipient_id), quantity in session.event_log.combo_counts().items()
        ]
        return BattleAuditSchema(
            battle_id=battle_id,
            live_scores=live_scores,
            reconstructed_scores=reconstructed,
            consistent=live_scores == reconstructed,
            combo_counts=combos,
        )

    # ==== Settlement ==========================================================

    async def _settle(self, session: BattleSession) -> SettlementSchema:
        """Store the result, announce it and credit the prize wallets.

        A ledger outage leaves the settlement pending; retry_settlement and the
        scheduler's retry job pay it later with the same idempotency keys.
        """
        settlement = session.settlement
        if self.Session is not None:
            try:
                await battle_db.save_settlement(self.Session, session.config, settlement)
            except RuntimeError as e:
                logging.error(f"Battle {session.battle_id} result was not stored: {e}")

        await self._publish(session, "battle_ended", settlement.model_dump(mode="json"))
        try:
            await self._pay_out(settlement)
        except ExternalServiceError as e:
            logging.error(f"Settlement of battle {session.battle_id} is pending: {e.message}")
        return settlement

    async def _pay_out(self, settlement: SettlementSchema) -> None:
        credits = payout_credits(
            settlement.distribution,
            settlement.creator1.id,
            settlement.creator2.id,
            self.platform_account_id,
        )
        source_ref = f"battle:{settlement.battle_id}"
        for recipient_id, amount, role in credits:
            await credit_with_retry(
                self.ledger,
                recipient_id,
                amount,
                source_ref,
                role,
                attempts=self.ledger_retry_attempts,
                backoff=self.ledger_retry_backoff,
            )
        settlement.settled = True
        logging.info(f"Battle {settlement.battle_id} settled with {len(credits)} credits")
        if self.Session is not None:
            try:
                await battle_db.mark_settled(self.Session, settlement.battle_id)
            except RuntimeError as e:
                logging.error(f"Battle {settlement.battle_id} settled flag was not stored: {e}")

    async def retry_settlement(self, battle_id: UUID) -> SettlementSchema:
        """Pay out a battle whose settlement is still pending

        Raises:
            StateError: The battle has not ended
            ExternalServiceError: The ledger is still unavailable
        """
        settlement: SettlementSchema | None = None
        try:
            session = self.registry.get(battle_id)
        except BattleNotFoundError:
            if self.Session is None:
                raise
            settlement = await battle_db.read_settlement(self.Session, battle_id)
            if settlement is None:
                raise
        else:
            if session.status != BattleStatusModel.ended:
                raise StateError("Battle has not ended yet.", "battle_not_ended")
            settlement = session.settlement

        if not settlement.settled:
            await self._pay_out(settlement)
        return settlement

    async def retry_pending_settlements(self) -> int:
        """Scheduler job: retry every settlement that is still pending"""
        pending = {
            session.battle_id: session.settlement
            for session in list(self.registry.sessions.values())
            if session.settlement is not None and not session.settlement.settled
        }
        if self.Session is not None:
            for settlement in await battle_db.read_unsettled(self.Session):
                pending.setdefault(settlement.battle_id, settlement)

        settled = 0
        for battle_id, settlement in pending.items():
            try:
                await self._pay_out(settlement)
                settled += 1
            except ExternalServiceError as e:
                logging.warning(f"Settlement of battle {battle_id} still pending: {e.message}")
        return settled

    # ==== Scheduler jobs ======================================================

    async def tick_live_battles(self) -> None:
        """Scheduler job: one tick for every live, unpaused battle"""
        for battle_id in self.registry.live_ids():
            session = self.registry.sessions.get(battle_id)
            if session is None or session.is_paused:
                continue
            try:
                state = await self.tick(battle_id)
            except StateError as e:
                # Paused or ended between listing and locking.
                logging.debug(f"Skipped tick for battle {battle_id}: {e.reason}")
                continue
            await self._publish(session, "tick", {"time_remaining": state.time_remaining})

    def purge_ended_battles(self, retention_hours: int) -> int:
        return self.registry.purge_ended(self.clock() - timedelta(hours=retention_hours))

    # ==== Outbound ============================================================

    async def _publish(self, session: BattleSession, event: str, payload: dict) -> None:
        await self.notifier.notify(session.battle_id, event, payload)

    async def _broadcast(self, session: BattleSession, entry: EventLogEntry) -> None:
        if self.connection_manager is not None:
            await self.connection_manager.broadcast(entry.model_dump(mode="json"), session.battle_id)
