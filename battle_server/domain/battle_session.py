"""Battle lifecycle: waiting -> live -> ended.

A session is not safe to mutate from several tasks at once across ``await``
points; callers serialize mutations per battle (see services.battle_registry).
All methods except ``start`` are synchronous.
"""

from datetime import datetime
from typing import Callable, Dict, Optional, Protocol

from uuid6 import uuid7

from battle_server.domain.battle_rules import VOTE_POINTS, PrizePoolCalculator
from battle_server.domain.errors import ResourceError, StateError, ValidationError
from battle_server.domain.event_log import EventLog
from battle_server.domain.gift_catalog import GiftCatalog
from battle_server.domain.scoring import ScoringEngine
from battle_server.models.dc_models import (
    BattleStatusModel,
    EndReasonModel,
    MessageTypeModel,
)
from battle_server.models.schema_models import (
    BattleConfigSchema,
    BattleStateSchema,
    ChatMessageSchema,
    CreatorParticipantSchema,
    GiftEventSchema,
    SettlementSchema,
    VoteEventSchema,
)

MAX_CHAT_LENGTH = 500
DEFAULT_MEDIA_CONSTRAINTS = {"video": True, "audio": True}


class MediaCapture(Protocol):
    async def acquire(self, participant_id: str, constraints: dict) -> object:
        """Return a stream handle or raise ResourceError."""

    async def release(self, participant_id: str) -> None:
        ...


class BattleSession:
    def __init__(
        self,
        config: BattleConfigSchema,
        catalog: GiftCatalog,
        prize_calculator: Optional[PrizePoolCalculator] = None,
        vote_points: int = VOTE_POINTS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.catalog = catalog
        self.prize_calculator = prize_calculator or PrizePoolCalculator()
        self.clock = clock
        self.event_log = EventLog(config.battle_id)
        self.scoring = ScoringEngine(config, catalog, self.event_log, vote_points, clock)

        self.status = BattleStatusModel.waiting
        self.is_paused = False
        self.time_remaining = config.duration
        self.viewer_count = 0
        self.peak_viewers = 0
        self.end_reason: Optional[EndReasonModel] = None
        self.winner_id: Optional[str] = None
        self.ended_at: Optional[datetime] = None
        self.settlement: Optional[SettlementSchema] = None
        self.streams: Dict[str, object] = {}
        self.starting = False

    @property
    def battle_id(self):
        return self.config.battle_id

    @property
    def creators(self) -> tuple[CreatorParticipantSchema, CreatorParticipantSchema]:
        return self.config.creator1, self.config.creator2

    def is_creator(self, user_id: str) -> bool:
        return user_id in (self.config.creator1.id, self.config.creator2.id)

    def _ensure_live(self, action: str) -> None:
        if self.status == BattleStatusModel.ended:
            raise StateError(f"Battle has ended, cannot {action}.", "battle_ended")
        if self.status != BattleStatusModel.live:
            raise StateError(f"Battle is not live yet, cannot {action}.", "battle_not_live")

    # ==== Lifecycle ===========================================================

    async def start(self, media: MediaCapture, constraints: dict | None = None) -> BattleStateSchema:
        """Acquire camera and microphone for both creators, then go live.

        Only one start runs at a time. When it fails or is cancelled, the
        devices it acquired are released and the session stays waiting so
        the host can retry.

        Raises:
            ResourceError: A creator's devices could not be acquired
            StateError: The battle is not waiting, is already starting, or was aborted meanwhile
        """
        if self.status != BattleStatusModel.waiting or self.starting:
            raise StateError("Battle has already started.", "battle_already_started")

        self.starting = True
        acquired: Dict[str, object] = {}
        try:
            for creator in self.creators:
                acquired[creator.id] = await media.acquire(
                    creator.id, constraints or DEFAULT_MEDIA_CONSTRAINTS
                )
            if self.status != BattleStatusModel.waiting:
                raise StateError("Battle was cancelled before it started.", "battle_ended")
        except BaseException:
            # Also runs on CancelledError when the caller's timeout fires
            for participant_id in acquired:
                await media.release(participant_id)
            raise
        finally:
            self.starting = False

        self.streams = acquired
        self.status = BattleStatusModel.live
        for creator in self.creators:
            creator.is_live = True
        self.catalog.pin(self.battle_id)
        self._system_message("Battle started!")
        return self.snapshot()

    def tick(self) -> BattleStateSchema:
        """Advance the countdown by one second; the last second ends the battle."""
        self._ensure_live("tick")
        if self.is_paused:
            raise StateError("Battle is paused.", "battle_paused")
        self.time_remaining -= 1
        if self.time_remaining <= 0:
            self.time_remaining = 0
            self.end(EndReasonModel.timer_expired)
        return self.snapshot()

    def pause(self) -> BattleStateSchema:
        self._ensure_live("pause")
        if self.is_paused:
            raise StateError("Battle is already paused.", "battle_paused")
        self.is_paused = True
        return self.snapshot()

    def resume(self) -> BattleStateSchema:
        self._ensure_live("resume")
        if not self.is_paused:
            raise StateError("Battle is not paused.", "battle_not_paused")
        self.is_paused = False
        return self.snapshot()

    def end(self, reason: EndReasonModel) -> SettlementSchema:
        """Freeze the scores and work out the winner and prize split.

        Live battles end with any reason; a waiting battle can only be aborted.
        """
        if self.status == BattleStatusModel.ended:
            raise StateError("Battle has already ended.", "battle_ended")
        if self.status != BattleStatusModel.live and reason != EndReasonModel.aborted:
            raise StateError(
                "Battle is not live; it can only be aborted.", "battle_not_live"
            )

        creator1, creator2 = self.creators
        score1 = self.scoring.score_of(creator1.id)
        score2 = self.scoring.score_of(creator2.id)

        if reason == EndReasonModel.aborted:
            distribution = self.prize_calculator.refund(
                self.config.entry_fee, creator1.id, creator2.id
            )
            self._system_message("Battle was cancelled.")
        else:
            distribution = self.prize_calculator.distribute(
                self.config.prize_pot, creator1.id, score1, creator2.id, score2
            )
            if distribution.is_tie:
                self._system_message("Battle ended in a tie!")
            else:
                winner = creator1 if distribution.winner_id == creator1.id else creator2
                loser = creator2 if winner is creator1 else creator1
                _record_result(winner, won=True)
                _record_result(loser, won=False)
                self._system_message(
                    f"{winner.display_name} wins with {max(score1, score2)} points!"
                )

        self.status = BattleStatusModel.ended
        self.is_paused = False
        self.end_reason = reason
        self.winner_id = distribution.winner_id
        self.ended_at = self.clock()
        for creator in self.creators:
            creator.is_live = False
        self.catalog.unpin(self.battle_id)

        self.settlement = SettlementSchema(
            battle_id=self.battle_id,
            reason=reason,
            winner_id=distribution.winner_id,
            winner_score=max(score1, score2),
            margin_of_victory=abs(score1 - score2),
            final_state=self.snapshot(),
            distribution=distribution,
            creator1=creator1.model_copy(),
            creator2=creator2.model_copy(),
            ended_at=self.ended_at,
        )
        return self.settlement

    # ==== Viewer events =======================================================

    def apply_gift(
        self, sender_id: str, gift_id: str, recipient_creator_id: str, quantity: int
    ) -> GiftEventSchema:
        self._ensure_live("send gifts")
        return self.scoring.apply_gift(sender_id, gift_id, recipient_creator_id, quantity)

    def apply_vote(self, voter_id: str, creator_id: str) -> VoteEventSchema:
        self._ensure_live("vote")
        return self.scoring.apply_vote(voter_id, creator_id)

    def post_chat(self, sender_id: str, message: str) -> ChatMessageSchema:
        if self.status == BattleStatusModel.ended:
            raise StateError("Battle has ended, chat is closed.", "battle_ended")
        message = message.strip()
        if not message:
            raise ValidationError("Message is empty.", "empty_message")
        if len(message) > MAX_CHAT_LENGTH:
            raise ValidationError(
                f"Message is longer than {MAX_CHAT_LENGTH} characters.", "message_too_long"
            )
        return self._append_chat(sender_id, message, MessageTypeModel.message)

    def update_viewers(self, viewer_count: int) -> bool:
        """Record approximate viewer telemetry. Ignored once the battle ended."""
        if self.status == BattleStatusModel.ended:
            return False
        self.viewer_count = viewer_count
        self.peak_viewers = max(self.peak_viewers, viewer_count)
        return True

    def _system_message(self, message: str) -> ChatMessageSchema:
        return self._append_chat("system", message, MessageTypeModel.system)

    def _append_chat(self, sender_id: str, message: str, message_type: MessageTypeModel) -> ChatMessageSchema:
        entry = ChatMessageSchema(
            id=uuid7(),
            battle_id=self.battle_id,
            sequence=self.event_log.next_sequence(),
            sender_id=sender_id,
            message=message,
            message_type=message_type,
            timestamp=self.clock(),
        )
        return self.event_log.append(entry)

    # ==== Queries =============================================================

    def snapshot(self) -> BattleStateSchema:
        creator1, creator2 = self.creators
        return BattleStateSchema(
            battle_id=self.battle_id,
            status=self.status,
            is_paused=self.is_paused,
            time_remaining=self.time_remaining,
            creator1=self.scoring.snapshot(creator1.id),
            creator2=self.scoring.snapshot(creator2.id),
            viewer_count=self.viewer_count,
            peak_viewers=self.peak_viewers,
            last_sequence=self.event_log.last_sequence,
            end_reason=self.end_reason,
            winner_id=self.winner_id,
        )


def _record_result(creator: CreatorParticipantSchema, won: bool) -> None:
    if won:
        creator.battles_won += 1
    else:
        creator.battles_lost += 1
    played = creator.battles_won + creator.battles_lost
    creator.win_rate = round(creator.battles_won / played * 100, 1)
