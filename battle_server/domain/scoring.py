from datetime import datetime
from typing import Callable, Dict, Tuple

from uuid6 import uuid7

from battle_server.domain.battle_rules import VOTE_POINTS, score_percentage
from battle_server.domain.errors import AlreadyVotedError, ValidationError
from battle_server.domain.event_log import EventLog
from battle_server.domain.gift_catalog import GiftCatalog
from battle_server.models.dc_models import ScoringMethodModel
from battle_server.models.schema_models import (
    BattleConfigSchema,
    CreatorScoreSchema,
    GiftEventSchema,
    VoteEventSchema,
)


class ScoringEngine:
    """Running totals of one battle.

    The owning BattleSession checks the lifecycle before calling in; this class
    only validates the event itself. Invariant, for each creator:
    score == gift_total + vote_points * vote_count
    """

    def __init__(
        self,
        config: BattleConfigSchema,
        catalog: GiftCatalog,
        event_log: EventLog,
        vote_points: int = VOTE_POINTS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.catalog = catalog
        self.event_log = event_log
        self.vote_points = vote_points
        self.clock = clock
        self._totals: Dict[str, CreatorScoreSchema] = {
            config.creator1.id: CreatorScoreSchema(creator_id=config.creator1.id),
            config.creator2.id: CreatorScoreSchema(creator_id=config.creator2.id),
        }
        self.combos: Dict[Tuple[str, str], int] = {}
        self._votes: Dict[str, VoteEventSchema] = {}

    @property
    def gifts_enabled(self) -> bool:
        return self.config.allow_gifts and self.config.scoring_method in (
            ScoringMethodModel.gifts,
            ScoringMethodModel.hybrid,
        )

    @property
    def voting_enabled(self) -> bool:
        return self.config.allow_voting and self.config.scoring_method in (
            ScoringMethodModel.votes,
            ScoringMethodModel.hybrid,
        )

    def _creator_totals(self, creator_id: str) -> CreatorScoreSchema:
        totals = self._totals.get(creator_id)
        if totals is None:
            raise ValidationError(
                f"{creator_id} is not a creator in this battle.", "unknown_creator"
            )
        return totals

    def apply_gift(
        self, sender_id: str, gift_id: str, recipient_creator_id: str, quantity: int
    ) -> GiftEventSchema:
        """Add a gift's value to the recipient and log it.

        Args:
            sender_id (str): Viewer sending the gift
            gift_id (str): Catalog id of the gift
            recipient_creator_id (str): creator1 or creator2
            quantity (int): Number of gifts, must be positive

        Returns:
            GiftEventSchema: The logged event, with the combo count after this gift
        """
        if not self.gifts_enabled:
            raise ValidationError("Gifts are disabled for this battle.", "gifts_disabled")
        totals = self._creator_totals(recipient_creator_id)
        if quantity <= 0:
            raise ValidationError("Gift quantity must be positive.", "invalid_quantity")
        gift = self.catalog.get(gift_id)

        total_value = gift.point_value * quantity
        totals.gift_total += total_value
        totals.score += total_value

        combo_key = (gift_id, recipient_creator_id)
        self.combos[combo_key] = self.combos.get(combo_key, 0) + quantity

        event = GiftEventSchema(
            id=uuid7(),
            battle_id=self.config.battle_id,
            sequence=self.event_log.next_sequence(),
            sender_id=sender_id,
            recipient_creator_id=recipient_creator_id,
            gift_id=gift_id,
            quantity=quantity,
            total_value=total_value,
            combo_count=self.combos[combo_key],
            has_special_effect=gift.has_special_effect,
            effect_type=gift.effect_type,
            timestamp=self.clock(),
        )
        return self.event_log.append(event)

    def apply_vote(self, voter_id: str, creator_id: str) -> VoteEventSchema:
        """Count a viewer's single vote.

        Raises:
            AlreadyVotedError: voter_id already voted in this battle
        """
        if not self.voting_enabled:
            raise ValidationError("Voting is disabled for this battle.", "voting_disabled")
        totals = self._creator_totals(creator_id)
        if voter_id in self._votes:
            raise AlreadyVotedError(voter_id)

        totals.vote_count += 1
        totals.score += self.vote_points

        event = VoteEventSchema(
            id=uuid7(),
            battle_id=self.config.battle_id,
            sequence=self.event_log.next_sequence(),
            voter_id=voter_id,
            creator_id=creator_id,
            points=self.vote_points,
            timestamp=self.clock(),
        )
        self._votes[voter_id] = event
        return self.event_log.append(event)

    def has_voted(self, voter_id: str) -> bool:
        return voter_id in self._votes

    def score_of(self, creator_id: str) -> int:
        return self._creator_totals(creator_id).score

    def get_score_percentage(self, score: int) -> float:
        return score_percentage(
            score,
            self.score_of(self.config.creator1.id),
            self.score_of(self.config.creator2.id),
        )

    def snapshot(self, creator_id: str) -> CreatorScoreSchema:
        totals = self._creator_totals(creator_id)
        return totals.model_copy(
            update={"score_percentage": self.get_score_percentage(totals.score)}
        )
