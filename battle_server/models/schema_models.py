from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, Dict, List, Literal, Union
from uuid import UUID
from datetime import datetime

from battle_server.models.dc_models import (
    AudioMixModel,
    ClientBattleModel,
    InvitationStatusModel,
    BattleStatusModel,
    BattleTypeModel,
    DuetTypeModel,
    EndReasonModel,
    LayoutPositionModel,
    MessageTypeModel,
    RarityModel,
    ScoringMethodModel,
)


class CreatorParticipantSchema(BaseModel):
    id: str
    username: str
    display_name: str
    level: int = 1
    battles_won: int = 0
    battles_lost: int = 0
    win_rate: float = 0.0
    is_live: bool = False
    is_host: bool = False

    class Config:
        from_attributes = True


class BattleConfigSchema(BaseModel):
    battle_id: UUID
    title: str
    description: Optional[str] = None
    battle_type: BattleTypeModel = BattleTypeModel.live_duel
    duration: int
    creator1: CreatorParticipantSchema
    creator2: CreatorParticipantSchema
    scoring_method: ScoringMethodModel
    allow_voting: bool
    allow_gifts: bool
    entry_fee: Decimal
    prize_pot: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class GiftDefinitionSchema(BaseModel):
    id: str
    name: str
    icon: str = ""
    point_value: int = Field(gt=0)
    usd_value: float
    rarity: RarityModel
    has_special_effect: bool = False
    effect_type: Optional[str] = None

    class Config:
        frozen = True


class GiftEventSchema(BaseModel):
    kind: Literal["gift"] = "gift"
    id: UUID
    battle_id: UUID
    sequence: int
    sender_id: str
    recipient_creator_id: str
    gift_id: str
    quantity: int
    total_value: int
    combo_count: int
    has_special_effect: bool = False
    effect_type: Optional[str] = None
    timestamp: datetime


class VoteEventSchema(BaseModel):
    kind: Literal["vote"] = "vote"
    id: UUID
    battle_id: UUID
    sequence: int
    voter_id: str
    creator_id: str
    points: int
    timestamp: datetime


class ChatMessageSchema(BaseModel):
    kind: Literal["chat"] = "chat"
    id: UUID
    battle_id: UUID
    sequence: int
    sender_id: str
    message: str
    message_type: MessageTypeModel = MessageTypeModel.message
    timestamp: datetime


EventLogEntry = Union[GiftEventSchema, VoteEventSchema, ChatMessageSchema]


class CreatorScoreSchema(BaseModel):
    creator_id: str
    score: int = 0
    gift_total: int = 0
    vote_count: int = 0
    score_percentage: float = 50.0


class BattleStateSchema(BaseModel):
    battle_id: UUID
    status: BattleStatusModel
    is_paused: bool
    time_remaining: int
    creator1: CreatorScoreSchema
    creator2: CreatorScoreSchema
    viewer_count: int
    peak_viewers: int
    last_sequence: int
    end_reason: Optional[EndReasonModel] = None
    winner_id: Optional[str] = None


class PrizeDistributionSchema(BaseModel):
    prize_pot: Decimal
    winner_share: Decimal
    runner_up_share: Decimal
    viewer_pool_share: Decimal
    winner_id: Optional[str] = None
    runner_up_id: Optional[str] = None
    is_tie: bool = False
    refunds: Dict[str, Decimal] = {}


class SettlementSchema(BaseModel):
    battle_id: UUID
    reason: EndReasonModel
    winner_id: Optional[str]
    winner_score: int
    margin_of_victory: int
    final_state: BattleStateSchema
    distribution: PrizeDistributionSchema
    creator1: CreatorParticipantSchema
    creator2: CreatorParticipantSchema
    ended_at: datetime
    settled: bool = False


class TipSplitSchema(BaseModel):
    platform_fee: Decimal
    original_creator_share: Decimal
    duet_creator_share: Decimal


class DuetConfigSchema(BaseModel):
    duet_type: DuetTypeModel
    layout_position: LayoutPositionModel = LayoutPositionModel.right
    audio_mix: AudioMixModel = AudioMixModel.both
    revenue_share_percentage: Decimal = Decimal("50")
    allow_tips: bool = True
    allow_comments: bool = True

    class Config:
        from_attributes = True


class DuetSchema(BaseModel):
    duet_id: UUID
    original_video_id: Optional[UUID] = None
    original_creator_id: str
    duet_creator_id: str
    title: str
    config: DuetConfigSchema
    tip_count: int = 0
    total_tips: Decimal = Decimal("0")
    original_creator_earnings: Decimal = Decimal("0")
    duet_creator_earnings: Decimal = Decimal("0")
    created_at: datetime

    class Config:
        from_attributes = True


class DuetTipTransactionSchema(BaseModel):
    tip_id: UUID
    duet_id: UUID
    tipper_id: str
    amount: Decimal
    platform_fee: Decimal
    original_creator_share: Decimal
    duet_creator_share: Decimal
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerEntrySchema(BaseModel):
    entry_id: UUID
    source_ref: str
    recipient_id: str
    role: str
    amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class BattleAuditSchema(BaseModel):
    battle_id: UUID
    live_scores: Dict[str, int]
    reconstructed_scores: Dict[str, int]
    consistent: bool
    combo_counts: List[Dict]


class CreatorStatsSchema(BaseModel):
    """Battle record derived from stored results. Aborted battles are not counted."""

    user_id: str
    total_battles: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0
    total_earnings: Decimal = Decimal("0")
    win_rate: float = 0.0


class BattleInvitationSchema(BaseModel):
    invitation_id: UUID
    inviter_id: str
    invitee_id: str
    battle: ClientBattleModel
    prize_pot: Decimal
    status: InvitationStatusModel = InvitationStatusModel.pending
    created_at: datetime
    expires_at: datetime
    responded_at: Optional[datetime] = None
    battle_id: Optional[UUID] = None
