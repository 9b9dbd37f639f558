from pydantic import BaseModel, Field
from decimal import Decimal
from enum import Enum
from uuid import UUID
from typing import Optional, Dict


class ScoringMethodModel(str, Enum):
    gifts = "gifts"
    votes = "votes"
    hybrid = "hybrid"


class BattleStatusModel(str, Enum):
    waiting = "waiting"
    live = "live"
    ended = "ended"


class EndReasonModel(str, Enum):
    timer_expired = "timer_expired"
    stopped = "stopped"  # host ended the battle early, prizes are paid
    aborted = "aborted"  # cancelled, entry fees are refunded


class BattleTypeModel(str, Enum):
    live_duel = "live_duel"
    talent_show = "talent_show"
    dance_off = "dance_off"
    singing_battle = "singing_battle"


class RarityModel(str, Enum):
    common = "common"
    rare = "rare"
    epic = "epic"
    legendary = "legendary"


class MessageTypeModel(str, Enum):
    message = "message"
    system = "system"


class DuetTypeModel(str, Enum):
    side_by_side = "side_by_side"
    split_screen = "split_screen"
    reaction = "reaction"
    green_screen = "green_screen"


class LayoutPositionModel(str, Enum):
    left = "left"
    right = "right"
    top = "top"
    bottom = "bottom"


class AudioMixModel(str, Enum):
    original_only = "original_only"
    duet_only = "duet_only"
    both = "both"
    custom = "custom"


class InvitationStatusModel(str, Enum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"


class MediaStatusModel(str, Enum):
    granted = "granted"
    permission_denied = "permission_denied"
    device_busy = "device_busy"
    not_found = "not_found"


class CreatorModel(BaseModel):
    id: str
    username: str
    display_name: str
    level: int = 1
    is_host: bool = False


class ClientBattleModel(BaseModel):
    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    battle_type: BattleTypeModel = BattleTypeModel.live_duel
    duration: int
    creator1: CreatorModel
    creator2: CreatorModel
    scoring_method: ScoringMethodModel = ScoringMethodModel.hybrid
    allow_voting: bool = True
    allow_gifts: bool = True
    entry_fee: Decimal = Decimal("0")


class BattleInvitationModel(ClientBattleModel):
    """Battle proposed by creator1 to creator2."""

    requested_by: str


class StartBattleModel(BaseModel):
    """Device status reported by each creator client, keyed by creator id."""

    requested_by: str
    media_status: Dict[str, MediaStatusModel]


class SendGiftModel(BaseModel):
    sender_id: str
    gift_id: str
    recipient_creator_id: str
    quantity: int = 1


class CastVoteModel(BaseModel):
    voter_id: str
    creator_id: str


class ControlBattleModel(BaseModel):
    requested_by: str


class EndBattleModel(BaseModel):
    requested_by: str
    reason: EndReasonModel = EndReasonModel.stopped


class ChatModel(BaseModel):
    sender_id: str
    message: str


class ViewerCountModel(BaseModel):
    viewer_count: int = Field(ge=0)


class DuetConfigModel(BaseModel):
    duet_type: DuetTypeModel
    layout_position: LayoutPositionModel = LayoutPositionModel.right
    audio_mix: AudioMixModel = AudioMixModel.both
    revenue_share_percentage: Decimal = Field(default=Decimal("50"), ge=0, le=100)
    allow_tips: bool = True
    allow_comments: bool = True


class ClientDuetModel(BaseModel):
    original_video_id: Optional[UUID] = None
    original_creator_id: str
    duet_creator_id: str
    title: str = Field(max_length=200)
    config: DuetConfigModel


class DuetTipModel(BaseModel):
    tipper_id: str
    amount: Decimal = Field(gt=0)
    message: Optional[str] = None
