from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.schema import Column, ForeignKey, UniqueConstraint
from sqlalchemy.types import Boolean, Integer, String, Uuid, Numeric, DateTime, JSON, TEXT
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


class BattleResult(Base):
    __tablename__ = "battle_result"
    battle_id = Column(Uuid, primary_key=True)
    title = Column(String)
    creator1_id = Column(String, nullable=False)
    creator2_id = Column(String, nullable=False)
    end_reason = Column(String, nullable=False)
    winner_id = Column(String, nullable=True)
    winner_score = Column(Integer, default=0)
    margin_of_victory = Column(Integer, default=0)
    entry_fee = Column(Numeric(10, 2), default=0)
    prize_pot = Column(Numeric(20, 2), default=0)
    winner_share = Column(Numeric(20, 2), default=0)
    runner_up_share = Column(Numeric(20, 2), default=0)
    viewer_pool_share = Column(Numeric(20, 2), default=0)
    settlement = Column(JSON)
    settled = Column(Boolean, default=False)
    ended_at = Column(DateTime, default=datetime.now)
    settled_at = Column(DateTime, nullable=True)


class LedgerEntry(Base):
    """One credit to a wallet. A (source_ref, recipient_id, role) triple is paid once."""

    __tablename__ = "ledger_entry"
    __table_args__ = (
        UniqueConstraint("source_ref", "recipient_id", "role", name="uq_ledger_credit"),
    )
    entry_id = Column(Uuid, primary_key=True, default=uuid7)
    source_ref = Column(String, nullable=False)
    recipient_id = Column(String, nullable=False)
    role = Column(String, nullable=False)
    amount = Column(Numeric(20, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.now)


class VideoDuet(Base):
    __tablename__ = "video_duet"
    duet_id = Column(Uuid, primary_key=True, default=uuid7)
    original_video_id = Column(Uuid, nullable=True)
    original_creator_id = Column(String, nullable=False)
    duet_creator_id = Column(String, nullable=False)
    title = Column(String)
    duet_type = Column(String, nullable=False)
    layout_position = Column(String, default="right")
    audio_mix = Column(String, default="both")
    revenue_share_percentage = Column(Numeric(5, 2), default=50)
    allow_tips = Column(Boolean, default=True)
    allow_comments = Column(Boolean, default=True)
    tip_count = Column(Integer, default=0)
    total_tips = Column(Numeric(20, 2), default=0)
    original_creator_earnings = Column(Numeric(20, 2), default=0)
    duet_creator_earnings = Column(Numeric(20, 2), default=0)
    created_at = Column(DateTime, default=datetime.now)

    tips = relationship("DuetTip", back_populates="duet", cascade="all, delete")


class DuetTip(Base):
    __tablename__ = "duet_tip"
    tip_id = Column(Uuid, primary_key=True, default=uuid7)
    duet_id = Column(Uuid, ForeignKey("video_duet.duet_id"), nullable=False)
    tipper_id = Column(String, nullable=False)
    amount = Column(Numeric(20, 2), nullable=False)
    platform_fee = Column(Numeric(20, 2), nullable=False)
    original_creator_share = Column(Numeric(20, 2), nullable=False)
    duet_creator_share = Column(Numeric(20, 2), nullable=False)
    message = Column(TEXT, nullable=True)
    created_at = Column(DateTime, default=datetime.now)

    duet = relationship("VideoDuet", back_populates="tips")
