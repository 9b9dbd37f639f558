from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func, or_, select, update
from datetime import datetime
from decimal import Decimal
from typing import List
from uuid import UUID
import logging

from battle_server.models.schema_models import (
    DuetTipTransactionSchema,
    LedgerEntrySchema,
)
from battle_server.models.schemas import (
    BattleResult,
    DuetTip,
    LedgerEntry,
    VideoDuet,
)

logging.basicConfig(level=logging.INFO)


class CreateData:
    @staticmethod
    async def create_battle_result(result: BattleResult, session: AsyncSession) -> bool:
        """Store a battle's settlement. Storing the same battle again replaces the row.

        Args:
            result (BattleResult): Row built by DataConverter
            session (AsyncSession): AsyncSession object to interact with database
        """
        async with session:
            try:
                await session.merge(result)
                await session.commit()
                return True
            except Exception as e:
                logging.error(f"Failed to create battle result: {e}")
                await session.rollback()
                return False

    @staticmethod
    async def create_ledger_entry(entry: LedgerEntrySchema, session: AsyncSession) -> bool:
        """Insert one wallet credit

        Args:
            entry (LedgerEntrySchema): Credit keyed by source_ref, recipient_id and role
            session (AsyncSession): AsyncSession object to interact with database

        Returns:
            bool: True if the credit was written, False if it was already in the ledger
        """
        async with session:
            try:
                session.add(
                    LedgerEntry(
                        entry_id=entry.entry_id,
                        source_ref=entry.source_ref,
                        recipient_id=entry.recipient_id,
                        role=entry.role,
                        amount=entry.amount,
                        created_at=entry.created_at,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                logging.info(
                    f"Ledger credit already recorded: {entry.source_ref} {entry.recipient_id} {entry.role}"
                )
                return False

    @staticmethod
    async def create_duet(duet: VideoDuet, session: AsyncSession) -> bool:
        async with session:
            try:
                session.add(duet)
                await session.commit()
                return True
            except Exception as e:
                logging.error(f"Failed to create duet data: {e}")
                await session.rollback()
                return False

    @staticmethod
    async def add_duet_tip(tip: DuetTipTransactionSchema, session: AsyncSession) -> None:
        """Add a tip row without committing; the caller owns the transaction."""
        session.add(
            DuetTip(
                tip_id=tip.tip_id,
                duet_id=tip.duet_id,
                tipper_id=tip.tipper_id,
                amount=tip.amount,
                platform_fee=tip.platform_fee,
                original_creator_share=tip.original_creator_share,
                duet_creator_share=tip.duet_creator_share,
                message=tip.message,
                created_at=tip.created_at,
            )
        )


class ReadData:
    @staticmethod
    async def read_battle_result(battle_id: UUID, session: AsyncSession) -> BattleResult | None:
        async with session:
            stmt = select(BattleResult).where(BattleResult.battle_id == battle_id)
            result = await session.execute(stmt)
            return result.scalars().first()

    @staticmethod
    async def read_unsettled_battle_results(session: AsyncSession) -> List[BattleResult]:
        """Read battle results whose prize credits have not all gone through"""
        async with session:
            stmt = (
                select(BattleResult)
                .where(BattleResult.settled.is_(False))
                .order_by(BattleResult.ended_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def read_ledger_entries(source_ref: str, session: AsyncSession) -> List[LedgerEntrySchema]:
        async with session:
            stmt = (
                select(LedgerEntry)
                .where(LedgerEntry.source_ref == source_ref)
                .order_by(LedgerEntry.created_at)
            )
            result = await session.execute(stmt)
            return [LedgerEntrySchema.model_validate(row) for row in result.scalars().all()]

    @staticmethod
    async def read_ledger_entry(
        source_ref: str, recipient_id: str, role: str, session: AsyncSession
    ) -> LedgerEntry | None:
        async with session:
            stmt = select(LedgerEntry).where(
                LedgerEntry.source_ref == source_ref,
                LedgerEntry.recipient_id == recipient_id,
                LedgerEntry.role == role,
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    @staticmethod
    async def read_balance(user_id: str, session: AsyncSession) -> Decimal:
        """Sum of every credit and debit of a wallet"""
        async with session:
            stmt = select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.recipient_id == user_id
            )
            result = await session.execute(stmt)
            return Decimal(str(result.scalar_one()))

    @staticmethod
    async def read_creator_battle_results(user_id: str, session: AsyncSession) -> List[BattleResult]:
        """Read every stored battle result the creator took part in"""
        async with session:
            stmt = (
                select(BattleResult)
                .where(or_(BattleResult.creator1_id == user_id, BattleResult.creator2_id == user_id))
                .order_by(BattleResult.ended_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def read_duet(duet_id: UUID, session: AsyncSession) -> VideoDuet | None:
        async with session:
            stmt = select(VideoDuet).where(VideoDuet.duet_id == duet_id)
            result = await session.execute(stmt)
            return result.scalars().first()

    @staticmethod
    async def read_duet_tips(duet_id: UUID, session: AsyncSession) -> List[DuetTipTransactionSchema]:
        async with session:
            stmt = (
                select(DuetTip)
                .where(DuetTip.duet_id == duet_id)
                .order_by(DuetTip.created_at)
            )
            result = await session.execute(stmt)
            return [
                DuetTipTransactionSchema.model_validate(row)
                for row in result.scalars().all()
            ]


    @staticmethod
    async def read_duet_tip(tip_id: UUID, session: AsyncSession) -> DuetTipTransactionSchema | None:
        async with session:
            stmt = select(DuetTip).where(DuetTip.tip_id == tip_id)
            result = await session.execute(stmt)
            row = result.scalars().first()
            return DuetTipTransactionSchema.model_validate(row) if row else None


class UpdateData:
    @staticmethod
    async def update_battle_settled(battle_id: UUID, session: AsyncSession) -> bool:
        """Mark every credit of a battle's settlement as done

        Args:
            battle_id (UUID): To identify the battle result
        """
        async with session:
            try:
                stmt = (
                    update(BattleResult)
                    .where(BattleResult.battle_id == battle_id)
                    .values(settled=True, settled_at=datetime.now())
                )
                await session.execute(stmt)
                await session.commit()
                return True
            except Exception as e:
                logging.error(f"Failed to mark battle settled: {e}")
                await session.rollback()
                return False

    @staticmethod
    async def add_duet_tip_totals_no_commit(tip: DuetTipTransactionSchema, session: AsyncSession) -> None:
        stmt = (
            update(VideoDuet)
            .where(VideoDuet.duet_id == tip.duet_id)
            .values(
                tip_count=VideoDuet.tip_count + 1,
                total_tips=VideoDuet.total_tips + tip.amount,
                original_creator_earnings=VideoDuet.original_creator_earnings
                + tip.original_creator_share,
                duet_creator_earnings=VideoDuet.duet_creator_earnings
                + tip.duet_creator_share,
            )
        )
        await session.execute(stmt)
