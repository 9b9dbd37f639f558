import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from uuid6 import uuid7

from battle_server.converter import DataConverter
from battle_server.crud import CreateData, ReadData, UpdateData
from battle_server.domain.battle_rules import DuetRevenueSplitter
from battle_server.domain.errors import DuetNotFoundError, ExternalServiceError, ValidationError
from battle_server.models.dc_models import ClientDuetModel
from battle_server.models.schema_models import DuetSchema, DuetTipTransactionSchema, TipSplitSchema
from battle_server.services.collaborators import WalletLedger
from battle_server.services.ledger_db import credit_with_retry

logging.basicConfig(level=logging.INFO)

data_converter = DataConverter()


def tip_source_ref(duet_id: UUID, tip_id: UUID) -> str:
    return f"duet:{duet_id}:tip:{tip_id}"


class DuetService:
    """Duets and their tips. Each tip is stored first, then credited to three wallets."""

    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: WalletLedger,
        splitter: DuetRevenueSplitter | None = None,
        *,
        platform_account_id: str = "platform",
        ledger_retry_attempts: int = 3,
        ledger_retry_backoff: float = 0.5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.splitter = splitter or DuetRevenueSplitter()
        self.platform_account_id = platform_account_id
        self.ledger_retry_attempts = ledger_retry_attempts
        self.ledger_retry_backoff = ledger_retry_backoff
        self.clock = clock

    def compute_split(self, tip_amount: Decimal, revenue_share_percentage: Decimal) -> TipSplitSchema:
        return self.splitter.compute_split(tip_amount, revenue_share_percentage)

    async def create_duet(self, client_data: ClientDuetModel) -> DuetSchema:
        row = data_converter.convert_client_duet_to_row(client_data, uuid7(), self.clock())
        async with self.Session() as session:
            success = await CreateData.create_duet(row, session)
            if not success:
                raise RuntimeError("Failed to create duet")
        logging.info(f"Duet {row.duet_id} created by {row.duet_creator_id}")
        return data_converter.convert_duet_row_to_schema(row)

    async def get_duet(self, duet_id: UUID) -> DuetSchema:
        async with self.Session() as session:
            row = await ReadData.read_duet(duet_id, session)
            if row is None:
                raise DuetNotFoundError(duet_id)
            return data_converter.convert_duet_row_to_schema(row)

    async def list_tips(self, duet_id: UUID) -> List[DuetTipTransactionSchema]:
        """Raises DuetNotFoundError for an unknown duet"""
        await self.get_duet(duet_id)
        async with self.Session() as session:
            return await ReadData.read_duet_tips(duet_id, session)

    async def tip_duet(
        self, duet_id: UUID, tipper_id: str, amount: Decimal, message: str | None = None
    ) -> DuetTipTransactionSchema:
        """Tip a duet and pay the platform, the original creator and the duet creator

        Args:
            duet_id (UUID): Duet to tip
            tipper_id (str): Viewer sending the tip
            amount (Decimal): Tip in SoftPoints
            message (str | None): Optional note shown with the tip

        Raises:
            ValidationError: Tips are disabled, the tipper is one of the duet's creators
                or the amount is not a positive whole-cent amount
            ExternalServiceError: The tip was stored but the ledger is unavailable;
                retry_tip_credits pays it later

        Returns:
            DuetTipTransactionSchema: The stored tip with its split
        """
        duet = await self.get_duet(duet_id)
        if not duet.config.allow_tips:
            raise ValidationError("Tips are disabled for this duet.", "tips_disabled")
        if tipper_id in (duet.original_creator_id, duet.duet_creator_id):
            raise ValidationError("Creators cannot tip their own duet.", "self_tip")

        split = self.splitter.compute_split(amount, duet.config.revenue_share_percentage)
        tip = DuetTipTransactionSchema(
            tip_id=uuid7(),
            duet_id=duet_id,
            tipper_id=tipper_id,
            amount=amount,
            platform_fee=split.platform_fee,
            original_creator_share=split.original_creator_share,
            duet_creator_share=split.duet_creator_share,
            message=message,
            created_at=self.clock(),
        )

        async with self.Session() as session:
            try:
                await CreateData.add_duet_tip(tip, session)
                await UpdateData.add_duet_tip_totals_no_commit(tip, session)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logging.error(f"Failed to record tip for duet {duet_id}: {e}")
                raise RuntimeError("Failed to record duet tip") from e

        logging.info(f"Duet {duet_id} tipped {amount} by {tipper_id}")
        await self._pay_out(duet, tip)
        return tip

    async def retry_tip_credits(self, duet_id: UUID, tip_id: UUID) -> DuetTipTransactionSchema:
        duet = await self.get_duet(duet_id)
        async with self.Session() as session:
            tip = await ReadData.read_duet_tip(tip_id, session)
        if tip is None or tip.duet_id != duet_id:
            raise ValidationError(f"Tip {tip_id} does not belong to duet {duet_id}.", "unknown_tip")
        await self._pay_out(duet, tip)
        return tip

    async def _pay_out(self, duet: DuetSchema, tip: DuetTipTransactionSchema) -> None:
        source_ref = tip_source_ref(duet.duet_id, tip.tip_id)
        credits = [
            (self.platform_account_id, tip.platform_fee, "platform_fee"),
            (duet.original_creator_id, tip.original_creator_share, "original_creator"),
            (duet.duet_creator_id, tip.duet_creator_share, "duet_creator"),
        ]
        try:
            for recipient_id, amount, role in credits:
                if amount > 0:
                    await credit_with_retry(
                        self.ledger,
                        recipient_id,
                        amount,
                        source_ref,
                        role,
                        attempts=self.ledger_retry_attempts,
                        backoff=self.ledger_retry_backoff,
                    )
        except ExternalServiceError:
            logging.error(f"Credits for tip {tip.tip_id} are pending")
            raise
