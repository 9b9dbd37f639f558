"""DB service layer for wallet credits and debits.

- This layer owns session boundaries.
- Duplicate credits and debits are rejected by the ledger_entry unique key, which makes
  every entry safe to retry. A wallet balance is the sum of its entries.
"""

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from uuid6 import uuid7

from battle_server.crud import CreateData, ReadData
from battle_server.domain.errors import ExternalServiceError, ValidationError
from battle_server.models.schema_models import LedgerEntrySchema
from battle_server.services.collaborators import WalletLedger


class SqlWalletLedger:
    def __init__(self, Session: async_sessionmaker):
        self.Session = Session

    async def credit(self, user_id: str, amount: Decimal, source_ref: str, role: str) -> bool:
        entry = LedgerEntrySchema(
            entry_id=uuid7(),
            source_ref=source_ref,
            recipient_id=user_id,
            role=role,
            amount=amount,
            created_at=datetime.now(),
        )
        try:
            async with self.Session() as session:
                return await CreateData.create_ledger_entry(entry, session)
        except SQLAlchemyError as e:
            raise ExternalServiceError(
                f"Ledger credit failed for {user_id}: {e}", "ledger_unavailable"
            ) from e

    async def debit(self, user_id: str, amount: Decimal, source_ref: str, role: str) -> bool:
        """Write a negative entry once the wallet is known to cover it

        Raises:
            ValidationError: insufficient_balance
            ExternalServiceError: The ledger database is unavailable
        """
        entry = LedgerEntrySchema(
            entry_id=uuid7(),
            source_ref=source_ref,
            recipient_id=user_id,
            role=role,
            amount=-amount,
            created_at=datetime.now(),
        )
        try:
            async with self.Session() as session:
                if await ReadData.read_ledger_entry(source_ref, user_id, role, session) is not None:
                    return False
                balance = await ReadData.read_balance(user_id, session)
                if balance < amount:
                    raise ValidationError(
                        f"Insufficient balance: {balance} available, {amount} needed.",
                        "insufficient_balance",
                    )
                return await CreateData.create_ledger_entry(entry, session)
        except SQLAlchemyError as e:
            raise ExternalServiceError(
                f"Ledger debit failed for {user_id}: {e}", "ledger_unavailable"
            ) from e

    async def balance(self, user_id: str) -> Decimal:
        async with self.Session() as session:
            return await ReadData.read_balance(user_id, session)

    async def entries(self, source_ref: str) -> List[LedgerEntrySchema]:
        async with self.Session() as session:
            return await ReadData.read_ledger_entries(source_ref, session)


async def credit_with_retry(
    ledger: WalletLedger,
    user_id: str,
    amount: Decimal,
    source_ref: str,
    role: str,
    attempts: int = 3,
    backoff: float = 0.5,
) -> bool:
    """Credit a wallet, retrying ExternalServiceError with exponential backoff.

    Retrying is safe because the ledger ignores a credit it already holds.

    Raises:
        ExternalServiceError: Every attempt failed
    """
    for attempt in range(1, attempts + 1):
        try:
            return await ledger.credit(user_id, amount, source_ref, role)
        except ExternalServiceError as e:
            if attempt == attempts:
                logging.error(
                    f"Giving up crediting {user_id} ({role}, {source_ref}) after {attempts} attempts: {e}"
                )
                raise
            delay = backoff * 2 ** (attempt - 1)
            logging.warning(
                f"Ledger credit attempt {attempt} for {user_id} failed, retrying in {delay}s"
            )
            await asyncio.sleep(delay)
