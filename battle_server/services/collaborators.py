"""Interfaces of the systems the battle server talks to.

- MediaCapture: camera/microphone acquisition on the creator clients.
- WalletLedger: credits and debits SoftPoints; idempotent per (source_ref, user_id, role).
- Notifier: user facing notifications / live updates.
"""

import logging
from decimal import Decimal
from typing import Dict, Protocol

from battle_server.domain.battle_session import MediaCapture
from battle_server.domain.errors import ResourceError
from battle_server.models.dc_models import MediaStatusModel

__all__ = ["MediaCapture", "WalletLedger", "Notifier", "ReportedMediaCapture"]


class WalletLedger(Protocol):
    async def credit(self, user_id: str, amount: Decimal, source_ref: str, role: str) -> bool:
        """Return True when the credit was written, False when it already existed."""

    async def debit(self, user_id: str, amount: Decimal, source_ref: str, role: str) -> bool:
        """Take amount from a wallet. Raise ValidationError when the balance is too low."""


class Notifier(Protocol):
    async def notify(self, battle_id, event: str, payload: dict) -> None:
        ...


class ReportedMediaCapture:
    """Media capture backed by the device status each creator client reported.

    Capture happens in the browser; the server only learns whether it worked.
    """

    def __init__(self, media_status: Dict[str, MediaStatusModel]):
        self.media_status = media_status
        self.released: list[str] = []

    async def acquire(self, participant_id: str, constraints: dict) -> str:
        status = self.media_status.get(participant_id, MediaStatusModel.not_found)
        if status != MediaStatusModel.granted:
            logging.info(f"Media acquisition failed for {participant_id}: {status.value}")
            raise ResourceError(status.value, participant_id)
        return f"stream:{participant_id}"

    async def release(self, participant_id: str) -> None:
        self.released.append(participant_id)
