import logging
from asyncio import Lock
from datetime import datetime
from typing import Dict, List
from uuid import UUID

from battle_server.domain.battle_session import BattleSession
from battle_server.domain.errors import BattleNotFoundError
from battle_server.models.dc_models import BattleStatusModel


class BattleRegistry:
    """In-memory battles keyed by battle_id, each with its own lock.

    Holding ``lock(battle_id)`` makes the caller the only writer of that battle;
    different battles never wait on each other.
    """

    def __init__(self):
        self.sessions: Dict[UUID, BattleSession] = {}
        self.locks: Dict[UUID, Lock] = {}  # battle_idごとのLockを管理

    def add(self, session: BattleSession) -> BattleSession:
        self.sessions[session.battle_id] = session
        self.locks[session.battle_id] = Lock()
        logging.info(f"Registered battle {session.battle_id}")
        return session

    def get(self, battle_id: UUID) -> BattleSession:
        """Get the session of the specified battle_id

        Raises:
            BattleNotFoundError: No battle with this id is registered
        """
        session = self.sessions.get(battle_id)
        if session is None:
            raise BattleNotFoundError(battle_id)
        return session

    def lock(self, battle_id: UUID) -> Lock:
        if battle_id not in self.locks:
            raise BattleNotFoundError(battle_id)
        return self.locks[battle_id]

    def live_ids(self) -> List[UUID]:
        return [
            battle_id
            for battle_id, session in self.sessions.items()
            if session.status == BattleStatusModel.live
        ]

    def purge_ended(self, older_than: datetime) -> int:
        """Forget battles that ended before ``older_than``

        Returns:
            int: Number of battles removed
        """
        expired = [
            battle_id
            for battle_id, session in self.sessions.items()
            if session.status == BattleStatusModel.ended
            and session.ended_at is not None
            and session.ended_at < older_than
            and session.settlement is not None
            and session.settlement.settled
        ]
        for battle_id in expired:
            del self.sessions[battle_id]
            del self.locks[battle_id]
        if expired:
            logging.info(f"Purged {len(expired)} ended battles")
        return len(expired)
