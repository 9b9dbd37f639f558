from collections import defaultdict
from typing import Dict, List, Tuple
from uuid import UUID

from battle_server.models.schema_models import (
    ChatMessageSchema,
    EventLogEntry,
    GiftEventSchema,
    VoteEventSchema,
)


class EventLog:
    """Append-only, sequence numbered record of one battle's gifts, votes and chat."""

    def __init__(self, battle_id: UUID):
        self.battle_id = battle_id
        self._entries: List[EventLogEntry] = []

    def next_sequence(self) -> int:
        return len(self._entries) + 1

    @property
    def last_sequence(self) -> int:
        return len(self._entries)

    def append(self, entry: EventLogEntry) -> EventLogEntry:
        """Append an entry built with ``next_sequence()``.

        Raises:
            ValueError: The entry's sequence is not the next one
        """
        if entry.sequence != self.next_sequence():
            raise ValueError(
                f"out of order sequence {entry.sequence}, expected {self.next_sequence()}"
            )
        self._entries.append(entry)
        return entry

    def since(self, sequence: int = 0) -> List[EventLogEntry]:
        """Entries with a sequence greater than ``sequence``, for consumers that retry."""
        return self._entries[max(sequence, 0):]

    def __len__(self) -> int:
        return len(self._entries)

    def gifts(self) -> List[GiftEventSchema]:
        return [e for e in self._entries if isinstance(e, GiftEventSchema)]

    def votes(self) -> List[VoteEventSchema]:
        return [e for e in self._entries if isinstance(e, VoteEventSchema)]

    def chat(self) -> List[ChatMessageSchema]:
        return [e for e in self._entries if isinstance(e, ChatMessageSchema)]

    def reconstruct_scores(self) -> Dict[str, int]:
        """Rebuild each creator's score from the log alone."""
        scores: Dict[str, int] = defaultdict(int)
        for entry in self._entries:
            if isinstance(entry, GiftEventSchema):
                scores[entry.recipient_creator_id] += entry.total_value
            elif isinstance(entry, VoteEventSchema):
                scores[entry.creator_id] += entry.points
        return dict(scores)

    def combo_counts(self) -> Dict[Tuple[str, str], int]:
        combos: Dict[Tuple[str, str], int] = defaultdict(int)
        for gift in self.gifts():
            combos[(gift.gift_id, gift.recipient_creator_id)] += gift.quantity
        return dict(combos)
