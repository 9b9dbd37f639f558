from typing import Dict, Iterable, List
from uuid import UUID

from battle_server.domain.errors import StateError, ValidationError
from battle_server.models.dc_models import RarityModel
from battle_server.models.schema_models import GiftDefinitionSchema

DEFAULT_GIFTS = [
    GiftDefinitionSchema(
        id="rose", name="Rose", icon="🌹", point_value=1, usd_value=0.01,
        rarity=RarityModel.common,
    ),
    GiftDefinitionSchema(
        id="heart", name="Heart", icon="❤️", point_value=5, usd_value=0.05,
        rarity=RarityModel.common, has_special_effect=True, effect_type="hearts",
    ),
    GiftDefinitionSchema(
        id="diamond", name="Diamond", icon="💎", point_value=10, usd_value=0.10,
        rarity=RarityModel.rare, has_special_effect=True, effect_type="sparkles",
    ),
    GiftDefinitionSchema(
        id="crown", name="Crown", icon="👑", point_value=50, usd_value=0.50,
        rarity=RarityModel.epic, has_special_effect=True, effect_type="golden_rain",
    ),
    GiftDefinitionSchema(
        id="rocket", name="Rocket", icon="🚀", point_value=100, usd_value=1.00,
        rarity=RarityModel.legendary, has_special_effect=True, effect_type="fireworks",
    ),
    GiftDefinitionSchema(
        id="dragon", name="Dragon", icon="🐉", point_value=500, usd_value=5.00,
        rarity=RarityModel.legendary, has_special_effect=True, effect_type="dragon_breath",
    ),
]


class GiftCatalog:
    """Registry of gift definitions shared by every battle.

    Live battles pin the catalog. While pinned it cannot change, so an event log
    always replays to the same scores.
    """

    def __init__(self, gifts: Iterable[GiftDefinitionSchema] = DEFAULT_GIFTS):
        self._gifts: Dict[str, GiftDefinitionSchema] = {}
        self._pinned_by: set[UUID] = set()
        for gift in gifts:
            self._gifts[gift.id] = gift

    def get(self, gift_id: str) -> GiftDefinitionSchema:
        gift = self._gifts.get(gift_id)
        if gift is None:
            raise ValidationError(f"Unknown gift '{gift_id}'.", "unknown_gift")
        return gift

    def list(self) -> List[GiftDefinitionSchema]:
        return list(self._gifts.values())

    def register(self, gift: GiftDefinitionSchema) -> None:
        if self._pinned_by:
            raise StateError(
                "Gift catalog cannot change while a battle is live.", "catalog_locked"
            )
        self._gifts[gift.id] = gift

    def pin(self, battle_id: UUID) -> None:
        self._pinned_by.add(battle_id)

    def unpin(self, battle_id: UUID) -> None:
        self._pinned_by.discard(battle_id)

    @property
    def is_locked(self) -> bool:
        return bool(self._pinned_by)
