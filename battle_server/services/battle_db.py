"""DB service layer for battle results.

- The battle itself lives in memory (BattleRegistry); only its settlement is stored.
- Creator records are derived from the stored settlements.
- This layer owns session boundaries.
"""

from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from battle_server.converter import DataConverter
from battle_server.crud import CreateData, ReadData, UpdateData
from battle_server.models.schema_models import (
    BattleConfigSchema,
    CreatorStatsSchema,
    SettlementSchema,
)

data_converter = DataConverter()


async def save_settlement(
    Session: async_sessionmaker, config: BattleConfigSchema, settlement: SettlementSchema
) -> None:
    async with Session() as session:
        result = data_converter.convert_settlement_to_battle_result(config, settlement)
        success = await CreateData.create_battle_result(result, session)
        if not success:
            raise RuntimeError("Failed to create battle result")


async def mark_settled(Session: async_sessionmaker, battle_id: UUID) -> None:
    async with Session() as session:
        success = await UpdateData.update_battle_settled(battle_id, session)
        if not success:
            raise RuntimeError("Failed to mark battle result settled")


async def read_settlement(Session: async_sessionmaker, battle_id: UUID) -> SettlementSchema | None:
    async with Session() as session:
        result = await ReadData.read_battle_result(battle_id, session)
    if result is None:
        return None
    return data_converter.convert_battle_result_to_settlement(result)


async def read_unsettled(Session: async_sessionmaker) -> List[SettlementSchema]:
    async with Session() as session:
        results = await ReadData.read_unsettled_battle_results(session)
    return [data_converter.convert_battle_result_to_settlement(r) for r in results]


async def read_creator_stats(Session: async_sessionmaker, user_id: str) -> CreatorStatsSchema:
    async with Session() as session:
        results = await ReadData.read_creator_battle_results(user_id, session)
    return data_converter.convert_battle_results_to_creator_stats(user_id, results)
