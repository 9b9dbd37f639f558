from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from battle_server.domain.errors import ValidationError
from battle_server.models.dc_models import ClientBattleModel, ClientDuetModel, EndReasonModel
from battle_server.models.schema_models import (
    BattleConfigSchema,
    CreatorParticipantSchema,
    CreatorStatsSchema,
    DuetConfigSchema,
    DuetSchema,
    SettlementSchema,
)
from battle_server.models.schemas import BattleResult, VideoDuet


class DataConverter:
    """This class is used to convert data between client models, schemas and table rows."""

    def convert_client_battle_to_config(
        self,
        client_data: ClientBattleModel,
        battle_id: UUID,
        prize_pot: Decimal,
        created_at: datetime,
        creator_stats: Optional[Dict[str, CreatorStatsSchema]] = None,
    ) -> BattleConfigSchema:
        """Build the battle config from the creators' accepted battle request

        Args:
            client_data (ClientBattleModel): Battle request both creators accepted
            battle_id (UUID): Newly issued battle id
            prize_pot (Decimal): Pot derived from the entry fee
            created_at (datetime): Creation time
            creator_stats (Dict[str, CreatorStatsSchema]): Stored records keyed by creator id

        Returns:
            BattleConfigSchema: The battle config. creator1 hosts when no creator is flagged as host.
        """
        if client_data.creator1.id == client_data.creator2.id:
            raise ValidationError("A creator cannot battle themselves.", "invalid_config")
        if client_data.creator1.is_host and client_data.creator2.is_host:
            raise ValidationError("Only one creator can host a battle.", "invalid_config")

        creator_stats = creator_stats or {}
        creators = []
        for creator in (client_data.creator1, client_data.creator2):
            stats = creator_stats.get(creator.id) or CreatorStatsSchema(user_id=creator.id)
            creators.append(
                CreatorParticipantSchema(
                    id=creator.id,
                    username=creator.username,
                    display_name=creator.display_name,
                    level=creator.level,
                    battles_won=stats.wins,
                    battles_lost=stats.losses,
                    win_rate=stats.win_rate,
                    is_host=creator.is_host,
                )
            )
        if not creators[0].is_host and not creators[1].is_host:
            creators[0].is_host = True

        return BattleConfigSchema(
            battle_id=battle_id,
            title=client_data.title,
            description=client_data.description,
            battle_type=client_data.battle_type,
            duration=client_data.duration,
            creator1=creators[0],
            creator2=creators[1],
            scoring_method=client_data.scoring_method,
            allow_voting=client_data.allow_voting,
            allow_gifts=client_data.allow_gifts,
            entry_fee=client_data.entry_fee,
            prize_pot=prize_pot,
            created_at=created_at,
        )

    def convert_settlement_to_battle_result(
        self, config: BattleConfigSchema, settlement: SettlementSchema
    ) -> BattleResult:
        distribution = settlement.distribution
        return BattleResult(
            battle_id=settlement.battle_id,
            title=config.title,
            creator1_id=config.creator1.id,
            creator2_id=config.creator2.id,
            end_reason=settlement.reason.value,
            winner_id=settlement.winner_id,
            winner_score=settlement.winner_score,
            margin_of_victory=settlement.margin_of_victory,
            entry_fee=config.entry_fee,
            prize_pot=distribution.prize_pot,
            winner_share=distribution.winner_share,
            runner_up_share=distribution.runner_up_share,
            viewer_pool_share=distribution.viewer_pool_share,
            settlement=settlement.model_dump(mode="json"),
            settled=settlement.settled,
            ended_at=settlement.ended_at,
        )

    def convert_battle_results_to_creator_stats(
        self, user_id: str, results: List[BattleResult]
    ) -> CreatorStatsSchema:
        """Count wins, losses, ties and prize earnings of one creator

        A tie pays creator1 the winner share and creator2 the runner-up share.
        """
        stats = CreatorStatsSchema(user_id=user_id)
        for result in results:
            if result.end_reason == EndReasonModel.aborted.value:
                continue
            stats.total_battles += 1
            if result.winner_id is None:
                stats.ties += 1
                earning = result.winner_share if result.creator1_id == user_id else result.runner_up_share
            elif result.winner_id == user_id:
                stats.wins += 1
                earning = result.winner_share
            else:
                stats.losses += 1
                earning = result.runner_up_share
            stats.total_earnings += Decimal(earning or 0)

        decided = stats.wins + stats.losses
        stats.win_rate = round(stats.wins / decided * 100, 1) if decided else 0.0
        return stats

    def convert_battle_result_to_settlement(self, result: BattleResult) -> SettlementSchema:
        settlement = SettlementSchema.model_validate(result.settlement)
        return settlement.model_copy(update={"settled": bool(result.settled)})

    def convert_client_duet_to_row(
        self, client_data: ClientDuetModel, duet_id: UUID, created_at: datetime
    ) -> VideoDuet:
        if client_data.original_creator_id == client_data.duet_creator_id:
            raise ValidationError(
                "A creator cannot duet their own video.", "invalid_config"
            )
        config = client_data.config
        return VideoDuet(
            duet_id=duet_id,
            original_video_id=client_data.original_video_id,
            original_creator_id=client_data.original_creator_id,
            duet_creator_id=client_data.duet_creator_id,
            title=client_data.title,
            duet_type=config.duet_type.value,
            layout_position=config.layout_position.value,
            audio_mix=config.audio_mix.value,
            revenue_share_percentage=config.revenue_share_percentage,
            allow_tips=config.allow_tips,
            allow_comments=config.allow_comments,
            tip_count=0,
            total_tips=Decimal("0"),
            original_creator_earnings=Decimal("0"),
            duet_creator_earnings=Decimal("0"),
            created_at=created_at,
        )

    def convert_duet_row_to_schema(self, row: VideoDuet) -> DuetSchema:
        return DuetSchema(
            duet_id=row.duet_id,
            original_video_id=row.original_video_id,
            original_creator_id=row.original_creator_id,
            duet_creator_id=row.duet_creator_id,
            title=row.title,
            config=DuetConfigSchema(
                duet_type=row.duet_type,
                layout_position=row.layout_position,
                audio_mix=row.audio_mix,
                revenue_share_percentage=row.revenue_share_percentage,
                allow_tips=row.allow_tips,
                allow_comments=row.allow_comments,
            ),
            tip_count=row.tip_count,
            total_tips=row.total_tips,
            original_creator_earnings=row.original_creator_earnings,
            duet_creator_earnings=row.duet_creator_earnings,
            created_at=row.created_at,
        )
