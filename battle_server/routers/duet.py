import logging
from decimal import Decimal
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from battle_server.dependencies import get_duet_service
from battle_server.domain.errors import BattleError
from battle_server.models.dc_models import ClientDuetModel, DuetTipModel
from battle_server.models.schema_models import DuetSchema, DuetTipTransactionSchema, TipSplitSchema
from battle_server.routers.http_errors import http_error
from battle_server.services.duet_service import DuetService

duet_router = APIRouter()
logging.basicConfig(level=logging.INFO)


class DuetAPI:
    @staticmethod
    @duet_router.get("/duets/split", response_model=TipSplitSchema)
    async def compute_split(
        tip_amount: Decimal,
        revenue_share_percentage: Decimal = Query(default=Decimal("100")),
        duet_service: DuetService = Depends(get_duet_service),
    ) -> TipSplitSchema:
        """Preview how a tip is shared

        Args:
            tip_amount (Decimal): Tip in SoftPoints
            revenue_share_percentage (Decimal): Original creator's percent after the
                platform fee. Direct tips use 100.
        """
        try:
            return duet_service.compute_split(tip_amount, revenue_share_percentage)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @duet_router.post("/duets", response_model=DuetSchema, status_code=status.HTTP_201_CREATED)
    async def create_duet(
        client_data: ClientDuetModel,
        duet_service: DuetService = Depends(get_duet_service),
    ) -> DuetSchema:
        try:
            return await duet_service.create_duet(client_data)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @duet_router.get("/duets/{duet_id}", response_model=DuetSchema)
    async def get_duet(
        duet_id: UUID, duet_service: DuetService = Depends(get_duet_service)
    ) -> DuetSchema:
        try:
            return await duet_service.get_duet(duet_id)
        except BattleError as e:
            raise http_error(e) from e


class DuetTipAPI:
    @staticmethod
    @duet_router.post(
        "/duets/{duet_id}/tips",
        response_model=DuetTipTransactionSchema,
        status_code=status.HTTP_201_CREATED,
    )
    async def tip_duet(
        duet_id: UUID,
        tip: DuetTipModel,
        duet_service: DuetService = Depends(get_duet_service),
    ) -> DuetTipTransactionSchema:
        try:
            return await duet_service.tip_duet(duet_id, tip.tipper_id, tip.amount, tip.message)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @duet_router.get("/duets/{duet_id}/tips", response_model=List[DuetTipTransactionSchema])
    async def list_tips(
        duet_id: UUID, duet_service: DuetService = Depends(get_duet_service)
    ) -> List[DuetTipTransactionSchema]:
        try:
            return await duet_service.list_tips(duet_id)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @duet_router.post(
        "/duets/{duet_id}/tips/{tip_id}/settle", response_model=DuetTipTransactionSchema
    )
    async def settle_tip(
        duet_id: UUID, tip_id: UUID, duet_service: DuetService = Depends(get_duet_service)
    ) -> DuetTipTransactionSchema:
        try:
            return await duet_service.retry_tip_credits(duet_id, tip_id)
        except BattleError as e:
            raise http_error(e) from e
