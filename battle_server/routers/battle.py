import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from redis.asyncio import Redis

from battle_server.dependencies import get_battle_service, get_redis
from battle_server.domain.errors import BattleError
from battle_server.models.dc_models import (
    BattleInvitationModel,
    CastVoteModel,
    ChatModel,
    ClientBattleModel,
    ControlBattleModel,
    EndBattleModel,
    SendGiftModel,
    StartBattleModel,
    ViewerCountModel,
)
from battle_server.models.schema_models import (
    BattleAuditSchema,
    BattleConfigSchema,
    BattleInvitationSchema,
    BattleStateSchema,
    ChatMessageSchema,
    CreatorStatsSchema,
    EventLogEntry,
    GiftDefinitionSchema,
    GiftEventSchema,
    PrizeDistributionSchema,
    SettlementSchema,
    VoteEventSchema,
)
from battle_server.redis_subscriber import RedisSubscriber
from battle_server.routers.http_errors import http_error
from battle_server.services.battle_service import BattleService
from battle_server.services.collaborators import ReportedMediaCapture
from battle_server.services.notifier import battle_channel

battle_router = APIRouter()
logging.basicConfig(level=logging.INFO)


class BattleLifecycleAPI:
    @staticmethod
    @battle_router.post(
        "/battles", response_model=BattleConfigSchema, status_code=status.HTTP_201_CREATED
    )
    async def create_battle(
        client_data: ClientBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleConfigSchema:
        """Create a waiting battle between two creators

        Args:
            client_data (ClientBattleModel):
                    title: str
                    duration: int (60 - 600 seconds)
                    creator1, creator2: CreatorModel
                    scoring_method: gifts | votes | hybrid
                    allow_voting, allow_gifts: bool
                    entry_fee: Decimal (0 - 1000 SoftPoints)

        Returns:
            BattleConfigSchema: Config with battle_id and prize_pot
        """
        try:
            return await battle_service.create_battle(client_data)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post(
        "/battles/invitations",
        response_model=BattleInvitationSchema,
        status_code=status.HTTP_201_CREATED,
    )
    async def invite_battle(
        invitation: BattleInvitationModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleInvitationSchema:
        """creator1 invites creator2; the invitation expires after 10 minutes by default"""
        try:
            return await battle_service.invite_battle(invitation, invitation.requested_by)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/battles/invitations/{invitation_id}", response_model=BattleInvitationSchema)
    async def get_invitation(
        invitation_id: UUID, battle_service: BattleService = Depends(get_battle_service)
    ) -> BattleInvitationSchema:
        try:
            return battle_service.get_invitation(invitation_id)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post(
        "/battles/invitations/{invitation_id}/accept",
        response_model=BattleConfigSchema,
        status_code=status.HTTP_201_CREATED,
    )
    async def accept_invitation(
        invitation_id: UUID,
        control: ControlBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleConfigSchema:
        """The invited creator accepts. Both entry fees are collected and a waiting battle is created."""
        try:
            return await battle_service.accept_invitation(invitation_id, control.requested_by)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/battles/stats/{user_id}", response_model=CreatorStatsSchema)
    async def creator_stats(
        user_id: str, battle_service: BattleService = Depends(get_battle_service)
    ) -> CreatorStatsSchema:
        return await battle_service.get_creator_stats(user_id)

    @staticmethod
    @battle_router.post("/battles/{battle_id}/start", response_model=BattleStateSchema)
    async def start_battle(
        battle_id: UUID,
        start_data: StartBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleStateSchema:
        media = ReportedMediaCapture(start_data.media_status)
        try:
            return await battle_service.start_battle(battle_id, start_data.requested_by, media)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/tick", response_model=BattleStateSchema)
    async def tick(
        battle_id: UUID, battle_service: BattleService = Depends(get_battle_service)
    ) -> BattleStateSchema:
        try:
            return await battle_service.tick(battle_id)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/pause", response_model=BattleStateSchema)
    async def pause(
        battle_id: UUID,
        control: ControlBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleStateSchema:
        try:
            return await battle_service.pause(battle_id, control.requested_by)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/resume", response_model=BattleStateSchema)
    async def resume(
        battle_id: UUID,
        control: ControlBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleStateSchema:
        try:
            return await battle_service.resume(battle_id, control.requested_by)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/end", response_model=PrizeDistributionSchema)
    async def end_battle(
        battle_id: UUID,
        end_data: EndBattleModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> PrizeDistributionSchema:
        """End the battle early (stopped) or cancel it (aborted)

        Returns:
            PrizeDistributionSchema: The prize split, or the entry fee refunds when aborted
        """
        try:
            return await battle_service.end_battle(battle_id, end_data.requested_by, end_data.reason)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/settle", response_model=SettlementSchema)
    async def settle(
        battle_id: UUID, battle_service: BattleService = Depends(get_battle_service)
    ) -> SettlementSchema:
        try:
            return await battle_service.retry_settlement(battle_id)
        except BattleError as e:
            raise http_error(e) from e


class ViewerAPI:
    @staticmethod
    @battle_router.post("/battles/{battle_id}/gifts", response_model=GiftEventSchema)
    async def send_gift(
        battle_id: UUID,
        gift: SendGiftModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> GiftEventSchema:
        try:
            return await battle_service.send_gift(
                battle_id, gift.sender_id, gift.gift_id, gift.recipient_creator_id, gift.quantity
            )
        except BattleError as e:
            logging.debug(f"Gift rejected for battle {battle_id}: {e.reason}")
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/votes", response_model=VoteEventSchema)
    async def cast_vote(
        battle_id: UUID,
        vote: CastVoteModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> VoteEventSchema:
        try:
            return await battle_service.cast_vote(battle_id, vote.voter_id, vote.creator_id)
        except BattleError as e:
            logging.debug(f"Vote rejected for battle {battle_id}: {e.reason}")
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/chat", response_model=ChatMessageSchema)
    async def post_chat(
        battle_id: UUID,
        chat: ChatModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> ChatMessageSchema:
        try:
            return await battle_service.post_chat(battle_id, chat.sender_id, chat.message)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.post("/battles/{battle_id}/viewers", response_model=BattleStateSchema)
    async def update_viewers(
        battle_id: UUID,
        viewers: ViewerCountModel,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> BattleStateSchema:
        try:
            return battle_service.update_viewers(battle_id, viewers.viewer_count)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/gifts", response_model=List[GiftDefinitionSchema])
    async def list_gifts(
        battle_service: BattleService = Depends(get_battle_service),
    ) -> List[GiftDefinitionSchema]:
        return battle_service.catalog.list()


class BattleStateAPI:
    @staticmethod
    @battle_router.get("/battles/{battle_id}", response_model=BattleStateSchema)
    async def get_state(
        battle_id: UUID, battle_service: BattleService = Depends(get_battle_service)
    ) -> BattleStateSchema:
        try:
            return battle_service.get_state(battle_id)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/battles/{battle_id}/events", response_model=List[EventLogEntry])
    async def get_events(
        battle_id: UUID,
        after: int = 0,
        battle_service: BattleService = Depends(get_battle_service),
    ) -> List[EventLogEntry]:
        """Event log entries with a sequence greater than ``after``, for replay after a reconnect"""
        try:
            return battle_service.get_events(battle_id, after)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/battles/{battle_id}/audit", response_model=BattleAuditSchema)
    async def audit(
        battle_id: UUID, battle_service: BattleService = Depends(get_battle_service)
    ) -> BattleAuditSchema:
        try:
            return battle_service.audit(battle_id)
        except BattleError as e:
            raise http_error(e) from e

    @staticmethod
    @battle_router.get("/battles/{battle_id}/stream")
    async def stream_battle(
        battle_id: UUID,
        battle_service: BattleService = Depends(get_battle_service),
        redis: Redis = Depends(get_redis),
    ):
        try:
            battle_service.get_state(battle_id)
        except BattleError as e:
            raise http_error(e) from e
        redis_subscriber = RedisSubscriber(battle_id, lambda: battle_service.get_state(battle_id))

        return StreamingResponse(
            redis_subscriber.event_generator(battle_channel(battle_id), redis),
            media_type="text/event-stream; charset=utf-8",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )


class BattleChatSocket:
    @staticmethod
    @battle_router.websocket("/battles/{battle_id}/ws")
    async def chat_socket(
        websocket: WebSocket,
        battle_id: UUID,
        battle_service: BattleService = Depends(get_battle_service),
    ):
        """Chat transport. Clients send {"sender_id", "message"} and receive every chat entry."""
        try:
            state = battle_service.get_state(battle_id)
        except BattleError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        manager = battle_service.connection_manager
        await manager.connect(websocket, battle_id)
        await manager.send_personal_message(
            {"kind": "state", "data": state.model_dump(mode="json")}, websocket
        )
        try:
            while True:
                data = await websocket.receive_json()
                try:
                    chat = ChatModel.model_validate(data)
                    await battle_service.post_chat(battle_id, chat.sender_id, chat.message)
                except BattleError as e:
                    await manager.send_personal_message({"kind": "error", **e.to_detail()}, websocket)
                except ValueError as e:
                    await manager.send_personal_message(
                        {"kind": "error", "reason": "invalid_request", "message": str(e)}, websocket
                    )
        except WebSocketDisconnect:
            logging.info(f"Chat client left battle {battle_id}")
        finally:
            manager.disconnect(websocket, battle_id)
