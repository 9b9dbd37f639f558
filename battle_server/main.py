from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from battle_server.create_engine import engine
from battle_server.dependencies import battle_service, redis
from battle_server.load_config import battle_retention_hours, tick_interval_seconds
from battle_server.models.schemas import Base
from battle_server.routers import battle, duet

scheduler = AsyncIOScheduler()
logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app):
    """Create the tables and start the battle clock.
    This function is called to start the server.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # One countdown second for every live battle
    scheduler.add_job(
        battle_service.tick_live_battles,
        "interval",
        seconds=tick_interval_seconds,
        max_instances=1,
        coalesce=True,
    )
    # Settlements left pending by a ledger outage
    scheduler.add_job(
        battle_service.retry_pending_settlements,
        "interval",
        minutes=1,
    )
    # If the battle ended long ago, forget it
    scheduler.add_job(
        battle_service.purge_ended_battles,
        "interval",
        hours=1,
        args=[battle_retention_hours],
    )
    scheduler.add_job(
        battle_service.purge_invitations,
        "interval",
        minutes=10,
    )
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        await redis.aclose()
        await engine.dispose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
app.include_router(battle.battle_router)
app.include_router(duet.duet_router)


# if __name__ == "__main__":
#     uvicorn.run(app, host="0.0.0.0", port=8080, reload=True)
