import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./battle_server.sqlite3")
redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

prize_pot_multiplier = int(os.getenv("PRIZE_POT_MULTIPLIER", "20"))
vote_points = int(os.getenv("VOTE_POINTS", "10"))
platform_fee_percentage = Decimal(os.getenv("PLATFORM_FEE_PERCENTAGE", "5"))

tick_interval_seconds = float(os.getenv("TICK_INTERVAL_SECONDS", "1"))
media_acquire_timeout = float(os.getenv("MEDIA_ACQUIRE_TIMEOUT", "30"))
invitation_ttl_minutes = int(os.getenv("INVITATION_TTL_MINUTES", "10"))
ledger_retry_attempts = int(os.getenv("LEDGER_RETRY_ATTEMPTS", "3"))
ledger_retry_backoff = float(os.getenv("LEDGER_RETRY_BACKOFF", "0.5"))
battle_retention_hours = int(os.getenv("BATTLE_RETENTION_HOURS", "24"))

platform_account_id = os.getenv("PLATFORM_ACCOUNT_ID", "platform")
moderator_ids = [
    moderator_id.strip()
    for moderator_id in os.getenv("MODERATOR_IDS", "").split(",")
    if moderator_id.strip()
]

if __name__ == "__main__":
    print(database_url, redis_host, redis_port, prize_pot_multiplier, platform_account_id)
