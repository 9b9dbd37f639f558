from sqlalchemy.ext.asyncio import create_async_engine

from battle_server.load_config import database_url

if database_url.startswith("sqlite"):
    engine = create_async_engine(url=database_url, echo=False)
else:
    engine = create_async_engine(database_url, pool_size=20, max_overflow=20)
