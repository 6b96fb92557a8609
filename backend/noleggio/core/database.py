"""
Database dei noleggi - SQLAlchemy 2.0 Async
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Engine asyncpg, session factory e dependency per FastAPI. Ogni
connessione imposta un lock_timeout: una prenotazione che attende il lock
di un'auto oltre il limite fallisce con SQLSTATE 55P03, che il
repository traduce in ConflictError ritentabile.
"""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from noleggio.core.config import Settings, settings

logger = logging.getLogger(__name__)


def _connect_args(config: Settings) -> dict[str, Any]:
    """Parametri di sessione PostgreSQL passati ad asyncpg."""
    server_settings = {"application_name": config.app_name}
    if config.db_lock_timeout_ms:
        server_settings["lock_timeout"] = str(config.db_lock_timeout_ms)
    return {"server_settings": server_settings}


engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    connect_args=_connect_args(settings),
)

# Le transazioni sono aperte dal RentalRepository, non dalla sessione
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Sessione per richiesta.

    Una transazione lasciata aperta da letture senza repository.transaction()
    viene annullata alla chiusura.

    Yields:
        AsyncSession: Sessione database async
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_db() -> None:
    """
    Verifica all'avvio che il database risponda e che lo schema dei
    noleggi sia presente.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            found = await conn.scalar(text("SELECT to_regclass('rentals') IS NOT NULL"))
    except Exception as e:
        logger.error("Errore connessione database: %s", e)
        raise

    if not found:
        logger.warning("Tabella rentals assente: eseguire reset_db.py per creare lo schema")
    logger.info("Connessione al database stabilita (lock_timeout %s ms)", settings.db_lock_timeout_ms)


async def create_schema(drop_existing: bool = False) -> None:
    """Crea le tabelle di auto, noleggi, estensioni e pagamenti."""
    from noleggio.models import Base

    async with engine.begin() as conn:
        if drop_existing:
            await conn.run_sync(Base.metadata.drop_all)
            logger.info("Tabelle eliminate")
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema creato: %s", ", ".join(sorted(Base.metadata.tables)))


async def close_db() -> None:
    """Chiude il pool di connessioni allo shutdown."""
    await engine.dispose()
    logger.info("Connessioni database chiuse")
