from __future__ import annotations

import logging

from gatescan.db.models import Base
from gatescan.db.session import engine

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """Create the students table if it does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", extra={"tables": sorted(Base.metadata.tables)})


async def close_db() -> None:
    await engine.dispose()
    logger.info("database_closed")
