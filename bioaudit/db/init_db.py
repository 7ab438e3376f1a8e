from __future__ import annotations

import logging

from bioaudit.db.models import Base
from bioaudit.db.session import engine

logger = logging.getLogger(__name__)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", extra={"tables": len(Base.metadata.tables)})
