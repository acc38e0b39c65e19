"""
realm_bridge.db.init_db

Schema bootstrap for the SQL thread mirror.

Responsibilities:
- Create mirror tables if they do not exist yet.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from realm_bridge.db import models  # noqa: F401  (registers tables on Base.metadata)
from realm_bridge.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    # Use a transactional DDL block when supported by the backend.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
