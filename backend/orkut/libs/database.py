"""Database connection helper."""

import json
import logging
from typing import Annotated, AsyncIterator, Optional

import asyncpg
from fastapi import Depends, HTTPException

from orkut.libs import config

logger = logging.getLogger(__name__)


class DatabaseNotConfigured(Exception):
    """Raised when DATABASE_URL is not set."""


def is_configured() -> bool:
    return bool(config.database_url())


async def get_db_connection() -> asyncpg.Connection:
    """Get database connection."""
    url = config.database_url()
    if not url:
        raise DatabaseNotConfigured("DATABASE_URL is not set")
    conn = await asyncpg.connect(url)
    # jsonb columns (notification payloads, caller_info) round-trip as dicts
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")
    return conn


async def get_db() -> AsyncIterator[asyncpg.Connection]:
    """Request-scoped connection, closed once the response is sent."""
    try:
        conn = await get_db_connection()
    except DatabaseNotConfigured as e:
        raise HTTPException(
            status_code=503,
            detail={"error": "database_unavailable", "message": str(e)},
        )
    try:
        yield conn
    finally:
        await conn.close()


async def get_optional_db() -> AsyncIterator[Optional[asyncpg.Connection]]:
    """Like get_db, but yields None instead of failing when no database is configured."""
    if not is_configured():
        logger.warning("DATABASE_URL not set - serving without a database")
        yield None
        return
    conn = await get_db_connection()
    try:
        yield conn
    finally:
        await conn.close()


DbConnection = Annotated[asyncpg.Connection, Depends(get_db)]
OptionalDbConnection = Annotated[Optional[asyncpg.Connection], Depends(get_optional_db)]
