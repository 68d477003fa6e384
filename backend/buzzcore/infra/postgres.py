"""asyncpg pool shared by the directory, relationship and notification stores."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from buzzcore.settings import settings

logger = logging.getLogger(__name__)

APPLICATION_NAME = "buzzcore"

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout_seconds,
			server_settings={"application_name": APPLICATION_NAME},
		)
		logger.info("postgres pool ready", extra={"max_size": settings.postgres_max_pool_size})
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


@asynccontextmanager
async def pair_transaction(key: str) -> AsyncIterator[asyncpg.Connection]:
	"""Connection in a transaction holding the advisory lock for the pair `key`.

	Writers in every worker process that touch the same pair queue on this lock;
	it is released when the transaction commits or rolls back.
	"""
	pool = await get_pool()
	async with pool.acquire() as conn:
		async with conn.transaction():
			await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)
			yield conn


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
		logger.info("postgres pool closed")
