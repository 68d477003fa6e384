"""Apply every migrations/*.sql file in order against POSTGRES_URL."""

import asyncio
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from buzzcore.infra.postgres import close_pool, get_pool
from buzzcore.obs.logging import configure_logging

logger = logging.getLogger("buzzcore.migrations")

MIGRATIONS_DIR = BACKEND_ROOT / "migrations"


async def main() -> None:
	configure_logging()
	files = sorted(MIGRATIONS_DIR.glob("*.sql"))
	if not files:
		logger.warning("no migrations found", extra={"path": str(MIGRATIONS_DIR)})
		return
	pool = await get_pool()
	try:
		async with pool.acquire() as conn:
			for path in files:
				async with conn.transaction():
					await conn.execute(path.read_text(encoding="utf-8"))
				logger.info("migration applied", extra={"file": path.name})
	finally:
		await close_pool()


if __name__ == "__main__":
	asyncio.run(main())
