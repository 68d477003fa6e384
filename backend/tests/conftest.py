import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from buzzcore import container as container_module
from buzzcore.domain.live.transport import RecordingTransport
from buzzcore.domain.meet.venues import StaticVenueSearch
from buzzcore.infra import postgres
from buzzcore.main import app
from buzzcore.settings import settings


class FakeClock:
	"""Manually advanced wall clock."""

	def __init__(self, start: float = 1_000_000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> float:
		self.now += seconds
		return self.now


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from buzzcore.infra.redis import redis_client, set_redis_client
	original = redis_client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Most tests authenticate via X-User-Id, which is only accepted in dev mode."""
	original_env = settings.environment
	original_storage = settings.storage_backend
	original_mirror = settings.presence_mirror_enabled
	settings.environment = "dev"
	settings.storage_backend = "memory"
	settings.presence_mirror_enabled = False
	try:
		yield
	finally:
		settings.environment = original_env
		settings.storage_backend = original_storage
		settings.presence_mirror_enabled = original_mirror


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def venues():
	return StaticVenueSearch()


@pytest_asyncio.fixture
async def container(venues):
	"""Fresh in-memory core installed as the process container."""
	original = container_module._container
	built = container_module.build_container(venues=venues, transport=RecordingTransport())
	container_module.set_container(built)
	try:
		yield built
	finally:
		await built.aclose()
		container_module.set_container(original)


@pytest_asyncio.fixture
async def api_client(container):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
