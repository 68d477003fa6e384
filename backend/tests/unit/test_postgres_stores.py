from contextlib import asynccontextmanager

import pytest

from buzzcore.domain.directory.models import BoundingBox, CandidateFilter, Coordinates
from buzzcore.domain.directory.repo import PostgresUserDirectory
from buzzcore.domain.relationships.models import EdgeType, LikeWrite, RelationshipEdge
from buzzcore.domain.relationships.repo import PostgresRelationshipStore
from buzzcore.infra import postgres


@asynccontextmanager
async def _holding(value=None):
	yield value


class FakeConnection:
	"""Records statements; answers the few shapes the stores issue."""

	def __init__(self, *, matched=None, insert_status="INSERT 0 1"):
		self.matched = matched
		self.insert_status = insert_status
		self.statements = []

	def _record(self, sql, args):
		self.statements.append((" ".join(sql.split()), args))

	def transaction(self):
		return _holding()

	async def execute(self, sql, *args):
		self._record(sql, args)
		return self.insert_status if "INSERT" in sql else "SELECT 1"

	async def fetchval(self, sql, *args):
		self._record(sql, args)
		return self.matched

	async def fetch(self, sql, *args):
		self._record(sql, args)
		return []


class FakePool:
	def __init__(self, conn):
		self.conn = conn

	def acquire(self):
		return _holding(self.conn)

	async def fetch(self, sql, *args):
		return await self.conn.fetch(sql, *args)


@pytest.fixture
def use_pool(monkeypatch):
	def _install(conn):
		monkeypatch.setattr(postgres, "_pool", FakePool(conn))
		return conn

	return _install


def _like(from_id, to_id):
	return RelationshipEdge(from_id=from_id, to_id=to_id, type=EdgeType.LIKE, created_at=1_000.0)


@pytest.mark.asyncio
async def test_like_insert_is_skipped_when_pair_already_matched(use_pool):
	conn = use_pool(FakeConnection(matched=1))
	result = await PostgresRelationshipStore().add_like(_like("bob", "alice"))
	assert result is LikeWrite.MATCHED
	sql = [statement for statement, _ in conn.statements]
	assert sql[0] == "SELECT pg_advisory_xact_lock(hashtext($1))"
	assert conn.statements[0][1] == ("alice_bob",)
	assert not any(statement.startswith("INSERT") for statement in sql)


@pytest.mark.asyncio
async def test_like_insert_reports_created_and_duplicate(use_pool):
	use_pool(FakeConnection(insert_status="INSERT 0 1"))
	assert await PostgresRelationshipStore().add_like(_like("alice", "bob")) is LikeWrite.CREATED
	use_pool(FakeConnection(insert_status="INSERT 0 0"))
	assert await PostgresRelationshipStore().add_like(_like("alice", "bob")) is LikeWrite.DUPLICATE


@pytest.mark.asyncio
async def test_bounded_candidate_query_filters_by_box(use_pool):
	conn = use_pool(FakeConnection())
	box = BoundingBox.around(Coordinates(41.87, -87.63), 25)
	await PostgresUserDirectory().find_candidates(CandidateFilter(within=box, exclude=frozenset({"me"})))
	sql, args = conn.statements[-1]
	assert "lat BETWEEN $2 AND $3" in sql
	assert "lon BETWEEN $4 AND $5" in sql
	assert args[1:] == (box.min_lat, box.max_lat, box.min_lon, box.max_lon)


@pytest.mark.asyncio
async def test_wrapping_box_keeps_only_latitude_bound(use_pool):
	conn = use_pool(FakeConnection())
	box = BoundingBox.around(Coordinates(0.0, 179.95), 25)
	await PostgresUserDirectory().find_candidates(CandidateFilter(within=box))
	sql, args = conn.statements[-1]
	assert "lat BETWEEN $1 AND $2" in sql
	assert "lon IS NOT NULL" in sql
	assert args == (box.min_lat, box.max_lat)


@pytest.mark.asyncio
async def test_global_candidate_query_has_no_geographic_bound(use_pool):
	conn = use_pool(FakeConnection())
	await PostgresUserDirectory().find_candidates(CandidateFilter())
	sql, args = conn.statements[-1]
	assert "lat BETWEEN" not in sql
	assert args == ()
