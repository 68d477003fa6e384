import asyncio

import pytest

from buzzcore.infra.pair_lock import PairLocks


@pytest.mark.asyncio
async def test_same_pair_is_serialized_in_either_order():
	locks = PairLocks()
	order = []

	async def worker(a, b, tag):
		async with locks.hold(a, b) as key:
			assert key == "alice_bob"
			order.append(f"{tag}-start")
			await asyncio.sleep(0)
			order.append(f"{tag}-end")

	await asyncio.gather(worker("alice", "bob", "one"), worker("bob", "alice", "two"))
	assert order == ["one-start", "one-end", "two-start", "two-end"]
	assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_pairs_do_not_contend():
	locks = PairLocks()
	entered = asyncio.Event()

	async def holder():
		async with locks.hold("alice", "bob"):
			await entered.wait()

	task = asyncio.create_task(holder())
	await asyncio.sleep(0)
	async with locks.hold("carol", "dave"):
		entered.set()
	await task
	assert len(locks) == 0
