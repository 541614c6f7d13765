"""Concurrent units against a store whose reads yield to the event loop."""

import asyncio
from contextlib import asynccontextmanager

import pytest

from rewardledger.services import accounts as accounts_service
from rewardledger.services import rewards as rewards_service
from rewardledger.store.base import user_key
from rewardledger.store.memory import MemoryLedgerStore, MemoryLedgerUnit

pytestmark = pytest.mark.asyncio


class InterleavingUnit(MemoryLedgerUnit):
    """Yields after every read, so other units run between read and write."""

    async def get_balance(self, user_id):
        balance = await super().get_balance(user_id)
        await asyncio.sleep(0)
        return balance

    async def commission_exists(self, payer_id, invited_id):
        exists = await super().commission_exists(payer_id, invited_id)
        await asyncio.sleep(0)
        return exists


class InterleavingStore(MemoryLedgerStore):
    def _new_unit(self):
        return InterleavingUnit(self)


class UnlockedStore(InterleavingStore):
    """Same staging and commit, but no per-key locks."""

    @asynccontextmanager
    async def atomic(self, *lock_keys):
        unit = self._new_unit()
        yield unit
        unit._commit()


async def _user(store, uuid):
    return await accounts_service.create_user(username=uuid, uuid=uuid, store=store)


async def test_concurrent_checkins_all_apply():
    store = InterleavingStore()
    user = await _user(store, "u1")
    await asyncio.gather(*(rewards_service.grant_checkin_reward(user.id, 1, store=store) for _ in range(25)))
    assert await rewards_service.get_balance(user.id, store=store) == 25
    assert len(await store.list_records(user.id)) == 25


async def test_unlocked_store_loses_updates():
    store = UnlockedStore()
    user = await _user(store, "u1")
    await asyncio.gather(*(rewards_service.grant_checkin_reward(user.id, 1, store=store) for _ in range(25)))
    # Every unit read the same starting balance, so later commits overwrite earlier ones.
    assert await rewards_service.get_balance(user.id, store=store) < 25
    assert len(await store.list_records(user.id)) == 25


async def test_concurrent_consumes_never_go_negative():
    store = InterleavingStore()
    user = await _user(store, "u1")
    await rewards_service.purchase_reward(user.id, 10, store=store)
    await asyncio.gather(*(rewards_service.consume_reward(user.id, 3, "spend", store=store) for _ in range(6)))
    assert await rewards_service.get_balance(user.id, store=store) == 0
    records = await store.list_records(user.id)
    assert rewards_service.ledger_total(records) == 0


async def test_concurrent_duplicate_commissions_pay_once():
    store = InterleavingStore()
    payer = await _user(store, "payer")
    invited = await _user(store, "invited")
    results = await asyncio.gather(
        *(rewards_service.award_commission(payer.id, invited.id, 20, store=store) for _ in range(10))
    )
    assert sum(r.created for r in results) == 1
    assert len({r.commission_id for r in results}) == 1
    assert await rewards_service.get_balance(invited.id, store=store) == 20


async def test_commit_time_pair_check_holds_without_locks():
    store = UnlockedStore()
    payer = await _user(store, "payer")
    invited = await _user(store, "invited")
    results = await asyncio.gather(
        *(rewards_service.award_commission(payer.id, invited.id, 20, store=store) for _ in range(10))
    )
    assert sum(r.created for r in results) == 1
    assert await rewards_service.get_balance(invited.id, store=store) == 20


async def test_idle_locks_are_released():
    store = InterleavingStore()
    payer = await _user(store, "payer")
    invited = await _user(store, "invited")
    await asyncio.gather(
        *(rewards_service.grant_checkin_reward(invited.id, 1, store=store) for _ in range(5)),
        *(rewards_service.award_commission(payer.id, invited.id, 20, store=store) for _ in range(5)),
    )
    assert store._locks == {}
    assert not store._lock_refs


async def test_locks_released_after_rolled_back_unit():
    store = MemoryLedgerStore()
    user = await _user(store, "u1")
    with pytest.raises(RuntimeError):
        async with store.atomic(user_key(user.id)) as unit:
            await unit.set_balance(user.id, 99)
            assert user_key(user.id) in store._locks
            raise RuntimeError("boom")
    assert store._locks == {}
    assert await store.get_balance(user.id) == 0
