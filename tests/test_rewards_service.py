"""Reward ledger service on the in-memory store."""

import pytest

from rewardledger.core.exceptions import InvalidArgumentError, NotFoundError
from rewardledger.schemas import CommissionStatus, RewardKind
from rewardledger.services import rewards as rewards_service

pytestmark = pytest.mark.asyncio


def _of_kind(records, kind):
    return [r for r in records if r.kind == kind]


async def test_new_user_starts_at_zero(make_user):
    user = await make_user()
    assert await rewards_service.get_balance(user.id) == 0
    assert await rewards_service.list_records(user.id) == []


async def test_consume_on_empty_balance_clamps_and_records_requested_amount(make_user):
    user = await make_user()
    record = await rewards_service.consume_reward(user.id, 50, "test")
    assert await rewards_service.get_balance(user.id) == 0
    assert record.kind == RewardKind.COST
    assert record.amount == 50
    assert record.origin == "test"
    records = await rewards_service.list_records(user.id)
    assert [(r.kind, r.amount) for r in records] == [(RewardKind.COST, 50)]


async def test_consume_partial(make_user):
    user = await make_user(balance=30)
    await rewards_service.consume_reward(user.id, 12, "sticker pack")
    assert await rewards_service.get_balance(user.id) == 18


async def test_balance_never_negative_over_consume_sequence(make_user):
    user = await make_user(balance=25)
    for amount in (10, 40, 0, 5, 100, 3):
        await rewards_service.consume_reward(user.id, amount, "spend")
        assert await rewards_service.get_balance(user.id) >= 0
    assert await rewards_service.get_balance(user.id) == 0
    costs = _of_kind(await rewards_service.list_records(user.id), RewardKind.COST)
    assert [r.amount for r in costs] == [10, 40, 0, 5, 100, 3]


async def test_checkin_adds_to_balance(make_user):
    user = await make_user(balance=100)
    record = await rewards_service.grant_checkin_reward(user.id, 10)
    assert await rewards_service.get_balance(user.id) == 110
    assert record.origin == rewards_service.CHECKIN_ORIGIN
    checkins = _of_kind(await rewards_service.list_records(user.id), RewardKind.CHECKIN)
    assert len(checkins) == 1
    assert checkins[0].amount == 10


async def test_purchase_returns_true_and_records_buy(make_user):
    user = await make_user()
    assert await rewards_service.purchase_reward(user.id, 200) is True
    assert await rewards_service.get_balance(user.id) == 200
    records = await rewards_service.list_records(user.id)
    assert len(records) == 1
    assert records[0].kind == RewardKind.BUY
    assert records[0].origin == rewards_service.PURCHASE_ORIGIN


async def test_commission_paid_once_per_pair(make_user):
    payer = await make_user()
    invited = await make_user()
    first = await rewards_service.award_commission(payer.id, invited.id, 20)
    assert first.created is True
    assert first.commission_id
    assert await rewards_service.get_balance(invited.id) == 20

    second = await rewards_service.award_commission(payer.id, invited.id, 20)
    assert second.created is False
    assert second.commission_id == first.commission_id
    assert await rewards_service.get_balance(invited.id) == 20

    records = await rewards_service.list_records(invited.id)
    assert [(r.kind, r.amount, r.origin) for r in records] == [
        (RewardKind.REDEEMED, 20, rewards_service.COMMISSION_ORIGIN)
    ]
    # payer's balance is untouched
    assert await rewards_service.get_balance(payer.id) == 0


async def test_commission_for_other_payer_is_separate(make_user):
    a = await make_user()
    b = await make_user()
    invited = await make_user()
    assert (await rewards_service.award_commission(a.id, invited.id, 5)).created
    assert (await rewards_service.award_commission(b.id, invited.id, 7)).created
    assert await rewards_service.get_balance(invited.id) == 12


async def test_commission_status_is_stored(make_user, store):
    payer = await make_user()
    invited = await make_user()
    await rewards_service.award_commission(payer.id, invited.id, 3, status=CommissionStatus.PENDING)
    commission = await store.get_commission(payer.id, invited.id)
    assert commission.status == CommissionStatus.PENDING
    assert commission.amount == 3


async def test_commission_for_unknown_invited_user_leaves_no_commission(make_user, store):
    payer = await make_user()
    with pytest.raises(NotFoundError):
        await rewards_service.award_commission(payer.id, "999", 20)
    assert await store.get_commission(payer.id, "999") is None


@pytest.mark.parametrize("amount", [-1, 1.5, "10", True, None])
async def test_invalid_amount_rejected_before_write(make_user, amount):
    user = await make_user(balance=10)
    with pytest.raises(InvalidArgumentError):
        await rewards_service.grant_checkin_reward(user.id, amount)
    with pytest.raises(InvalidArgumentError):
        await rewards_service.consume_reward(user.id, amount, "x")
    assert await rewards_service.get_balance(user.id) == 10
    assert len(await rewards_service.list_records(user.id)) == 1


async def test_negative_commission_rejected(make_user, store):
    payer = await make_user()
    invited = await make_user()
    with pytest.raises(InvalidArgumentError):
        await rewards_service.award_commission(payer.id, invited.id, -5)
    assert await store.get_commission(payer.id, invited.id) is None


@pytest.mark.parametrize("user_id", [None, "", "   "])
async def test_missing_user_id_rejected(user_id):
    with pytest.raises(InvalidArgumentError):
        await rewards_service.purchase_reward(user_id, 10)


async def test_consume_requires_origin(make_user):
    user = await make_user()
    with pytest.raises(InvalidArgumentError):
        await rewards_service.consume_reward(user.id, 1, "  ")


async def test_unknown_user(make_user):
    with pytest.raises(NotFoundError):
        await rewards_service.get_balance("404")
    with pytest.raises(NotFoundError):
        await rewards_service.grant_checkin_reward("404", 1)
    with pytest.raises(NotFoundError):
        await rewards_service.list_records("404")


async def test_records_are_oldest_first_and_paginated(make_user):
    user = await make_user()
    for amount in (1, 2, 3, 4):
        await rewards_service.grant_checkin_reward(user.id, amount)
    records = await rewards_service.list_records(user.id)
    assert [r.amount for r in records] == [1, 2, 3, 4]
    page = await rewards_service.list_records(user.id, limit=2, offset=1)
    assert [r.amount for r in page] == [2, 3]


async def test_replaying_credits_reproduces_balance(make_user):
    payer = await make_user()
    user = await make_user()
    await rewards_service.purchase_reward(user.id, 40)
    await rewards_service.grant_checkin_reward(user.id, 10)
    await rewards_service.award_commission(payer.id, user.id, 15)
    await rewards_service.consume_reward(user.id, 30, "spend")
    records = await rewards_service.list_records(user.id)
    assert rewards_service.ledger_total(records) == await rewards_service.get_balance(user.id) == 35
    credits = [r for r in records if r.kind != RewardKind.COST]
    assert sum(r.amount for r in credits) == 65


async def test_apply_balance_change_reports_balance_inside_unit(make_user):
    user = await make_user(balance=5)
    applied = await rewards_service.apply_balance_change(user.id, rewards_service.cost_change(8, "frame"))
    assert (applied.balance_before, applied.balance_after) == (5, 0)
    assert applied.record.kind == RewardKind.COST
    assert applied.record.amount == 8
    applied = await rewards_service.apply_balance_change(user.id, rewards_service.checkin_change(4))
    assert (applied.balance_before, applied.balance_after) == (0, 4)
    assert applied.record.origin == rewards_service.CHECKIN_ORIGIN
