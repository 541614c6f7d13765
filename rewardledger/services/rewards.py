"""Reward point ledger: every balance change and its record commit as one unit."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TypeVar

from rewardledger.core.exceptions import DuplicateCommissionError, InvalidArgumentError, StorageFailure
from rewardledger.core.logging import get_logger
from rewardledger.schemas import CommissionResult, CommissionStatus, RewardKind, RewardRecord
from rewardledger.store.base import LedgerStore, LedgerUnit, commission_key, get_store, user_key

log = get_logger(__name__)

T = TypeVar("T")

COMMISSION_ORIGIN = "Redeemed by commission"
CHECKIN_ORIGIN = "Checkin reward"
PURCHASE_ORIGIN = "Bought by user"

# Attempts per unit when the store reports a transient conflict with a concurrent unit.
UNIT_ATTEMPTS = 3


def _credit(balance: int, amount: int) -> int:
    return balance + amount


def _debit_floor_zero(balance: int, amount: int) -> int:
    return max(balance - amount, 0)


FORMULAS: dict[RewardKind, Callable[[int, int], int]] = {
    RewardKind.REDEEMED: _credit,
    RewardKind.CHECKIN: _credit,
    RewardKind.BUY: _credit,
    RewardKind.COST: _debit_floor_zero,
}


@dataclass(frozen=True)
class BalanceChange:
    """One ledger event: the record to append and how it moves the balance."""

    kind: RewardKind
    amount: int
    origin: str

    def apply(self, balance: int) -> int:
        return FORMULAS[self.kind](balance, self.amount)


@dataclass(frozen=True)
class AppliedChange:
    record: RewardRecord
    balance_before: int
    balance_after: int


def _require_user_id(user_id: str | None, field: str = "user_id") -> str:
    if user_id is None or not str(user_id).strip():
        raise InvalidArgumentError(f"{field} is required", details={"field": field})
    return str(user_id).strip()


def _require_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidArgumentError("amount must be an integer", details={"amount": repr(amount)})
    if amount < 0:
        raise InvalidArgumentError("amount must not be negative", details={"amount": amount})
    return amount


async def run_unit(store: LedgerStore, lock_keys: Iterable[str], work: Callable[[LedgerUnit], Awaitable[T]]) -> T:
    """Run `work` inside one atomic unit, retrying only transient store conflicts."""
    keys = tuple(lock_keys)
    for attempt in range(1, UNIT_ATTEMPTS + 1):
        try:
            async with store.atomic(*keys) as unit:
                return await work(unit)
        except StorageFailure as e:
            if not e.details.get("transient") or attempt == UNIT_ATTEMPTS:
                raise
            log.info("unit_retry", attempt=attempt, lock_keys=list(keys))
    raise AssertionError("unreachable")


async def _apply_in_unit(unit: LedgerUnit, user_id: str, change: BalanceChange) -> AppliedChange:
    before = await unit.get_balance(user_id)
    after = change.apply(before)
    await unit.set_balance(user_id, after)
    record = await unit.append_record(user_id, change.amount, change.kind, change.origin)
    return AppliedChange(record=record, balance_before=before, balance_after=after)


async def apply_balance_change(
    user_id: str,
    change: BalanceChange,
    store: LedgerStore | None = None,
) -> AppliedChange:
    """
    Validate, update the balance and append the matching record in one unit.
    On any failure the unit rolls back and the balance is unchanged. Returns the
    record with the balance read and written inside the unit.
    """
    user_id = _require_user_id(user_id)
    _require_amount(change.amount)
    if not change.origin:
        raise InvalidArgumentError("origin is required", details={"field": "origin"})
    store = store or get_store()

    async def work(unit: LedgerUnit) -> AppliedChange:
        return await _apply_in_unit(unit, user_id, change)

    applied = await run_unit(store, [user_key(user_id)], work)
    log.info(
        "reward_applied",
        user_id=user_id,
        kind=change.kind.value,
        amount=change.amount,
        balance_before=applied.balance_before,
        balance_after=applied.balance_after,
        record_id=applied.record.id,
    )
    return applied


async def award_commission(
    payer_id: str,
    invited_id: str,
    amount: int,
    status: CommissionStatus = CommissionStatus.COMPLETED,
    store: LedgerStore | None = None,
) -> CommissionResult:
    """
    Pay a referral commission to the invited user once per (payer, invited) pair.
    A repeat call is a no-op and returns created=False with the existing commission id.
    """
    payer_id = _require_user_id(payer_id, "payer_id")
    invited_id = _require_user_id(invited_id, "invited_id")
    _require_amount(amount)
    try:
        status = CommissionStatus(status)
    except ValueError as e:
        raise InvalidArgumentError("unknown commission status", details={"status": repr(status)}) from e
    change = BalanceChange(RewardKind.REDEEMED, amount, COMMISSION_ORIGIN)
    store = store or get_store()

    async def work(unit: LedgerUnit) -> tuple[str, AppliedChange]:
        # Fast path only; the store's pair constraint on insert is the real guard.
        if await unit.commission_exists(payer_id, invited_id):
            raise DuplicateCommissionError(payer_id, invited_id)
        commission_id = await unit.insert_commission(payer_id, invited_id, amount, status)
        return commission_id, await _apply_in_unit(unit, invited_id, change)

    try:
        commission_id, applied = await run_unit(
            store,
            [commission_key(payer_id, invited_id), user_key(invited_id)],
            work,
        )
    except DuplicateCommissionError:
        existing = await store.get_commission(payer_id, invited_id)
        log.info("commission_duplicate", payer_id=payer_id, invited_id=invited_id)
        return CommissionResult(commission_id=existing.id if existing else None, created=False)

    log.info(
        "commission_awarded",
        commission_id=commission_id,
        payer_id=payer_id,
        invited_id=invited_id,
        amount=amount,
        balance_before=applied.balance_before,
        balance_after=applied.balance_after,
    )
    return CommissionResult(commission_id=commission_id, created=True)


def cost_change(amount: int, origin: str) -> BalanceChange:
    return BalanceChange(RewardKind.COST, amount, (origin or "").strip())


def checkin_change(amount: int) -> BalanceChange:
    return BalanceChange(RewardKind.CHECKIN, amount, CHECKIN_ORIGIN)


def purchase_change(amount: int) -> BalanceChange:
    return BalanceChange(RewardKind.BUY, amount, PURCHASE_ORIGIN)


async def consume_reward(user_id: str, amount: int, origin: str, store: LedgerStore | None = None) -> RewardRecord:
    """Spend points. The balance floors at zero; the record keeps the requested amount."""
    return (await apply_balance_change(user_id, cost_change(amount, origin), store)).record


async def grant_checkin_reward(user_id: str, amount: int, store: LedgerStore | None = None) -> RewardRecord:
    return (await apply_balance_change(user_id, checkin_change(amount), store)).record


async def purchase_reward(user_id: str, amount: int, store: LedgerStore | None = None) -> bool:
    await apply_balance_change(user_id, purchase_change(amount), store)
    return True


async def get_balance(user_id: str, store: LedgerStore | None = None) -> int:
    """Committed balance. Raises NotFoundError for unknown users."""
    user_id = _require_user_id(user_id)
    return await (store or get_store()).get_balance(user_id)


async def list_records(
    user_id: str,
    limit: int | None = None,
    offset: int = 0,
    store: LedgerStore | None = None,
) -> list[RewardRecord]:
    """Reward records for a user, oldest first."""
    user_id = _require_user_id(user_id)
    if limit is not None and limit < 0:
        raise InvalidArgumentError("limit must not be negative", details={"limit": limit})
    if offset < 0:
        raise InvalidArgumentError("offset must not be negative", details={"offset": offset})
    store = store or get_store()
    # Unknown users raise NotFoundError rather than returning an empty history.
    await store.get_balance(user_id)
    return await store.list_records(user_id, limit=limit, offset=offset)


def ledger_total(records: Iterable[RewardRecord]) -> int:
    """Replay records from a zero balance, clamping debits the way consume_reward does."""
    balance = 0
    for record in records:
        balance = FORMULAS[record.kind](balance, record.amount)
    return balance
