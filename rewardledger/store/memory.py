"""In-process ledger store for tests and local runs.

Units stage their writes and apply them in one synchronous step on commit, so
nothing a unit wrote is visible until it exits cleanly. Per-key asyncio locks,
taken in sorted order, serialize units that share a user or commission pair.
"""

import asyncio
import itertools
from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from rewardledger.core.exceptions import ConflictError, DuplicateCommissionError, NotFoundError
from rewardledger.core.logging import get_logger
from rewardledger.schemas import Account, Commission, CommissionStatus, RewardKind, RewardRecord
from rewardledger.store.base import LedgerStore, LedgerUnit

log = get_logger(__name__)


class MemoryLedgerUnit(LedgerUnit):
    def __init__(self, store: "MemoryLedgerStore") -> None:
        self._store = store
        self._balances: dict[str, int] = {}
        self._records: list[RewardRecord] = []
        self._commissions: dict[tuple[str, str], Commission] = {}

    def _account(self, user_id: str) -> Account:
        account = self._store._users.get(user_id)
        if account is None:
            raise NotFoundError("User not found")
        return account

    async def get_balance(self, user_id: str) -> int:
        if user_id in self._balances:
            return self._balances[user_id]
        return self._account(user_id).reward_amount

    async def set_balance(self, user_id: str, amount: int) -> None:
        self._account(user_id)
        self._balances[user_id] = amount

    async def append_record(self, user_id: str, amount: int, kind: RewardKind, origin: str) -> RewardRecord:
        self._account(user_id)
        record = RewardRecord(
            id=str(next(self._store._record_ids)),
            user_id=user_id,
            amount=amount,
            kind=kind,
            origin=origin,
            created_at=datetime.utcnow(),
        )
        self._records.append(record)
        return record

    async def commission_exists(self, payer_id: str, invited_id: str) -> bool:
        pair = (payer_id, invited_id)
        return pair in self._commissions or pair in self._store._commissions

    async def insert_commission(
        self,
        payer_id: str,
        invited_id: str,
        amount: int,
        status: CommissionStatus,
    ) -> str:
        if await self.commission_exists(payer_id, invited_id):
            raise DuplicateCommissionError(payer_id, invited_id)
        commission = Commission(
            id=str(next(self._store._commission_ids)),
            payer_id=payer_id,
            invited_id=invited_id,
            amount=amount,
            status=status,
            created_at=datetime.utcnow(),
        )
        self._commissions[(payer_id, invited_id)] = commission
        return commission.id

    def _commit(self) -> None:
        store = self._store
        # Pair constraint is checked again against committed state before anything is applied.
        for payer_id, invited_id in self._commissions:
            if (payer_id, invited_id) in store._commissions:
                raise DuplicateCommissionError(payer_id, invited_id)
        now = datetime.utcnow()
        for user_id, amount in self._balances.items():
            store._users[user_id] = store._users[user_id].model_copy(
                update={"reward_amount": amount, "updated_at": now}
            )
        store._records.extend(self._records)
        store._commissions.update(self._commissions)


class MemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._users: dict[str, Account] = {}
        self._records: list[RewardRecord] = []
        self._commissions: dict[tuple[str, str], Commission] = {}
        # Locks live only while some unit holds or waits on them.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: Counter[str] = Counter()
        self._user_ids = itertools.count(1)
        self._record_ids = itertools.count(1)
        self._commission_ids = itertools.count(1)

    def _new_unit(self) -> MemoryLedgerUnit:
        return MemoryLedgerUnit(self)

    @asynccontextmanager
    async def _hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_refs[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[key] -= 1
            if not self._lock_refs[key]:
                del self._lock_refs[key]
                del self._locks[key]

    @asynccontextmanager
    async def atomic(self, *lock_keys: str) -> AsyncIterator[LedgerUnit]:
        async with AsyncExitStack() as stack:
            for key in sorted(set(lock_keys)):
                await stack.enter_async_context(self._hold(key))
            unit = self._new_unit()
            try:
                yield unit
            except BaseException as exc:
                log.info("unit_rolled_back", lock_keys=list(lock_keys), error=type(exc).__name__)
                raise
            unit._commit()

    async def get_balance(self, user_id: str) -> int:
        account = self._users.get(user_id)
        if account is None:
            raise NotFoundError("User not found")
        return account.reward_amount

    async def list_records(self, user_id: str, limit: int | None = None, offset: int = 0) -> list[RewardRecord]:
        records = sorted(
            (r for r in self._records if r.user_id == user_id),
            key=lambda r: (r.created_at, int(r.id)),
        )
        end = None if limit is None else offset + limit
        return records[offset:end]

    async def get_commission(self, payer_id: str, invited_id: str) -> Commission | None:
        return self._commissions.get((payer_id, invited_id))

    async def insert_user(
        self,
        uuid: str,
        username: str,
        referral_code: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        # Same unique constraints as the users collection indexes.
        if await self.get_user_by_uuid(uuid) is not None:
            raise ConflictError("Account already exists", details={"field": "uuid"})
        if await self.resolve_referral_code(referral_code) is not None:
            raise ConflictError("Referral code already in use", details={"field": "referral_code"})
        now = datetime.utcnow()
        account = Account(
            id=str(next(self._user_ids)),
            uuid=uuid,
            username=username,
            email=email,
            login_type=login_type,
            avatar=avatar,
            referral_code=referral_code,
            reward_amount=0,
            created_at=now,
            updated_at=now,
        )
        self._users[account.id] = account
        return account

    async def update_profile(
        self,
        user_id: str,
        username: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        existing = self._users.get(user_id)
        if existing is None:
            raise NotFoundError("User not found")
        updates = {"username": username, "login_type": login_type, "avatar": avatar, "updated_at": datetime.utcnow()}
        if email is not None:
            updates["email"] = email
        account = existing.model_copy(update=updates)
        self._users[user_id] = account
        return account

    async def get_user(self, user_id: str) -> Account | None:
        return self._users.get(user_id)

    async def get_user_by_uuid(self, uuid: str) -> Account | None:
        return next((u for u in self._users.values() if u.uuid == uuid), None)

    async def resolve_referral_code(self, code: str) -> str | None:
        return next((u.id for u in self._users.values() if u.referral_code == code), None)
