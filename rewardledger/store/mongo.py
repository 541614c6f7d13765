"""MongoDB ledger store: each unit is a multi-document transaction on its own session."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from beanie import PydanticObjectId
from beanie.operators import Set
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import DuplicateKeyError, PyMongoError

from rewardledger.core.exceptions import ConflictError, DuplicateCommissionError, NotFoundError, StorageFailure
from rewardledger.core.logging import get_logger
from rewardledger.models.commission import CommissionRecord
from rewardledger.models.reward_record import RewardLedgerEntry
from rewardledger.models.user import User
from rewardledger.schemas import Account, Commission, CommissionStatus, RewardKind, RewardRecord
from rewardledger.store.base import LedgerStore, LedgerUnit

log = get_logger(__name__)


def _oid(user_id: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(user_id)
    except (InvalidId, TypeError) as e:
        raise NotFoundError("User not found") from e


def _account(user: User) -> Account:
    return Account(
        id=str(user.id),
        uuid=user.uuid,
        username=user.username,
        email=user.email,
        login_type=user.login_type,
        avatar=user.avatar,
        referral_code=user.referral_code,
        reward_amount=user.reward_amount,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _record(entry: RewardLedgerEntry) -> RewardRecord:
    return RewardRecord(
        id=str(entry.id),
        user_id=str(entry.user_id),
        amount=entry.amount,
        kind=entry.kind,
        origin=entry.origin,
        created_at=entry.created_at,
    )


def _commission(doc: CommissionRecord) -> Commission:
    return Commission(
        id=str(doc.id),
        payer_id=str(doc.payer_id),
        invited_id=str(doc.invited_id),
        amount=doc.amount,
        status=doc.status,
        created_at=doc.created_at,
    )


class MongoLedgerUnit(LedgerUnit):
    def __init__(self, session: AsyncIOMotorClientSession) -> None:
        self._session = session

    async def _user(self, user_id: str) -> User:
        user = await User.get(_oid(user_id), session=self._session)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def get_balance(self, user_id: str) -> int:
        return (await self._user(user_id)).reward_amount

    async def set_balance(self, user_id: str, amount: int) -> None:
        # Writing the user document inside the transaction is the serialization
        # point: a concurrent unit on the same user fails with a write conflict.
        await User.find_one(User.id == _oid(user_id), session=self._session).update(
            Set({User.reward_amount: amount, User.updated_at: datetime.utcnow()}),
            session=self._session,
        )

    async def append_record(self, user_id: str, amount: int, kind: RewardKind, origin: str) -> RewardRecord:
        entry = RewardLedgerEntry(user_id=_oid(user_id), amount=amount, kind=kind, origin=origin)
        await entry.insert(session=self._session)
        return _record(entry)

    async def commission_exists(self, payer_id: str, invited_id: str) -> bool:
        found = await CommissionRecord.find_one(
            CommissionRecord.payer_id == _oid(payer_id),
            CommissionRecord.invited_id == _oid(invited_id),
            session=self._session,
        )
        return found is not None

    async def insert_commission(
        self,
        payer_id: str,
        invited_id: str,
        amount: int,
        status: CommissionStatus,
    ) -> str:
        doc = CommissionRecord(
            payer_id=_oid(payer_id),
            invited_id=_oid(invited_id),
            amount=amount,
            status=status,
        )
        try:
            await doc.insert(session=self._session)
        except DuplicateKeyError as e:
            raise DuplicateCommissionError(payer_id, invited_id) from e
        return str(doc.id)


class MongoLedgerStore(LedgerStore):
    def __init__(self, client: AsyncIOMotorClient) -> None:
        self._client = client

    @asynccontextmanager
    async def atomic(self, *lock_keys: str) -> AsyncIterator[LedgerUnit]:
        # lock_keys are not needed here: the transaction's write conflicts and the
        # unique commission index serialize units on the same keys.
        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    yield MongoLedgerUnit(session)
        except PyMongoError as e:
            # Write conflicts with a concurrent unit carry this label; nothing was committed.
            transient = e.has_error_label("TransientTransactionError")
            log.warning("unit_rolled_back", lock_keys=list(lock_keys), error=str(e), transient=transient)
            raise StorageFailure(
                "Ledger transaction failed",
                details={"reason": type(e).__name__, "transient": transient},
            ) from e

    async def get_balance(self, user_id: str) -> int:
        user = await User.get(_oid(user_id))
        if not user:
            raise NotFoundError("User not found")
        return user.reward_amount

    async def list_records(self, user_id: str, limit: int | None = None, offset: int = 0) -> list[RewardRecord]:
        query = (
            RewardLedgerEntry.find(RewardLedgerEntry.user_id == _oid(user_id))
            .sort(+RewardLedgerEntry.created_at, +RewardLedgerEntry.id)
            .skip(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return [_record(e) for e in await query.to_list()]

    async def get_commission(self, payer_id: str, invited_id: str) -> Commission | None:
        doc = await CommissionRecord.find_one(
            CommissionRecord.payer_id == _oid(payer_id),
            CommissionRecord.invited_id == _oid(invited_id),
        )
        return _commission(doc) if doc else None

    async def insert_user(
        self,
        uuid: str,
        username: str,
        referral_code: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        user = User(
            uuid=uuid,
            username=username,
            email=email,
            login_type=login_type,
            avatar=avatar,
            referral_code=referral_code,
        )
        try:
            await user.insert()
        except DuplicateKeyError as e:
            # The unique indexes are the arbiter; keyPattern names the colliding field.
            key_pattern = (e.details or {}).get("keyPattern") or {}
            field = "referral_code" if "referral_code" in key_pattern else "uuid"
            message = "Referral code already in use" if field == "referral_code" else "Account already exists"
            raise ConflictError(message, details={"field": field}) from e
        return _account(user)

    async def update_profile(
        self,
        user_id: str,
        username: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        oid = _oid(user_id)
        updates = {
            User.username: username,
            User.login_type: login_type,
            User.avatar: avatar,
            User.updated_at: datetime.utcnow(),
        }
        if email is not None:
            updates[User.email] = email
        # Targeted $set so a concurrent ledger unit's reward_amount is never overwritten.
        await User.find_one(User.id == oid).update(Set(updates))
        user = await User.get(oid)
        if not user:
            raise NotFoundError("User not found")
        return _account(user)

    async def get_user(self, user_id: str) -> Account | None:
        try:
            oid = _oid(user_id)
        except NotFoundError:
            return None
        user = await User.get(oid)
        return _account(user) if user else None

    async def get_user_by_uuid(self, uuid: str) -> Account | None:
        user = await User.find_one(User.uuid == uuid)
        return _account(user) if user else None

    async def resolve_referral_code(self, code: str) -> str | None:
        user = await User.find_one(User.referral_code == code)
        return str(user.id) if user else None
