from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from functools import lru_cache

from rewardledger.core.config import get_settings
from rewardledger.schemas import Account, Commission, CommissionStatus, RewardKind, RewardRecord


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def commission_key(payer_id: str, invited_id: str) -> str:
    return f"commission:{payer_id}:{invited_id}"


class LedgerUnit(ABC):
    """Writes made through a unit commit together when its block exits cleanly."""

    @abstractmethod
    async def get_balance(self, user_id: str) -> int:
        """Balance as seen inside the unit. Raises NotFoundError for unknown users."""
        ...

    @abstractmethod
    async def set_balance(self, user_id: str, amount: int) -> None:
        ...

    @abstractmethod
    async def append_record(self, user_id: str, amount: int, kind: RewardKind, origin: str) -> RewardRecord:
        ...

    @abstractmethod
    async def commission_exists(self, payer_id: str, invited_id: str) -> bool:
        ...

    @abstractmethod
    async def insert_commission(
        self,
        payer_id: str,
        invited_id: str,
        amount: int,
        status: CommissionStatus,
    ) -> str:
        """Insert a commission fact; raises DuplicateCommissionError if the pair exists."""
        ...


class LedgerStore(ABC):
    @abstractmethod
    def atomic(self, *lock_keys: str) -> AbstractAsyncContextManager[LedgerUnit]:
        """
        Open an atomic unit. Exiting normally commits; an exception rolls back
        every write made through the unit and propagates. `lock_keys` name the
        users and commission pairs the unit touches (see user_key / commission_key).
        """
        ...

    @abstractmethod
    async def get_balance(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_records(self, user_id: str, limit: int | None = None, offset: int = 0) -> list[RewardRecord]:
        """Committed records for a user, oldest first."""
        ...

    @abstractmethod
    async def get_commission(self, payer_id: str, invited_id: str) -> Commission | None:
        ...

    # Account directory

    @abstractmethod
    async def insert_user(
        self,
        uuid: str,
        username: str,
        referral_code: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        """
        Insert an account with a zero balance. The uuid and referral code are
        unique; a collision raises ConflictError with details["field"] naming it.
        """
        ...

    @abstractmethod
    async def update_profile(
        self,
        user_id: str,
        username: str,
        email: str | None = None,
        login_type: int = 0,
        avatar: str | None = None,
    ) -> Account:
        """Overwrite profile fields only; never touches reward_amount or referral_code."""
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Account | None:
        ...

    @abstractmethod
    async def get_user_by_uuid(self, uuid: str) -> Account | None:
        ...

    @abstractmethod
    async def resolve_referral_code(self, code: str) -> str | None:
        ...


@lru_cache
def get_store() -> LedgerStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        from rewardledger.store.memory import MemoryLedgerStore
        return MemoryLedgerStore()
    from rewardledger.db.init import get_client
    from rewardledger.store.mongo import MongoLedgerStore
    return MongoLedgerStore(get_client())
