"""Accounts and referral codes: the directory commission payouts resolve against."""

import secrets

from rewardledger.core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from rewardledger.core.logging import get_logger
from rewardledger.schemas import Account, CommissionResult, CommissionStatus
from rewardledger.services import rewards as rewards_service
from rewardledger.store.base import LedgerStore, get_store

log = get_logger(__name__)

REFERRAL_CODE_ATTEMPTS = 10


def _generate_code() -> str:
    return secrets.token_urlsafe(8).upper().replace("-", "").replace("_", "")[:10]


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _require_profile(uuid: str | None, username: str | None) -> str:
    uuid = (uuid or "").strip()
    if not uuid:
        raise InvalidArgumentError("uuid is required", details={"field": "uuid"})
    if not (username or "").strip():
        raise InvalidArgumentError("username is required", details={"field": "username"})
    return uuid


async def create_user(
    username: str,
    uuid: str,
    email: str | None = None,
    login_type: int = 0,
    avatar: str | None = None,
    referral_code: str | None = None,
    update_existing: bool = True,
    store: LedgerStore | None = None,
) -> Account:
    """
    Create an account with a zero reward balance.

    The insert itself enforces uuid and referral-code uniqueness, so two
    concurrent sign-ups cannot both win. When the uuid is taken and
    `update_existing` is set, profile fields are refreshed and the balance and
    referral code are kept; otherwise ConflictError propagates.
    """
    uuid = _require_profile(uuid, username)
    store = store or get_store()
    requested_code = normalize_code(referral_code) if referral_code else None
    for _ in range(REFERRAL_CODE_ATTEMPTS):
        code = requested_code or _generate_code()
        try:
            account = await store.insert_user(
                uuid=uuid,
                username=username.strip(),
                referral_code=code,
                email=email,
                login_type=login_type,
                avatar=avatar,
            )
        except ConflictError as e:
            if e.details.get("field") == "uuid":
                if not update_existing:
                    raise
                existing = await store.get_user_by_uuid(uuid)
                if existing is None:
                    raise
                return await update_profile(
                    existing.id, uuid, username, email=email, login_type=login_type, avatar=avatar, store=store
                )
            if requested_code:
                raise BadRequestError("Referral code already in use", details={"referral_code": code}) from e
            log.info("referral_code_collision", uuid=uuid)
            continue
        log.info("user_created", user_id=account.id, uuid=uuid)
        return account
    raise BadRequestError("Could not generate unique referral code")


async def update_profile(
    user_id: str,
    uuid: str,
    username: str,
    email: str | None = None,
    login_type: int = 0,
    avatar: str | None = None,
    store: LedgerStore | None = None,
) -> Account:
    """Refresh profile fields of an existing account. The uuid must be the account's own."""
    uuid = _require_profile(uuid, username)
    store = store or get_store()
    account = await get_user(user_id, store=store)
    if account.uuid != uuid:
        raise ForbiddenError("uuid does not match the authenticated account")
    account = await store.update_profile(
        user_id, username.strip(), email=email, login_type=login_type, avatar=avatar
    )
    log.info("user_updated", user_id=account.id, uuid=uuid)
    return account


async def get_user(user_id: str, store: LedgerStore | None = None) -> Account:
    account = await (store or get_store()).get_user(user_id)
    if not account:
        raise NotFoundError("User not found")
    return account


async def get_user_by_uuid(uuid: str, store: LedgerStore | None = None) -> Account:
    account = await (store or get_store()).get_user_by_uuid(uuid)
    if not account:
        raise NotFoundError("User not found")
    return account


async def resolve_referral_code(code: str, store: LedgerStore | None = None) -> str:
    """Return the user id owning a referral code."""
    code = normalize_code(code)
    if not code:
        raise InvalidArgumentError("Referral code required", details={"field": "code"})
    user_id = await (store or get_store()).resolve_referral_code(code)
    if user_id is None:
        raise NotFoundError("Invalid referral code")
    return user_id


async def redeem_referral(
    invited_user_id: str,
    code: str,
    amount: int,
    status: CommissionStatus = CommissionStatus.COMPLETED,
    store: LedgerStore | None = None,
) -> CommissionResult:
    """Credit the invited user for a referral code, at most once per referrer."""
    store = store or get_store()
    payer_id = await resolve_referral_code(code, store=store)
    if payer_id == str(invited_user_id):
        raise BadRequestError("Cannot use your own referral code")
    return await rewards_service.award_commission(payer_id, invited_user_id, amount, status=status, store=store)
