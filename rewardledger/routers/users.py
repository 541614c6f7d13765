from fastapi import APIRouter, Depends
from pydantic import BaseModel

from rewardledger.core.exceptions import NotFoundError, UnauthorizedError
from rewardledger.core.security import issue_tokens, refresh_tokens, verify_refresh
from rewardledger.deps import get_current_user_id
from rewardledger.schemas import Account
from rewardledger.services import accounts as accounts_service

router = APIRouter()


class CreateUserRequest(BaseModel):
    username: str
    uuid: str
    email: str | None = None
    login_type: int = 0
    avatar: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


def _user_out(account: Account) -> dict:
    return {
        "id": account.id,
        "uuid": account.uuid,
        "username": account.username,
        "email": account.email,
        "avatar": account.avatar,
        "referral_code": account.referral_code,
        "reward_amount": account.reward_amount,
    }


@router.post("", status_code=201)
async def users_create(body: CreateUserRequest):
    """Sign up a new account. Tokens are issued only when the account is created here."""
    # An existing uuid is a 409; re-creating a profile goes through PUT /me.
    account = await accounts_service.create_user(
        username=body.username,
        uuid=body.uuid,
        email=body.email,
        login_type=body.login_type,
        avatar=body.avatar,
        update_existing=False,
    )
    return {"user": _user_out(account), **issue_tokens(account.id)}


@router.get("/me")
async def users_me(user_id: str = Depends(get_current_user_id)):
    account = await accounts_service.get_user(user_id)
    return _user_out(account)


@router.put("/me")
async def users_update_me(body: CreateUserRequest, user_id: str = Depends(get_current_user_id)):
    """Refresh profile fields; the body's uuid must belong to the caller."""
    account = await accounts_service.update_profile(
        user_id,
        uuid=body.uuid,
        username=body.username,
        email=body.email,
        login_type=body.login_type,
        avatar=body.avatar,
    )
    return _user_out(account)


@router.post("/token/refresh")
async def users_token_refresh(body: RefreshRequest):
    user_id = verify_refresh(body.refresh_token)
    if user_id is None:
        raise UnauthorizedError("Invalid or expired refresh token")
    try:
        await accounts_service.get_user(user_id)
    except NotFoundError as e:
        raise UnauthorizedError("Invalid or expired refresh token") from e
    tokens = refresh_tokens(body.refresh_token)
    if tokens is None:
        raise UnauthorizedError("Invalid or expired refresh token")
    return tokens
