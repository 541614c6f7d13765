from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from rewardledger.core.config import get_settings
from rewardledger.deps import get_current_user_id
from rewardledger.schemas import RewardRecord
from rewardledger.services import rewards as rewards_service

router = APIRouter()


class CheckinRequest(BaseModel):
    amount: int | None = Field(default=None, ge=0)


class ConsumeRequest(BaseModel):
    amount: int = Field(ge=0)
    origin: str = Field(min_length=1, max_length=255)


class PurchaseRequest(BaseModel):
    amount: int = Field(ge=0)


def _record_out(record: RewardRecord) -> dict:
    return {
        "id": record.id,
        "amount": record.amount,
        "type": record.kind.value,
        "origin": record.origin,
        "created_at": record.created_at.isoformat(),
    }


@router.get("/balance")
async def rewards_balance(user_id: str = Depends(get_current_user_id)):
    """Return current reward point balance."""
    balance = await rewards_service.get_balance(user_id)
    return {"reward_amount": balance}


@router.get("/records")
async def rewards_records(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return reward records for current user (oldest first)."""
    records = await rewards_service.list_records(user_id, limit=limit, offset=offset)
    return {"records": [_record_out(r) for r in records], "limit": limit, "offset": offset}


@router.post("/checkin")
async def rewards_checkin(body: CheckinRequest, user_id: str = Depends(get_current_user_id)):
    amount = body.amount if body.amount is not None else get_settings().checkin_reward_amount
    applied = await rewards_service.apply_balance_change(user_id, rewards_service.checkin_change(amount))
    return {"record": _record_out(applied.record), "reward_amount": applied.balance_after}


@router.post("/consume")
async def rewards_consume(body: ConsumeRequest, user_id: str = Depends(get_current_user_id)):
    applied = await rewards_service.apply_balance_change(user_id, rewards_service.cost_change(body.amount, body.origin))
    return {"record": _record_out(applied.record), "reward_amount": applied.balance_after}


@router.post("/purchase")
async def rewards_purchase(body: PurchaseRequest, user_id: str = Depends(get_current_user_id)):
    applied = await rewards_service.apply_balance_change(user_id, rewards_service.purchase_change(body.amount))
    return {"success": True, "reward_amount": applied.balance_after}
