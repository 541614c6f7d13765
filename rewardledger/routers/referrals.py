from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from rewardledger.deps import get_current_user_id
from rewardledger.services import accounts as accounts_service

router = APIRouter()


class RedeemReferralRequest(BaseModel):
    code: str
    amount: int = Field(ge=0)


@router.post("/redeem")
async def referral_redeem(body: RedeemReferralRequest, user_id: str = Depends(get_current_user_id)):
    """Credit the current user for a referral code; repeats for the same referrer are no-ops."""
    result = await accounts_service.redeem_referral(user_id, body.code, body.amount)
    return {"commission_id": result.commission_id, "created": result.created}
