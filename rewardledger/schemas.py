"""Store-independent views of accounts, reward records and commissions."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class RewardKind(str, Enum):
    REDEEMED = "Redeemed"
    COST = "Cost"
    CHECKIN = "Checkin"
    BUY = "Buy"


class CommissionStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class Account(BaseModel):
    id: str
    uuid: str
    username: str
    email: str | None = None
    login_type: int = 0
    avatar: str | None = None
    referral_code: str
    reward_amount: int = 0
    created_at: datetime
    updated_at: datetime


class RewardRecord(BaseModel):
    """Immutable ledger entry. `amount` is a magnitude; `kind` gives the direction."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    amount: int
    kind: RewardKind
    origin: str
    created_at: datetime


class Commission(BaseModel):
    id: str
    payer_id: str
    invited_id: str
    amount: int
    status: CommissionStatus
    created_at: datetime


class CommissionResult(BaseModel):
    commission_id: str | None
    created: bool
