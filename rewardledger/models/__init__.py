from rewardledger.models.user import User
from rewardledger.models.reward_record import RewardLedgerEntry
from rewardledger.models.commission import CommissionRecord

__all__ = [
    "User",
    "RewardLedgerEntry",
    "CommissionRecord",
]
