from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field

from rewardledger.schemas import RewardKind


class RewardLedgerEntry(Document):
    """Append-only; never updated or deleted once inserted."""
    user_id: PydanticObjectId
    amount: int  # magnitude, direction comes from kind
    kind: RewardKind
    origin: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "reward_records"
        indexes = [
            [("user_id", 1), ("created_at", 1), ("_id", 1)],
        ]
