from datetime import datetime

import pymongo
from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel

from rewardledger.schemas import CommissionStatus


class CommissionRecord(Document):
    payer_id: PydanticObjectId
    invited_id: PydanticObjectId
    amount: int
    status: CommissionStatus = CommissionStatus.COMPLETED
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "commissions"
        indexes = [
            IndexModel(
                [("payer_id", pymongo.ASCENDING), ("invited_id", pymongo.ASCENDING)],
                name="uniq_payer_invited",
                unique=True,
            ),
        ]
