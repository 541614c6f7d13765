from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    uuid: Indexed(str, unique=True)
    username: str
    email: str | None = None
    login_type: int = 0
    avatar: str | None = None
    referral_code: Indexed(str, unique=True)
    reward_amount: int = 0  # written only by ledger units
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
