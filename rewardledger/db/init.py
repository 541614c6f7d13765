from functools import lru_cache

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from rewardledger.core.config import get_settings
from rewardledger.models.commission import CommissionRecord
from rewardledger.models.reward_record import RewardLedgerEntry
from rewardledger.models.user import User

DOCUMENT_MODELS = [
    User,
    RewardLedgerEntry,
    CommissionRecord,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


@lru_cache
def get_client() -> AsyncIOMotorClient:
    """Process-wide pooled client; each ledger unit checks out its own session."""
    settings = get_settings()
    kwargs = {
        "timeoutMS": settings.mongodb_timeout_ms,
        "maxPoolSize": settings.mongodb_max_pool_size,
        "uuidRepresentation": "standard",
    }
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db(client: AsyncIOMotorClient | None = None, db_name: str | None = None) -> None:
    settings = get_settings()
    client = client or get_client()
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
