import os
from typing import AsyncGenerator, Iterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Tests run against the in-memory ledger store
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("MONGODB_DB_NAME", "rewardledger_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")


@pytest.fixture(autouse=True)
def fresh_store() -> Iterator[None]:
    """Each test gets an empty store (and locks bound to its own event loop)."""
    from rewardledger.store.base import get_store
    get_store.cache_clear()
    yield
    get_store.cache_clear()


@pytest.fixture
def store():
    from rewardledger.store.base import get_store
    return get_store()


@pytest_asyncio.fixture
async def make_user(store):
    from rewardledger.services import accounts as accounts_service

    counter = 0

    async def _make(balance: int = 0, username: str | None = None):
        nonlocal counter
        counter += 1
        account = await accounts_service.create_user(
            username=username or f"user{counter}",
            uuid=f"uuid-{counter}",
        )
        if balance:
            from rewardledger.services import rewards as rewards_service
            await rewards_service.purchase_reward(account.id, balance)
        return account

    return _make


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from rewardledger.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
