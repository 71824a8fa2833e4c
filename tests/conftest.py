import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory ledger, no Redis
os.environ["LEDGER_BACKEND"] = "memory"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("LEDGER_SERVICE_KEY", "test-ledger-key")

from app.storage.memory import InMemoryLedgerStore, InMemoryNotificationStore  # noqa: E402


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def notifications() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture
def server_headers() -> dict[str, str]:
    return {"X-Ledger-Key": os.environ["LEDGER_SERVICE_KEY"]}


@pytest_asyncio.fixture
async def client(store, notifications) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    app.state.ledger_store = store
    app.state.notification_store = notifications
    app.state.redis = None
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
