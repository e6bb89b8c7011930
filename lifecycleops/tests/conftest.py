from __future__ import annotations

import pytest

from lifecycleops.persistence.db import build_engine, build_sessionmaker, create_all
from lifecycleops.services.container import build_services
from lifecycleops.services.crypto.credential_store import StaticKeyProvider
from lifecycleops.tests.utils.directory import FakeClock, FakeDirectory, RecordingSleeper


TEST_KEY = bytes(range(32))


@pytest.fixture
async def sessionmaker(tmp_path):
    # One SQLite file per test keeps tenants, runs and schedules isolated.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'lifecycleops.db'}")
    await create_all(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def key_provider() -> StaticKeyProvider:
    return StaticKeyProvider(TEST_KEY)


@pytest.fixture
def fake_directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
async def services(sessionmaker, key_provider, fake_directory, clock, sleeper):
    async with fake_directory.client() as http_client:
        yield build_services(
            sessionmaker=sessionmaker,
            key_provider=key_provider,
            http_client=http_client,
            sleeper=sleeper,
            clock=clock,
        )
