"""
Shared fixtures: a fresh in-memory database per test, a service bound to it,
and an HTTP client driving the FastAPI app against the same database.
"""

import httpx
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from appointment_service import config
from appointment_service.api import app
from appointment_service.db import create_engine, create_session_factory, get_session, init_models
from appointment_service.service import AppointmentService
from appointment_service.usage import UsageRecorder


@pytest_asyncio.fixture
async def engine():
    # StaticPool keeps every session on the one in-memory connection
    engine = create_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def service(session):
    return AppointmentService(session, usage=UsageRecorder())


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    monkeypatch.setattr(config, "API_KEY", "")

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
