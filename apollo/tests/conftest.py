import os

# settings are read at import time by apollo.db.session
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import apollo.models  # noqa

from apollo.core import deps
from apollo.db.base import Base
from apollo.db.session import get_db
from apollo.services.action_orchestrator import ActionOrchestrator
from apollo.services.chain import InMemoryChainClient
from apollo.services.history_service import (
    AuctionHistoryService,
    HistoryViewCache,
    PendingReturnsTracker,
)


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def chain():
    return InMemoryChainClient()


@pytest.fixture
def cache():
    return HistoryViewCache(ttl_seconds=60)


@pytest.fixture
def pending(chain):
    return PendingReturnsTracker(chain)


@pytest.fixture
def history_service(chain, cache, pending):
    return AuctionHistoryService(chain=chain, cache=cache, pending=pending)


@pytest.fixture
def orchestrator(chain, cache, pending):
    return ActionOrchestrator(chain=chain, cache=cache, pending=pending, confirmation_timeout=5)


@pytest.fixture
def client(session_factory, history_service, orchestrator):
    from apollo.main import create_app

    app = create_app()

    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_history_service] = lambda: history_service
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator

    with TestClient(app) as c:
        yield c
