from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from civiportal.core.rate_limit import limiter
from civiportal.db.base import Base
from civiportal.db.dependencies import get_db_session
import civiportal.models.entities  # noqa: F401
from civiportal.main import create_app
from civiportal.models.entities import (
    ActualLine,
    BudgetLine,
    City,
    PortalSettings,
    RevenueLine,
    RoleAssignment,
    Transaction,
    UploadLog,
    User,
)

TEST_TABLES = [
    City.__table__,
    User.__table__,
    RoleAssignment.__table__,
    PortalSettings.__table__,
    BudgetLine.__table__,
    ActualLine.__table__,
    Transaction.__table__,
    RevenueLine.__table__,
    UploadLog.__table__,
]


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Generator[None, None, None]:
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
