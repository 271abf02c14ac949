"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test
- Actor fixtures (admin, agent, user)
- HTTPX AsyncClient with get_db overridden
"""
import os
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session, sessionmaker

# Keep the module-level engine off disk
os.environ["DATABASE_URL"] = "sqlite://"

from ticketflow.main import app
from ticketflow.core.deps import get_db
from ticketflow.db.base import Base
from ticketflow.db.enums import AuthorType, TicketType
from ticketflow.db.session import create_db_engine
from ticketflow.schemas.tickets import Actor, TicketCreate
from ticketflow.services import ticket_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a private in-memory database.

    Service code commits and rolls back for real; the database is dropped
    with the engine at the end of the test.
    """
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()

    yield session

    session.close()
    engine.dispose()


# =============================================================================
# Actor Fixtures
# =============================================================================

@pytest.fixture
def admin() -> Actor:
    return Actor(type=AuthorType.ADMIN, name="Alice Admin")


@pytest.fixture
def agent() -> Actor:
    return Actor(type=AuthorType.AGENT, name="Triage Bot")


@pytest.fixture
def reporter() -> Actor:
    return Actor(type=AuthorType.USER, name="Uma User")


def _create_ticket(db: Session, actor: Actor, **overrides):
    payload = {
        "ticket_type": TicketType.BUG,
        "title": "Login fails",
        "description": "Clicking sign in does nothing",
        "reporter_id": "u1",
        "reporter_name": "Uma User",
    }
    payload.update(overrides)
    return ticket_service.create_ticket(db, TicketCreate(**payload), actor)


@pytest.fixture
def make_ticket(db: Session, reporter: Actor):
    """Factory creating tickets with sensible defaults."""

    def _make(actor: Actor | None = None, **overrides):
        return _create_ticket(db, actor or reporter, **overrides)

    return _make


@pytest.fixture
def ticket(make_ticket):
    return make_ticket()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient bound to the test database, no actor headers.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
