"""Shared test fixtures.

Every test gets its own SQLite file database (same models and write paths
as production, grid proximity engine), a session factory bound to it, and
an httpx client talking to the FastAPI app in-process with the request
session and the rate limiter swapped out.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import sessionmaker

from geochat.database import create_db_engine, get_db
from geochat.main import app
from geochat.models.base import Base
from geochat.models.timeutil import utcnow
from geochat.models.user import User
from geochat.services.auth import issue_token
from geochat.services.rate_limit import rate_limit


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'geochat.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    # expire_on_commit=False: reading a fixture object must not open a (locking) transaction
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_user(session_factory):
    """Insert a committed (temporary, password-less) user and return its id."""

    def _make(user_id=None, nickname="tester"):
        user_id = user_id or f"u-{uuid.uuid4().hex[:12]}"
        with session_factory() as s:
            s.add(User(user_id=user_id, nickname=nickname, is_temporary=True, created_at=utcnow()))
            s.commit()
        return user_id

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


async def _no_rate_limit():
    return None


@pytest.fixture
async def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[rate_limit] = _no_rate_limit
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id, temporary=True):
        token, _ = issue_token(user_id, temporary=temporary)
        return {"Authorization": f"Bearer {token}"}

    return _headers
