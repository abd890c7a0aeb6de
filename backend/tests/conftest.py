"""
Shared test fixtures and configuration.

Environment variables are set BEFORE any app imports so the settings
singleton points at an in-memory SQLite database instead of PostgreSQL.
"""

import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests"
os.environ["REALTIME_DEBOUNCE_MS"] = "20"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi import WebSocketDisconnect  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from teamhub.api.v1.auth import create_access_token  # noqa: E402
from teamhub.config import get_settings  # noqa: E402
from teamhub.db.base import Base  # noqa: E402
from teamhub.db.session import build_engine, build_session_factory, get_session_factory  # noqa: E402
from teamhub.main import app  # noqa: E402
from teamhub.models import MemberRole, Task, Team, TeamMember  # noqa: E402
from teamhub.services.accounts import create_account  # noqa: E402

PASSWORD = "correct-horse-battery"


@pytest.fixture
async def engine():
    """Fresh in-memory database per test, one shared connection."""
    engine = build_engine(
        get_settings(),
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """HTTP client bound to the app with the test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_session_factory, None)


# ============================================================================
# Data helpers
# ============================================================================

async def make_user(session_factory, email: str, username: str | None = None):
    metadata = {"username": username} if username else {}
    async with session_factory() as session:
        user, _ = await create_account(session, email, PASSWORD, metadata)
        await session.commit()
    return user


async def make_team(
    session_factory,
    owner,
    name: str = "Eng",
    members=(),
    owner_row: bool = True,
) -> Team:
    """Team owned by ``owner``; ``members`` get plain member rows."""
    async with session_factory() as session:
        team = Team(name=name, owner_id=owner.id)
        session.add(team)
        await session.flush()
        if owner_row:
            session.add(TeamMember(team_id=team.id, user_id=owner.id, role=MemberRole.OWNER.value))
        for member in members:
            session.add(
                TeamMember(
                    team_id=team.id,
                    user_id=member.id,
                    role=MemberRole.MEMBER.value,
                    invited_by=owner.id,
                )
            )
        await session.commit()
    return team


async def make_task(session_factory, team, creator, title: str = "Write docs", **fields) -> Task:
    async with session_factory() as session:
        task = Task(team_id=team.id, title=title, created_by=creator.id, **fields)
        session.add(task)
        await session.commit()
    return task


def auth_headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def alice(session_factory):
    return await make_user(session_factory, "alice@example.com", "alice")


@pytest.fixture
async def bob(session_factory):
    return await make_user(session_factory, "bob@example.com", "bob")


@pytest.fixture
async def carol(session_factory):
    return await make_user(session_factory, "carol@example.com", "carol")


@pytest.fixture
async def eng(session_factory, alice, bob):
    """Team "Eng" owned by alice with bob as a member."""
    return await make_team(session_factory, alice, "Eng", members=[bob])


# ============================================================================
# WebSocket double
# ============================================================================

class FakeWebSocket:
    """Minimal stand-in for ``fastapi.WebSocket`` driven from the test."""

    def __init__(self):
        self.sent: asyncio.Queue = asyncio.Queue()
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.accepted = False
        self.close_code: int | None = None

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    async def send_json(self, data) -> None:
        await self.sent.put(data)

    async def receive_text(self) -> str:
        message = await self.incoming.get()
        if message is None:
            raise WebSocketDisconnect(1000)
        return message

    async def next_message(self, timeout: float = 1.0):
        return await asyncio.wait_for(self.sent.get(), timeout)

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)


@pytest.fixture
def fake_websocket():
    return FakeWebSocket()
