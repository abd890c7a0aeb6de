"""WebSocket endpoints for real-time updates.

``/ws/changes`` streams committed row changes the user may read.
``/ws/dashboard`` pushes the user's team overview and re-sends it, debounced,
whenever a team, membership or task they can see changes.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from teamhub.api.v1.auth import decode_token, load_active_user
from teamhub.config import get_settings
from teamhub.db.session import get_session_factory
from teamhub.realtime import PUBLISHED_TABLES, Debouncer, Subscription, broker
from teamhub.services.team_overview import list_team_overviews

router = APIRouter(prefix="/ws", tags=["websocket"])
logger = structlog.get_logger()
settings = get_settings()

DASHBOARD_TABLES = frozenset({"teams", "team_members", "tasks"})


class ConnectionManager:
    """Tracks open WebSocket connections per user."""

    def __init__(self):
        # Map of user_id -> open connections (a user may have several tabs)
        self.user_connections: dict[UUID, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: UUID) -> None:
        """Accept and register a websocket connection."""
        await websocket.accept()
        self.user_connections.setdefault(user_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, user_id: UUID) -> None:
        """Unregister a websocket connection."""
        connections = self.user_connections.get(user_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.user_connections[user_id]

    def connection_count(self, user_id: UUID | None = None) -> int:
        if user_id is not None:
            return len(self.user_connections.get(user_id, ()))
        return sum(len(connections) for connections in self.user_connections.values())


# Global connection manager instance
manager = ConnectionManager()


# ============================================================================
# Helper functions
# ============================================================================

def parse_tables(tables: str | None) -> frozenset[str] | None:
    """Parse the comma separated ``tables`` query parameter.

    ``None`` subscribes to every published table. Unknown names raise
    ValueError.
    """
    if not tables:
        return None
    requested = frozenset(name.strip() for name in tables.split(",") if name.strip())
    unknown = requested - PUBLISHED_TABLES
    if unknown:
        raise ValueError(f"Unknown tables: {', '.join(sorted(unknown))}")
    return requested or None


async def authenticate_websocket(
    token: str | None,
    session_factory: async_sessionmaker[AsyncSession],
) -> UUID | None:
    """Resolve the ``token`` query parameter to an active user id."""
    user_id = decode_token(token, "access") if token else None
    if user_id is None:
        return None
    async with session_factory() as session:
        user = await load_active_user(session, user_id)
    return user.id if user else None


async def dashboard_snapshot(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: UUID,
) -> dict[str, Any]:
    """Current team overview for ``user_id`` as a WebSocket message."""
    async with session_factory() as session:
        overviews = await list_team_overviews(session, user_id)
    return jsonable_encoder(
        {
            "type": "dashboard",
            "payload": {"teams": [overview.to_dict() for overview in overviews]},
        }
    )


def error_message(message: str) -> dict[str, Any]:
    return {"type": "error", "payload": {"message": message, "retryable": True}}


async def _receive_messages(
    websocket: WebSocket,
    handlers: dict[str, Callable[[], Awaitable[None]]],
) -> None:
    """Answer client messages until the client disconnects."""
    while True:
        data = await websocket.receive_text()
        try:
            message = json.loads(data)
        except ValueError:
            await websocket.send_json(error_message("Invalid JSON"))
            continue
        message_type = message.get("type") if isinstance(message, dict) else None

        if message_type == "ping":
            await websocket.send_json({"type": "pong"})
        elif message_type in handlers:
            await handlers[message_type]()


async def _serve(
    websocket: WebSocket,
    producer: Coroutine[Any, Any, None],
    handlers: dict[str, Callable[[], Awaitable[None]]] | None = None,
) -> None:
    """Run ``producer`` alongside the receive loop until either one ends."""
    tasks = {
        asyncio.create_task(_receive_messages(websocket, handlers or {})),
        asyncio.create_task(producer),
    }
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            logger.warning("websocket_closed_with_error", error=str(exc))


async def _forward_changes(websocket: WebSocket, subscription: Subscription) -> None:
    async for change in subscription:
        await websocket.send_json(change.to_message())


# ============================================================================
# Endpoints
# ============================================================================

@router.websocket("/changes")
async def changes_endpoint(
    websocket: WebSocket,
    token: str | None = Query(None),
    tables: str | None = Query(None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Stream committed changes to rows the user may read.

    Query parameters:
    - token: Required. Access token of the connecting user.
    - tables: Optional. Comma separated subset of profiles, teams,
      team_members and tasks.
    """
    user_id = await authenticate_websocket(token, session_factory)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        table_filter = parse_tables(tables)
    except ValueError:
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
        return

    await manager.connect(websocket, user_id)
    subscription = broker.subscribe(user_id, table_filter)
    logger.info("Realtime channel opened", user_id=str(user_id), tables=sorted(subscription.tables))
    try:
        await websocket.send_json(
            {"type": "subscribed", "payload": {"tables": sorted(subscription.tables)}}
        )
        await _serve(websocket, _forward_changes(websocket, subscription))
    finally:
        subscription.close()
        manager.disconnect(websocket, user_id)
        logger.info("Realtime channel closed", user_id=str(user_id))


@router.websocket("/dashboard")
async def dashboard_endpoint(
    websocket: WebSocket,
    token: str | None = Query(None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Live team overview.

    Sends ``{"type": "dashboard"}`` on connect and after every burst of
    relevant changes. A failed load sends a retryable error; the client may
    retry with ``{"type": "refresh"}``.
    """
    user_id = await authenticate_websocket(token, session_factory)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, user_id)
    subscription = broker.subscribe(user_id, DASHBOARD_TABLES)

    async def refresh() -> None:
        try:
            message = await dashboard_snapshot(session_factory, user_id)
        except SQLAlchemyError:
            logger.exception("dashboard_refresh_failed", user_id=str(user_id))
            message = error_message("Failed to load teams")
        await websocket.send_json(message)

    debouncer = Debouncer(settings.realtime_debounce_ms / 1000, refresh)

    async def request_refresh() -> None:
        debouncer.trigger()

    async def watch_changes() -> None:
        async for _ in subscription:
            debouncer.trigger()

    try:
        await refresh()
        await _serve(websocket, watch_changes(), handlers={"refresh": request_refresh})
    finally:
        await debouncer.aclose()
        subscription.close()
        manager.disconnect(websocket, user_id)
