"""Session listeners turning ORM flushes into change events.

Changes are collected on flush and handed to the broker only after the
transaction commits. A rollback discards them, so subscribers never see a
change that did not persist.
"""

from collections import defaultdict
from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session

from teamhub.db.base import utcnow
from teamhub.models import Profile, Task, Team, TeamMember
from teamhub.realtime.broker import broker
from teamhub.realtime.events import ChangeEvent, ChangeType

PENDING_KEY = "teamhub.pending_changes"
PRE_AUDIENCE_KEY = "teamhub.pre_audience"

PUBLISHED_MODELS = (Profile, Team, TeamMember, Task)


def _published(objects: Iterable[Any]) -> list[Any]:
    return [obj for obj in objects if isinstance(obj, PUBLISHED_MODELS)]


def _team_id_of(obj: Any) -> UUID | None:
    if isinstance(obj, Team):
        return obj.id
    if isinstance(obj, (TeamMember, Task)):
        return obj.team_id
    return None


def _snapshot(obj: Any) -> dict[str, Any]:
    mapper = inspect(obj).mapper
    return {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}


def _old_snapshot(obj: Any) -> dict[str, Any]:
    state = inspect(obj)
    old = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            old[attr.key] = history.deleted[0]
        elif history.unchanged:
            old[attr.key] = history.unchanged[0]
        else:
            old[attr.key] = getattr(obj, attr.key)
    return old


def load_team_audiences(session: Session, team_ids: set[UUID]) -> dict[UUID, set[UUID]]:
    """Owner and member ids per team, read inside the current transaction."""
    audiences: dict[UUID, set[UUID]] = defaultdict(set)
    if not team_ids:
        return audiences
    connection = session.connection()
    owners = connection.execute(
        select(Team.id, Team.owner_id).where(Team.id.in_(team_ids))
    )
    for team_id, owner_id in owners:
        audiences[team_id].add(owner_id)
    members = connection.execute(
        select(TeamMember.team_id, TeamMember.user_id).where(TeamMember.team_id.in_(team_ids))
    )
    for team_id, user_id in members:
        audiences[team_id].add(user_id)
    return audiences


def _touched_team_ids(session: Session) -> set[UUID]:
    objects = _published(session.new) + _published(session.dirty) + _published(session.deleted)
    return {team_id for team_id in map(_team_id_of, objects) if team_id is not None}


@event.listens_for(Session, "before_flush")
def remember_audience_before_flush(session: Session, flush_context, instances) -> None:
    """Record who could read each touched team before the flush changes it."""
    team_ids = _touched_team_ids(session)
    if not team_ids:
        return
    remembered: dict[UUID, set[UUID]] = session.info.setdefault(PRE_AUDIENCE_KEY, {})
    missing = team_ids - remembered.keys()
    for team_id, users in load_team_audiences(session, missing).items():
        remembered[team_id] = users


@event.listens_for(Session, "after_flush")
def collect_changes(session: Session, flush_context) -> None:
    """Build change events for the rows written by this flush."""
    changes: list[tuple[ChangeType, Any]] = []
    changes.extend((ChangeType.INSERT, obj) for obj in _published(session.new))
    changes.extend(
        (ChangeType.UPDATE, obj)
        for obj in _published(session.dirty)
        if session.is_modified(obj, include_collections=False)
    )
    changes.extend((ChangeType.DELETE, obj) for obj in _published(session.deleted))
    if not changes:
        return

    team_ids = {team_id for team_id in (_team_id_of(obj) for _, obj in changes) if team_id}
    after = load_team_audiences(session, team_ids)
    before: dict[UUID, set[UUID]] = session.info.get(PRE_AUDIENCE_KEY, {})

    pending: list[ChangeEvent] = session.info.setdefault(PENDING_KEY, [])
    for change_type, obj in changes:
        team_id = _team_id_of(obj)
        if isinstance(obj, Profile):
            audience = {obj.user_id}
        else:
            audience = before.get(team_id, set()) | after.get(team_id, set())

        record = None if change_type is ChangeType.DELETE else _snapshot(obj)
        old_record = None if change_type is ChangeType.INSERT else _old_snapshot(obj)
        pending.append(
            ChangeEvent(
                table=obj.__tablename__,
                type=change_type,
                record=record,
                old_record=old_record,
                team_id=team_id,
                audience=frozenset(audience),
            )
        )


@event.listens_for(Session, "after_commit")
def publish_committed_changes(session: Session) -> None:
    pending: list[ChangeEvent] = session.info.pop(PENDING_KEY, [])
    session.info.pop(PRE_AUDIENCE_KEY, None)
    committed_at = utcnow()
    for change in pending:
        broker.publish(
            ChangeEvent(
                table=change.table,
                type=change.type,
                record=change.record,
                old_record=change.old_record,
                team_id=change.team_id,
                audience=change.audience,
                commit_timestamp=committed_at,
            )
        )


@event.listens_for(Session, "after_soft_rollback")
def discard_rolled_back_changes(session: Session, previous_transaction) -> None:
    session.info.pop(PENDING_KEY, None)
    session.info.pop(PRE_AUDIENCE_KEY, None)
