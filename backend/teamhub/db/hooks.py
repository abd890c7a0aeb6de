"""Session hooks that replace row triggers.

Listeners are attached to the ``Session`` class, so they run for every ORM
flush, including flushes issued through ``AsyncSession``, inside the writing
transaction.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from teamhub.db.base import as_utc, utcnow
from teamhub.models import Profile, Task, Team

TIMESTAMPED_MODELS = (Profile, Team, Task)


def _previous_updated_at(obj):
    history = inspect(obj).attrs.updated_at.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(Session, "before_flush")
def touch_updated_at(session: Session, flush_context, instances) -> None:
    """Refresh updated_at on every modified timestamped row.

    Caller-supplied values are overwritten; the new value never moves
    backwards even if the clock does.
    """
    now = utcnow()
    for obj in session.dirty:
        if not isinstance(obj, TIMESTAMPED_MODELS):
            continue
        if not session.is_modified(obj, include_collections=False):
            continue
        previous = _previous_updated_at(obj)
        obj.updated_at = max(now, as_utc(previous)) if previous is not None else now
