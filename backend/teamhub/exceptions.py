"""TeamHub exceptions.

Domain errors raised by the service layer and rendered by the exception
handlers registered in ``teamhub.main``.
"""

import re

from sqlalchemy.exc import IntegrityError


class TeamHubError(Exception):
    """Base exception for TeamHub errors."""

    def __init__(self, message: str, code: str = "TEAMHUB_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class PolicyDenied(TeamHubError):
    """A row-level policy rejected the operation.

    The rendered response never says which predicate failed.
    """

    def __init__(self, table: str, operation: str):
        self.table = table
        self.operation = operation
        super().__init__(message="Permission denied", code="POLICY_DENIED")


class ConstraintViolation(TeamHubError):
    """A uniqueness, foreign key or check constraint rejected a write."""

    MESSAGES = {
        "uq_profiles_username": "Username is already taken",
        "uq_profiles_user_id": "Profile already exists for this user",
        "uq_users_email": "An account with this email already exists",
        "uq_team_members_team_user": "User is already a member of this team",
        "ck_team_members_role": "Invalid member role",
        "ck_tasks_status": "Invalid task status",
        "ck_tasks_priority": "Invalid task priority",
        "foreign_key": "Referenced row does not exist",
    }

    def __init__(self, constraint: str, message: str | None = None):
        self.constraint = constraint
        super().__init__(
            message=message or self.MESSAGES.get(constraint, "Constraint violation"),
            code=constraint.upper(),
        )


class BootstrapError(ConstraintViolation):
    """Profile bootstrap failed while creating an account.

    Propagates so the signup is rolled back and can be retried with another
    username.
    """


# Column sets reported by SQLite ("UNIQUE constraint failed: profiles.username")
_SQLITE_UNIQUE = {
    frozenset({"profiles.username"}): "uq_profiles_username",
    frozenset({"profiles.user_id"}): "uq_profiles_user_id",
    frozenset({"users.email"}): "uq_users_email",
    frozenset({"team_members.team_id", "team_members.user_id"}): "uq_team_members_team_user",
}

_KNOWN_NAMES = re.compile(r"\b(uq|ck|fk)_[a-z_]+\b")


def translate_integrity_error(exc: IntegrityError) -> ConstraintViolation:
    """Map a database IntegrityError to a ConstraintViolation naming the constraint."""
    orig = getattr(exc, "orig", None)

    # asyncpg exposes the constraint name directly
    constraint_name = getattr(orig, "constraint_name", None)
    if constraint_name is None and orig is not None:
        constraint_name = getattr(getattr(orig, "__cause__", None), "constraint_name", None)
    if constraint_name:
        if constraint_name.startswith("fk_") or constraint_name.endswith("_fkey"):
            return ConstraintViolation("foreign_key")
        return ConstraintViolation(constraint_name)

    text = str(orig if orig is not None else exc)

    if "FOREIGN KEY constraint failed" in text:
        return ConstraintViolation("foreign_key")

    if "UNIQUE constraint failed:" in text:
        columns = text.split("UNIQUE constraint failed:", 1)[1]
        key = frozenset(c.strip() for c in columns.split(","))
        if key in _SQLITE_UNIQUE:
            return ConstraintViolation(_SQLITE_UNIQUE[key])

    match = _KNOWN_NAMES.search(text)
    if match:
        return ConstraintViolation(match.group(0))

    return ConstraintViolation("integrity_error")
