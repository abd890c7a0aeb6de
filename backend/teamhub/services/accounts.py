"""Account creation and profile bootstrap.

Signing up creates the ``users`` row and its ``profiles`` row in one
transaction. If the profile cannot be created (for example the username is
taken) the account is not created either, and the caller may retry with a
different username.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teamhub.exceptions import BootstrapError, ConstraintViolation, translate_integrity_error
from teamhub.models import Profile, User

logger = structlog.get_logger()

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def derive_username(email: str, metadata: dict[str, Any] | None) -> str:
    """Username from signup metadata, else the local part of the email."""
    requested = (metadata or {}).get("username")
    if isinstance(requested, str) and requested.strip():
        return requested.strip()
    return email.split("@", 1)[0]


async def bootstrap_profile(db: AsyncSession, user: User) -> Profile:
    """Insert the profile row for a freshly created account.

    Runs with service privileges: the new identity has no grants yet, so the
    profile policy is not consulted here.

    Raises:
        BootstrapError: if the profile row cannot be inserted
    """
    username = derive_username(user.email, user.user_metadata)
    if not username:
        raise BootstrapError("ck_profiles_username_not_empty", "Username cannot be empty")

    taken = await db.execute(select(Profile.id).where(Profile.username == username))
    if taken.first() is not None:
        raise BootstrapError("uq_profiles_username")

    profile = Profile(user_id=user.id, username=username)
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError as e:
        violation = translate_integrity_error(e)
        raise BootstrapError(violation.constraint, violation.message) from e

    logger.info("profile_bootstrapped", user_id=str(user.id), username=username)
    return profile


async def create_account(
    db: AsyncSession,
    email: str,
    password: str,
    metadata: dict[str, Any] | None = None,
) -> tuple[User, Profile]:
    """Create an account and bootstrap its profile in the current transaction.

    The caller commits. Any failure leaves nothing behind once the
    transaction is rolled back.
    """
    email = email.strip().lower()
    existing = await db.execute(select(User.id).where(func.lower(User.email) == email))
    if existing.first() is not None:
        raise ConstraintViolation("uq_users_email")

    user = User(
        email=email,
        password_hash=get_password_hash(password),
        user_metadata=dict(metadata or {}),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e

    profile = await bootstrap_profile(db, user)
    logger.info("account_created", user_id=str(user.id))
    return user, profile


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the active user for the credentials, or None."""
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = datetime.now(timezone.utc)
    return user
