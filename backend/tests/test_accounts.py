"""Tests for account creation and profile bootstrap."""

import pytest
from sqlalchemy import func, select

from conftest import PASSWORD, make_user
from teamhub.exceptions import BootstrapError, ConstraintViolation
from teamhub.models import Profile, User
from teamhub.services.accounts import authenticate, create_account, derive_username


class TestDeriveUsername:
    def test_prefers_metadata(self):
        assert derive_username("ada@example.com", {"username": "  countess "}) == "countess"

    @pytest.mark.parametrize("metadata", [None, {}, {"username": "   "}, {"username": 42}])
    def test_falls_back_to_email_local_part(self, metadata):
        assert derive_username("ada.lovelace@example.com", metadata) == "ada.lovelace"


class TestCreateAccount:
    async def test_creates_exactly_one_profile(self, session_factory):
        user = await make_user(session_factory, "grace@example.com")

        async with session_factory() as session:
            profiles = (
                await session.execute(select(Profile).where(Profile.user_id == user.id))
            ).scalars().all()
        assert [p.username for p in profiles] == ["grace"]

    async def test_username_from_metadata(self, session_factory):
        user = await make_user(session_factory, "grace@example.com", "admiral")

        async with session_factory() as session:
            profile = (
                await session.execute(select(Profile).where(Profile.user_id == user.id))
            ).scalar_one()
        assert profile.username == "admiral"

    async def test_email_is_normalized(self, session_factory):
        user = await make_user(session_factory, "  Grace@Example.COM ")
        assert user.email == "grace@example.com"

    async def test_collision_aborts_the_whole_signup(self, session_factory, alice):
        async with session_factory() as session:
            with pytest.raises(BootstrapError) as exc_info:
                await create_account(session, "other@example.com", PASSWORD, {"username": "alice"})
            await session.rollback()

        assert exc_info.value.constraint == "uq_profiles_username"
        async with session_factory() as session:
            users = await session.scalar(
                select(func.count()).select_from(User).where(User.email == "other@example.com")
            )
        assert users == 0

    async def test_collision_via_email_fallback(self, session_factory, alice):
        # alice@elsewhere.org derives "alice", already taken
        async with session_factory() as session:
            with pytest.raises(BootstrapError):
                await create_account(session, "alice@elsewhere.org", PASSWORD)
            await session.rollback()

    async def test_retry_with_another_handle_succeeds(self, session_factory, alice):
        async with session_factory() as session:
            with pytest.raises(BootstrapError):
                await create_account(session, "alice@elsewhere.org", PASSWORD)
            await session.rollback()

        user = await make_user(session_factory, "alice@elsewhere.org", "alice-two")
        async with session_factory() as session:
            username = await session.scalar(
                select(Profile.username).where(Profile.user_id == user.id)
            )
        assert username == "alice-two"

    async def test_duplicate_email_rejected(self, session_factory, alice):
        async with session_factory() as session:
            with pytest.raises(ConstraintViolation) as exc_info:
                await create_account(session, "ALICE@example.com", PASSWORD, {"username": "x"})
            await session.rollback()
        assert exc_info.value.code == "UQ_USERS_EMAIL"

    def test_bootstrap_error_is_a_constraint_violation(self):
        assert issubclass(BootstrapError, ConstraintViolation)


class TestAuthenticate:
    async def test_valid_credentials(self, session_factory, alice):
        async with session_factory() as session:
            user = await authenticate(session, "Alice@Example.com", PASSWORD)
            await session.commit()
        assert user is not None
        assert user.id == alice.id
        assert user.last_login_at is not None

    async def test_wrong_password(self, session_factory, alice):
        async with session_factory() as session:
            assert await authenticate(session, "alice@example.com", "wrong-password") is None

    async def test_disabled_account(self, session_factory, alice):
        async with session_factory() as session:
            user = await session.get(User, alice.id)
            user.is_active = False
            await session.commit()

        async with session_factory() as session:
            assert await authenticate(session, "alice@example.com", PASSWORD) is None
