"""Tests for access predicates and the per-table policies."""

import uuid
from typing import Any, get_type_hints

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_task, make_team, make_user
from teamhub.exceptions import PolicyDenied
from teamhub.models import Profile, Task, Team, TeamMember
from teamhub.services.access_control import (
    POLICIES,
    Operation,
    get_visible,
    has_team_access,
    is_team_member,
    is_team_owner,
    policy_for,
    scoped_select,
)


async def _visible_ids(db, model, actor_id):
    result = await db.execute(scoped_select(model, actor_id))
    return {row.id for row in result.scalars().all()}


class TestPredicates:
    async def test_member_iff_membership_row_exists(self, db, eng, alice, bob, carol):
        assert await is_team_member(db, bob.id, eng.id) is True
        assert await is_team_member(db, alice.id, eng.id) is True
        assert await is_team_member(db, carol.id, eng.id) is False

    async def test_unknown_team_is_false_not_error(self, db, alice):
        missing = uuid.uuid4()
        assert await is_team_member(db, alice.id, missing) is False
        assert await is_team_owner(db, alice.id, missing) is False
        assert await has_team_access(db, alice.id, missing) is False

    async def test_owner_predicate(self, db, eng, alice, bob):
        assert await is_team_owner(db, alice.id, eng.id) is True
        assert await is_team_owner(db, bob.id, eng.id) is False

    async def test_owner_without_membership_row_still_has_access(self, session_factory, db, carol):
        team = await make_team(session_factory, carol, "Solo", owner_row=False)

        assert await is_team_member(db, carol.id, team.id) is False
        assert await is_team_owner(db, carol.id, team.id) is True
        assert await has_team_access(db, carol.id, team.id) is True

    async def test_membership_removal_is_observed(self, session_factory, db, eng, bob):
        async with session_factory() as session:
            membership = (
                await session.execute(
                    scoped_select(TeamMember, bob.id).where(TeamMember.user_id == bob.id)
                )
            ).scalar_one()
            await session.delete(membership)
            await session.commit()

        assert await is_team_member(db, bob.id, eng.id) is False


class TestSelectPolicies:
    async def test_profiles_only_own_row(self, db, alice, bob):
        visible = (await db.execute(scoped_select(Profile, alice.id))).scalars().all()
        assert [p.user_id for p in visible] == [alice.id]

    async def test_teams_visible_to_owner_and_members(self, session_factory, db, eng, alice, bob, carol):
        solo = await make_team(session_factory, carol, "Solo", owner_row=False)

        assert await _visible_ids(db, Team, alice.id) == {eng.id}
        assert await _visible_ids(db, Team, bob.id) == {eng.id}
        assert await _visible_ids(db, Team, carol.id) == {solo.id}

    async def test_tasks_hidden_from_outsiders(self, session_factory, db, eng, alice, bob, carol):
        task = await make_task(session_factory, eng, alice)

        assert await _visible_ids(db, Task, bob.id) == {task.id}
        assert await _visible_ids(db, Task, carol.id) == set()

    async def test_memberships_visible_to_team_only(self, db, eng, alice, bob, carol):
        assert len(await _visible_ids(db, TeamMember, alice.id)) == 2
        assert len(await _visible_ids(db, TeamMember, bob.id)) == 2
        assert await _visible_ids(db, TeamMember, carol.id) == set()

    async def test_anonymous_sees_nothing(self, db, eng):
        assert await _visible_ids(db, Team, None) == set()

    async def test_get_visible_returns_none_for_hidden_row(self, db, eng, carol):
        assert await get_visible(db, Team, carol.id, eng.id) is None

    async def test_loading_a_team_leaves_members_unloaded(self, db, eng, alice):
        team = await get_visible(db, Team, alice.id, eng.id)

        assert team is not None
        assert "members" in inspect(team).unloaded


class TestTeamPolicy:
    async def test_insert_requires_actor_as_owner(self, db, alice, bob):
        policy = policy_for(Team)
        assert await policy.check(db, alice.id, Operation.INSERT, Team(name="X", owner_id=alice.id))
        assert not await policy.check(db, alice.id, Operation.INSERT, Team(name="X", owner_id=bob.id))

    @pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE])
    async def test_only_owner_manages(self, db, eng, alice, bob, operation):
        policy = policy_for(Team)
        assert await policy.check(db, alice.id, operation, eng)
        assert not await policy.check(db, bob.id, operation, eng)

    async def test_owner_cannot_be_reassigned(self, db, eng, alice, bob):
        assert not await policy_for(Team).check(
            db, alice.id, Operation.UPDATE, eng, {"owner_id": bob.id}
        )


class TestTeamMemberPolicy:
    async def test_non_owner_cannot_add_someone_else(self, session_factory, db, eng, bob, carol):
        dave = await make_user(session_factory, "dave@example.com")
        row = TeamMember(team_id=eng.id, user_id=dave.id)

        # Existing member and outsider alike
        assert not await policy_for(TeamMember).check(db, bob.id, Operation.INSERT, row)
        assert not await policy_for(TeamMember).check(db, carol.id, Operation.INSERT, row)

    async def test_self_join_allowed(self, db, eng, carol):
        row = TeamMember(team_id=eng.id, user_id=carol.id)
        assert await policy_for(TeamMember).check(db, carol.id, Operation.INSERT, row)

    async def test_owner_adds_members(self, db, eng, alice, carol):
        row = TeamMember(team_id=eng.id, user_id=carol.id)
        assert await policy_for(TeamMember).check(db, alice.id, Operation.INSERT, row)

    @pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE])
    async def test_only_owner_updates_and_removes(self, db, eng, alice, bob, operation):
        membership = (
            await db.execute(scoped_select(TeamMember, alice.id).where(TeamMember.user_id == bob.id))
        ).scalar_one()
        policy = policy_for(TeamMember)

        assert await policy.check(db, alice.id, operation, membership)
        assert not await policy.check(db, bob.id, operation, membership)


class TestTaskPolicy:
    async def test_member_inserts_as_self(self, db, eng, bob):
        row = Task(team_id=eng.id, title="T", created_by=bob.id)
        assert await policy_for(Task).check(db, bob.id, Operation.INSERT, row)

    async def test_forged_creator_rejected(self, db, eng, bob, carol):
        row = Task(team_id=eng.id, title="T", created_by=carol.id)
        assert not await policy_for(Task).check(db, bob.id, Operation.INSERT, row)

    async def test_outsider_cannot_insert(self, db, eng, carol):
        row = Task(team_id=eng.id, title="T", created_by=carol.id)
        assert not await policy_for(Task).check(db, carol.id, Operation.INSERT, row)

    async def test_owner_without_row_inserts(self, session_factory, db, carol):
        team = await make_team(session_factory, carol, "Solo", owner_row=False)
        row = Task(team_id=team.id, title="T", created_by=carol.id)
        assert await policy_for(Task).check(db, carol.id, Operation.INSERT, row)

    async def test_any_member_updates_only_owner_deletes(self, session_factory, db, eng, alice, bob, carol):
        task = await make_task(session_factory, eng, alice)
        policy = policy_for(Task)

        assert await policy.check(db, bob.id, Operation.UPDATE, task, {"status": "done"})
        assert not await policy.check(db, carol.id, Operation.UPDATE, task, {"status": "done"})
        assert await policy.check(db, alice.id, Operation.DELETE, task)
        assert not await policy.check(db, bob.id, Operation.DELETE, task)

    async def test_team_and_creator_are_immutable(self, session_factory, db, eng, alice, bob):
        task = await make_task(session_factory, eng, alice)
        policy = policy_for(Task)

        assert not await policy.check(db, alice.id, Operation.UPDATE, task, {"team_id": uuid.uuid4()})
        assert not await policy.check(db, alice.id, Operation.UPDATE, task, {"created_by": bob.id})
        # Unchanged values are fine
        assert await policy.check(db, alice.id, Operation.UPDATE, task, {"team_id": eng.id})


class TestProfilePolicy:
    async def test_own_profile_only(self, db, alice, bob):
        profiles = {
            p.user_id: p for p in (await db.execute(scoped_select(Profile, alice.id))).scalars()
        }
        own = profiles[alice.id]
        policy = policy_for(Profile)

        assert await policy.check(db, alice.id, Operation.UPDATE, own, {"username": "ally"})
        assert not await policy.check(db, bob.id, Operation.UPDATE, own, {"username": "ally"})
        assert not await policy.check(db, alice.id, Operation.UPDATE, own, {"user_id": bob.id})
        assert not await policy.check(db, alice.id, Operation.DELETE, own)

    async def test_insert_for_self_only(self, db, alice, bob):
        policy = policy_for(Profile)
        assert await policy.check(db, alice.id, Operation.INSERT, Profile(user_id=alice.id, username="a2"))
        assert not await policy.check(db, alice.id, Operation.INSERT, Profile(user_id=bob.id, username="b2"))


class TestEnforce:
    async def test_raises_generic_denial(self, db, eng, bob):
        with pytest.raises(PolicyDenied) as exc_info:
            await policy_for(Team).enforce(db, bob.id, Operation.DELETE, eng)

        assert exc_info.value.message == "Permission denied"
        assert exc_info.value.code == "POLICY_DENIED"
        assert exc_info.value.table == "teams"

    def test_every_published_table_has_a_policy(self):
        assert set(POLICIES) == {"profiles", "teams", "team_members", "tasks"}


@pytest.mark.parametrize("table", sorted(POLICIES))
@pytest.mark.parametrize("method", ["can_insert", "can_update", "can_delete"])
def test_write_checks_share_one_signature(table, method):
    hints = get_type_hints(getattr(POLICIES[table], method))
    assert hints == {"db": AsyncSession, "actor_id": uuid.UUID, "row": Any, "return": bool}
