"""End-to-end collaboration flows over the HTTP API."""

from conftest import auth_headers, make_task

API = "/api/v1"


async def test_creating_a_team_makes_the_creator_its_only_member(client, alice):
    response = await client.post(f"{API}/teams/", json={"name": "Eng"}, headers=auth_headers(alice))

    team = response.json()
    assert team["is_owner"] is True
    assert (team["member_count"], team["task_count"]) == (1, 0)


async def test_non_member_reads_no_tasks(client, session_factory, alice, bob):
    team = (
        await client.post(f"{API}/teams/", json={"name": "Eng"}, headers=auth_headers(alice))
    ).json()
    await client.post(
        f"{API}/tasks/",
        json={"team_id": team["id"], "title": "Secret roadmap"},
        headers=auth_headers(alice),
    )

    response = await client.get(
        f"{API}/tasks/", params={"team_id": team["id"]}, headers=auth_headers(bob)
    )

    assert response.status_code == 200
    assert response.json() == []


async def test_invited_member_reads_team_tasks(client, alice, bob):
    team = (
        await client.post(f"{API}/teams/", json={"name": "Eng"}, headers=auth_headers(alice))
    ).json()
    await client.post(
        f"{API}/tasks/",
        json={"team_id": team["id"], "title": "Roadmap"},
        headers=auth_headers(alice),
    )

    invite = await client.post(
        f"{API}/teams/{team['id']}/members",
        json={"user_id": str(bob.id), "role": "member"},
        headers=auth_headers(alice),
    )
    tasks = await client.get(
        f"{API}/tasks/", params={"team_id": team["id"]}, headers=auth_headers(bob)
    )

    assert invite.status_code == 201
    assert [t["title"] for t in tasks.json()] == ["Roadmap"]


async def test_member_cannot_forge_task_creator(client, eng, bob, carol):
    response = await client.post(
        f"{API}/tasks/",
        json={"team_id": str(eng.id), "title": "Blame carol", "created_by": str(carol.id)},
        headers=auth_headers(bob),
    )

    assert response.status_code == 403
    listing = await client.get(f"{API}/tasks/", headers=auth_headers(bob))
    assert listing.json() == []


async def test_only_owner_deletes_tasks(client, session_factory, eng, alice, bob):
    first = await make_task(session_factory, eng, alice, title="First")
    second = await make_task(session_factory, eng, alice, title="Second")

    by_owner = await client.delete(f"{API}/tasks/{first.id}", headers=auth_headers(alice))
    by_member = await client.delete(f"{API}/tasks/{second.id}", headers=auth_headers(bob))

    assert by_owner.status_code == 204
    assert by_member.status_code == 403
    remaining = await client.get(f"{API}/tasks/", headers=auth_headers(bob))
    assert [t["title"] for t in remaining.json()] == ["Second"]
