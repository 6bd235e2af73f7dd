from sqlalchemy import func, select

from app.models import Follow
from app.services.social_graph import COLD_START, COLLABORATIVE, suggest_user_ids

from factories import follow, ids


async def _suggestions(user, **params) -> list[str]:
    response = await user.client.get("/api/users/me/user-suggestions", params=params)
    assert response.status_code == 200, response.text
    return ids(response.json())


async def test_collaborative_ranking_with_id_tie_break(make_user, session_factory):
    viewer = await make_user("viewer")
    a = await make_user("a")
    b = await make_user("b")
    c = await make_user("c")
    d = await make_user("d")
    e = await make_user("e")

    await follow(viewer, a)
    await follow(viewer, b)
    await follow(a, c)
    await follow(b, c)
    await follow(a, d)
    await follow(b, e)
    # Edges pointing at the viewer or at existing followees never surface
    await follow(a, viewer)
    await follow(a, b)

    expected = [c.id] + sorted([d.id, e.id])
    assert await _suggestions(viewer) == expected

    async with session_factory() as db:
        result = await suggest_user_ids(db, viewer.id)
    assert result.strategy == COLLABORATIVE
    assert result.user_ids == expected


async def test_cold_start_lists_everyone_but_viewer(make_user, session_factory):
    viewer = await make_user("viewer")
    others = [await make_user(f"u{i}") for i in range(4)]

    suggested = await _suggestions(viewer)
    # Oldest account first
    assert suggested == [u.id for u in others]
    assert viewer.id not in suggested

    async with session_factory() as db:
        result = await suggest_user_ids(db, viewer.id)
    assert result.strategy == COLD_START


async def test_cold_start_when_followees_follow_nobody_new(make_user):
    viewer = await make_user("viewer")
    a = await make_user("a")
    x = await make_user("x")
    y = await make_user("y")

    await follow(viewer, a)
    await follow(a, viewer)

    assert await _suggestions(viewer) == [x.id, y.id]


async def test_suggestions_paginate_over_ranked_ids(make_user):
    viewer = await make_user("viewer")
    others = [await make_user(f"u{i}") for i in range(5)]

    first = await _suggestions(viewer, skip=0, limit=2)
    second = await _suggestions(viewer, skip=2, limit=2)
    assert first == [others[0].id, others[1].id]
    assert second == [others[2].id, others[3].id]


async def test_follow_rules(make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    response = await alice.client.post(f"/api/users/{alice.username}/follow")
    assert response.status_code == 400

    response = await alice.client.post("/api/users/ghost/follow")
    assert response.status_code == 404

    body = await follow(alice, bob)
    assert body["follow"]["followerId"] == alice.id
    assert body["follow"]["followingId"] == bob.id

    response = await alice.client.post(f"/api/users/{bob.username}/follow")
    assert response.status_code == 400
    assert response.json()["detail"] == "Already following"

    response = await alice.client.delete(f"/api/users/{bob.username}/unfollow")
    assert response.status_code == 200

    response = await alice.client.delete(f"/api/users/{bob.username}/unfollow")
    assert response.status_code == 404

    # Follow → unfollow leaves the graph as it was; following again works
    await follow(alice, bob)


async def test_follower_counts_match_follow_rows(make_user, anon_client, session_factory):
    hub = await make_user("hub")
    fans = [await make_user(f"fan{i}") for i in range(3)]
    for fan in fans:
        await follow(fan, hub)
    await follow(hub, fans[0])

    profile = (await anon_client.get(f"/api/users/{hub.username}")).json()

    async with session_factory() as db:
        followers = await db.scalar(
            select(func.count()).select_from(Follow).where(Follow.following_id == hub.id)
        )
        followings = await db.scalar(
            select(func.count()).select_from(Follow).where(Follow.follower_id == hub.id)
        )

    assert profile["followersCount"] == followers == 3
    assert profile["followingsCount"] == followings == 1

    listed = await anon_client.get(f"/api/users/{hub.username}/followers")
    assert sorted(ids(listed.json())) == sorted(f.id for f in fans)

    listed = await anon_client.get(f"/api/users/{hub.username}/followings")
    assert ids(listed.json()) == [fans[0].id]
