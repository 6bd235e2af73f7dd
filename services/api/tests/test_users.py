from sqlalchemy import func, select

from app.models import Follow, Session, User

from factories import PASSWORD, PNG_BYTES, create_post, follow, ids


async def test_update_me_allow_list(make_user):
    alice = await make_user("alice")

    response = await alice.client.patch(
        "/api/users/me", json={"bio": "hello there", "email": "New.Mail@Example.com"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["bio"] == "hello there"
    assert body["email"] == "new.mail@example.com"

    for payload in ({"passwordHash": "x"}, {"id": "other"}, {"createdAt": "2020-01-01"}):
        response = await alice.client.patch("/api/users/me", json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    response = await alice.client.patch("/api/users/me", json={"name": None})
    assert response.status_code == 400


async def test_update_me_keeps_usernames_unique(make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    response = await alice.client.patch("/api/users/me", json={"username": bob.username})
    assert response.status_code == 400

    # Re-submitting one's own username is not a conflict
    response = await alice.client.patch("/api/users/me", json={"username": alice.username})
    assert response.status_code == 200

    response = await alice.client.patch("/api/users/me", json={"username": "Alice_Renamed"})
    assert response.status_code == 200
    assert response.json()["username"] == "alice_renamed"


async def test_public_profile(make_user, anon_client):
    alice = await make_user("alice")
    await create_post(alice)

    response = await anon_client.get(f"/api/users/{alice.username.upper()}")
    assert response.status_code == 200
    profile = response.json()
    assert profile["postsCount"] == 1
    assert "passwordHash" not in profile

    response = await anon_client.get("/api/users/nobody_here")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


async def test_user_posts_newest_first_with_optional_viewer(make_user, anon_client):
    author = await make_user("author")
    fan = await make_user("fan")
    old = await create_post(author, "old")
    new = await create_post(author, "new")
    await fan.client.post(f"/api/posts/{old['id']}/like")

    anonymous = (await anon_client.get(f"/api/users/{author.username}/posts")).json()
    assert ids(anonymous) == [new["id"], old["id"]]
    assert not any(p["isLiked"] for p in anonymous)

    as_fan = (await fan.client.get(f"/api/users/{author.username}/posts")).json()
    assert [p["isLiked"] for p in as_fan] == [False, True]


async def test_search_is_case_insensitive(make_user, anon_client):
    await make_user("x", name="Grace Hopper", username="ghopper")
    await make_user("y", name="Ada Lovelace", username="countess")
    await make_user("z", name="Alan Turing", username="grace_fan")

    response = await anon_client.get("/api/users/search", params={"q": "GRACE"})
    assert response.status_code == 200
    assert [u["username"] for u in response.json()] == ["ghopper", "grace_fan"]

    response = await anon_client.get("/api/users/search", params={"q": "count"})
    assert [u["username"] for u in response.json()] == ["countess"]

    response = await anon_client.get("/api/users/search", params={"q": "%"})
    assert response.json() == []

    response = await anon_client.get("/api/users/search")
    assert response.status_code == 400

    # Whitespace is not a wildcard
    response = await anon_client.get("/api/users/search", params={"q": "   "})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"


async def test_avatar_upload_replaces_previous(make_user, fake_s3):
    alice = await make_user("alice")
    files = {"image": ("me.png", PNG_BYTES, "image/png")}

    first = await alice.client.post("/api/users/me/avatar", files=files)
    assert first.status_code == 200
    [first_key] = fake_s3.objects
    assert first_key.startswith("avatars/")
    assert first.json()["avatarUrl"].endswith(f"X-Amz-Expires={7 * 24 * 3600}")

    second = await alice.client.post("/api/users/me/avatar", files=files)
    assert second.status_code == 200
    assert first_key in fake_s3.deleted
    assert len(fake_s3.objects) == 1

    response = await alice.client.post(
        "/api/users/me/avatar", files={"image": ("a.txt", b"text", "text/plain")}
    )
    assert response.status_code == 400


async def test_delete_me_cascades(make_user, anon_client, session_factory, fake_s3):
    doomed = await make_user("doomed")
    friend = await make_user("friend")
    token = doomed.client.cookies.get("token")

    await follow(doomed, friend)
    await follow(friend, doomed)
    friend_post = await create_post(friend)
    own_post = await create_post(doomed, image=PNG_BYTES)
    await doomed.client.post("/api/users/me/avatar", files={"image": ("a.png", PNG_BYTES, "image/png")})

    url = f"/api/posts/{friend_post['id']}"
    await doomed.client.post(f"{url}/like")
    await doomed.client.post(f"{url}/save")
    await doomed.client.post(f"{url}/comment", json={"text": "one"})
    await doomed.client.post(f"{url}/comment", json={"text": "two"})
    await friend.client.post(f"{url}/like")

    response = await doomed.client.delete("/api/users/me")
    assert response.status_code == 200

    seen = (await friend.client.get(url)).json()
    assert seen["likesCount"] == 1
    assert seen["commentsCount"] == 0

    profile = (await anon_client.get(f"/api/users/{friend.username}")).json()
    assert profile["followersCount"] == 0
    assert profile["followingsCount"] == 0
    assert (await anon_client.get(f"/api/users/{doomed.username}")).status_code == 404
    assert (await friend.client.get(f"/api/posts/{own_post['id']}")).status_code == 404

    async with session_factory() as db:
        assert await db.get(User, doomed.id) is None
        edges = await db.scalar(
            select(func.count()).select_from(Follow).where(
                (Follow.follower_id == doomed.id) | (Follow.following_id == doomed.id)
            )
        )
        sessions = await db.scalar(
            select(func.count()).select_from(Session).where(Session.user_id == doomed.id)
        )
    assert edges == 0
    assert sessions == 0

    # Post image and avatar are both gone
    assert fake_s3.objects == {}

    replay = await anon_client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert replay.status_code == 401

    # The username can be registered again
    response = await anon_client.post(
        "/api/users",
        json={
            "name": "Again",
            "username": doomed.username,
            "email": "again@example.com",
            "password": PASSWORD,
        },
    )
    assert response.status_code == 201
