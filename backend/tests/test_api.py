import httpx
import pytest

from forum_service.core.security import Caller
from forum_service.main import create_app

ADMIN = Caller(user_id="admin-1", role="ADMIN")
ALICE = Caller(user_id="alice")
BOB = Caller(user_id="bob")


@pytest.fixture
async def api_thread(client, auth):
    created = await client.post(
        "/api/forum/categories",
        json={"name": "General", "description": "General talk"},
        headers=auth(ADMIN),
    )
    category_id = created.json()["data"]["id"]

    response = await client.post(
        "/api/forum/threads",
        json={"categoryId": category_id, "title": "Hello", "content": "Body", "tags": ["intro"]},
        headers=auth(ALICE),
    )
    assert response.status_code == 201
    return response.json()["data"]


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_category_envelope(client, auth):
    response = await client.post(
        "/api/forum/categories",
        json={"name": "Off Topic", "description": "Anything", "sortOrder": 2},
        headers=auth(ADMIN),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["slug"] == "off-topic"
    assert body["data"]["sortOrder"] == 2
    assert body["data"]["threadCount"] == 0
    assert body["data"]["lastActivity"] is None

    listed = await client.get("/api/forum/categories")
    assert [c["name"] for c in listed.json()["data"]] == ["Off Topic"]


async def test_authentication_and_role_errors(client, auth):
    anonymous = await client.post("/api/forum/categories", json={"name": "x", "description": "y"})
    assert anonymous.status_code == 401
    assert anonymous.json() == {"success": False, "error": "Authentication required"}

    forbidden = await client.post(
        "/api/forum/categories", json={"name": "x", "description": "y"}, headers=auth(ALICE)
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["success"] is False


async def test_request_validation_is_400(client, auth):
    missing = await client.post(
        "/api/forum/threads", json={"title": "No category"}, headers=auth(ALICE)
    )
    assert missing.status_code == 400
    assert missing.json()["success"] is False

    blank = await client.get("/api/forum/search", params={"q": "  "})
    assert blank.status_code == 400

    bad_sort = await client.get("/api/forum/threads", params={"sortBy": "title"})
    assert bad_sort.status_code == 400


async def test_thread_fields_are_camel_case(client, auth, api_thread):
    assert api_thread["authorId"] == "alice"
    assert api_thread["tags"] == ["intro"]
    assert api_thread["views"] == 0
    assert api_thread["replies"] == 0
    assert api_thread["likes"] == 0
    assert api_thread["isPinned"] is False
    assert "moderatedAt" not in api_thread


async def test_view_counting(client, auth, api_thread):
    url = f"/api/forum/threads/{api_thread['id']}"
    await client.get(url, params={"incrementView": "true"})
    await client.get(url, params={"incrementView": "true"})
    plain = await client.get(url)
    assert plain.json()["data"]["views"] == 2
    assert "liked" not in plain.json()["data"]

    missing = await client.get("/api/forum/threads/999", params={"incrementView": "true"})
    assert missing.status_code == 404


async def test_like_toggle(client, auth, api_thread):
    url = f"/api/forum/threads/{api_thread['id']}/like"

    liked = await client.post(url, headers=auth(BOB))
    assert liked.json() == {"success": True, "data": {"liked": True, "likeCount": 1}}

    seen = await client.get(f"/api/forum/threads/{api_thread['id']}", headers=auth(BOB))
    assert seen.json()["data"]["liked"] is True

    unliked = await client.post(url, headers=auth(BOB))
    assert unliked.json()["data"] == {"liked": False, "likeCount": 0}

    own = await client.post(url, headers=auth(ALICE))
    assert own.status_code == 403


async def test_locked_thread_is_423(client, auth, api_thread):
    thread_id = api_thread["id"]
    moderated = await client.post(
        f"/api/forum/threads/{thread_id}/moderate",
        json={"action": "lock", "reason": "cool down"},
        headers=auth(ADMIN),
    )
    assert moderated.status_code == 200
    assert moderated.json()["data"]["isLocked"] is True
    assert moderated.json()["data"]["moderationReason"] == "cool down"

    reply = await client.post(
        f"/api/forum/threads/{thread_id}/replies", json={"content": "hi"}, headers=auth(BOB)
    )
    assert reply.status_code == 423
    assert reply.json() == {"success": False, "error": "Thread is locked"}

    history = await client.get(f"/api/forum/threads/{thread_id}/moderation", headers=auth(ADMIN))
    assert [e["action"] for e in history.json()["data"]] == ["lock"]


async def test_reply_flow(client, auth, api_thread):
    thread_id = api_thread["id"]
    created = await client.post(
        f"/api/forum/threads/{thread_id}/replies", json={"content": "hi"}, headers=auth(BOB)
    )
    assert created.status_code == 201
    reply = created.json()["data"]
    assert reply["threadReplies"] == 1

    listed = await client.get(f"/api/forum/threads/{thread_id}/replies")
    data = listed.json()["data"]
    assert data["total"] == 1
    assert data["totalPages"] == 1
    assert data["replies"][0]["id"] == reply["id"]

    deleted = await client.delete(f"/api/forum/replies/{reply['id']}", headers=auth(ALICE))
    assert deleted.json()["data"]["threadReplies"] == 0


async def test_category_delete_conflict(client, auth, api_thread):
    url = f"/api/forum/categories/{api_thread['categoryId']}"
    conflict = await client.delete(url, headers=auth(ADMIN))
    assert conflict.status_code == 409

    await client.delete(f"/api/forum/threads/{api_thread['id']}", headers=auth(ALICE))
    removed = await client.delete(url, headers=auth(ADMIN))
    assert removed.json() == {"success": True}

    gone = await client.get(url)
    assert gone.status_code == 404


async def test_stats(client, auth):
    empty = await client.get("/api/forum/stats", headers=auth(ADMIN))
    assert empty.json()["data"] == {
        "totalCategories": 0,
        "totalThreads": 0,
        "totalReplies": 0,
        "totalViews": 0,
        "totalLikes": 0,
        "averageRepliesPerThread": "0.00",
    }

    forbidden = await client.get("/api/forum/stats", headers=auth(ALICE))
    assert forbidden.status_code == 403


async def test_unexpected_errors_use_envelope():
    app = create_app()

    async def explode():
        raise RuntimeError("connection pool exhausted")

    app.add_api_route("/explode", explode)

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        response = await c.get("/explode")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}
