"""
Quilkalam Backend — API Integration Tests
==========================================

What:  End-to-end tests through the full HTTP stack (routing, middleware,
       exception handlers, camelCase serialization).
How:   Uses the `test_client` fixture. Users are registered through
       /api/auth/register so every request carries a real bearer token.

What we test:
    ✅ Health check and X-Request-ID propagation
    ✅ Register/login envelopes; 409 on duplicate phone; 401 on bad login
    ✅ Publish → list → read, with X-Total-Count; viewCount shows the pre-read count
    ✅ Owner-only edits map to 403, missing tokens to 401
    ✅ Chapter routes, including /chapters/batch not shadowed by {chapter_id}
    ✅ A database write failure answers 500 server_error without driver details
    ✅ Likes, follows, comments and reading progress over HTTP
    ✅ Image upload then serving the stored file
    ✅ Rate limiter answers 429 with Retry-After
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from quilkalam.middleware.rate_limit import RateLimitMiddleware
from quilkalam.services.blob_service import blob_store
from quilkalam.services.project_service import project_service

PUBLISH_BODY = {
    "type": "novel",
    "title": "The Dragon's Road",
    "description": "A tale of roads",
    "genre": "fantasy",
    "wordCount": 4,
    "items": [
        {"ref": "p1", "itemType": "part", "name": "Part One"},
        {
            "ref": "c1",
            "parentItemId": "p1",
            "itemType": "chapter",
            "name": "One",
            "content": "it was a road",
            "wordCount": 4,
        },
    ],
}


async def _register(client, phone: str, name: str) -> dict:
    response = await client.post(
        "/api/auth/register",
        json={"phoneNumber": phone, "password": "hunter22", "displayName": name},
    )
    assert response.status_code == 200
    body = response.json()
    return {
        "id": body["user"]["id"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


async def _publish(client, user, **overrides) -> str:
    response = await client.post(
        "/api/projects/publish", json={**PUBLISH_BODY, **overrides}, headers=user["headers"]
    )
    assert response.status_code == 200
    return response.json()["projectId"]


# ══════════════════════════════════════════════════════════════════════════
# Health & Middleware
# ══════════════════════════════════════════════════════════════════════════

class TestHealth:

    @pytest.mark.asyncio
    async def test_health_check(self, test_client):
        response = await test_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_third_request_is_limited(self):
        app = FastAPI()

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        app.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            assert (await client.get("/ping")).status_code == 200
            assert (await client.get("/ping")).status_code == 200
            limited = await client.get("/ping")

        assert limited.status_code == 429
        assert limited.json()["error"] == "rate_limit_exceeded"
        assert int(limited.headers["Retry-After"]) >= 1


# ══════════════════════════════════════════════════════════════════════════
# Auth & Profile
# ══════════════════════════════════════════════════════════════════════════

class TestAuth:

    @pytest.mark.asyncio
    async def test_register_and_login(self, test_client):
        registered = await test_client.post(
            "/api/auth/register",
            json={"phoneNumber": "+15551230000", "password": "hunter22", "displayName": "Ada"},
        )
        assert registered.status_code == 200
        body = registered.json()
        assert body["success"] is True
        assert body["user"]["displayName"] == "Ada"
        assert body["token"]

        login = await test_client.post(
            "/api/auth/login", json={"phoneNumber": "+15551230000", "password": "hunter22"}
        )
        assert login.status_code == 200
        assert login.json()["user"]["id"] == body["user"]["id"]

    @pytest.mark.asyncio
    async def test_duplicate_phone_is_conflict(self, test_client):
        await _register(test_client, "+15551230000", "Ada")
        response = await test_client.post(
            "/api/auth/register", json={"phoneNumber": "+15551230000", "password": "hunter22"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_short_password_is_validation_error(self, test_client):
        response = await test_client.post(
            "/api/auth/register", json={"phoneNumber": "+15551230000", "password": "abc"}
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "request_id" in data

    @pytest.mark.asyncio
    async def test_bad_login_is_unauthenticated(self, test_client):
        await _register(test_client, "+15551230000", "Ada")
        response = await test_client.post(
            "/api/auth/login", json={"phoneNumber": "+15551230000", "password": "wrong-one"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_profile_round_trip(self, test_client):
        user = await _register(test_client, "+15551230000", "Ada")

        updated = await test_client.put(
            "/api/user/profile", json={"bio": "Poet"}, headers=user["headers"]
        )
        assert updated.status_code == 200

        profile = await test_client.get("/api/user/profile", headers=user["headers"])
        assert profile.json()["user"]["bio"] == "Poet"
        assert profile.json()["user"]["displayName"] == "Ada"


# ══════════════════════════════════════════════════════════════════════════
# Projects
# ══════════════════════════════════════════════════════════════════════════

class TestProjects:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-token"}])
    async def test_publish_requires_valid_token(self, test_client, headers):
        response = await test_client.post("/api/projects/publish", json=PUBLISH_BODY, headers=headers)
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_publish_list_and_read(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        project_id = await _publish(test_client, author)

        listed = await test_client.get("/api/projects", params={"search": "DRAGON"})
        assert listed.status_code == 200
        assert listed.headers["X-Total-Count"] == "1"
        summary = listed.json()["projects"][0]
        assert summary["id"] == project_id
        assert summary["authorDisplayName"] == "Ada"
        assert summary["wordCount"] == 4
        assert listed.json()["pagination"]["totalPages"] == 1

        first = await test_client.get(f"/api/projects/{project_id}")
        second = await test_client.get(f"/api/projects/{project_id}")
        assert first.status_code == 200
        assert first.json()["project"]["viewCount"] == 0
        assert second.json()["project"]["viewCount"] == 1

        items = {item["name"]: item for item in first.json()["items"]}
        assert items["One"]["parentItemId"] == items["Part One"]["id"]
        assert items["One"]["depthLevel"] == 1

    @pytest.mark.asyncio
    async def test_limit_above_maximum_is_rejected(self, test_client):
        response = await test_client.get("/api/projects", params={"limit": 101})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        response = await test_client.post(
            "/api/projects/publish", json={**PUBLISH_BODY, "type": "screenplay"},
            headers=author["headers"],
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_only_owner_can_edit_or_delete(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        stranger = await _register(test_client, "+15551239999", "Eve")
        project_id = await _publish(test_client, author)

        put = await test_client.put(
            f"/api/projects/{project_id}", json={"title": "Mine"}, headers=stranger["headers"]
        )
        delete = await test_client.delete(f"/api/projects/{project_id}", headers=stranger["headers"])
        assert put.status_code == 403
        assert delete.status_code == 403
        assert put.json()["error"] == "forbidden"

        renamed = await test_client.put(
            f"/api/projects/{project_id}", json={"title": "Renamed"}, headers=author["headers"]
        )
        assert renamed.status_code == 200
        removed = await test_client.delete(f"/api/projects/{project_id}", headers=author["headers"])
        assert removed.json() == {"success": True}

        gone = await test_client.get(f"/api/projects/{project_id}")
        assert gone.status_code == 404
        assert gone.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_private_project_reads_as_missing(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        project_id = await _publish(test_client, author, isPublic=False)

        response = await test_client.get(f"/api/projects/{project_id}")
        assert response.status_code == 404


# ══════════════════════════════════════════════════════════════════════════
# Chapters
# ══════════════════════════════════════════════════════════════════════════

class TestChapters:

    @pytest.mark.asyncio
    async def test_chapter_lifecycle(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        project_id = await _publish(test_client, author)
        base = f"/api/projects/{project_id}/chapters"

        created = await test_client.post(
            base, json={"name": "Two", "content": "a  b   c", "wordCount": 50},
            headers=author["headers"],
        )
        assert created.status_code == 200
        chapter = created.json()["chapter"]
        assert chapter["wordCount"] == 3
        assert chapter["depthLevel"] == 0

        batch = await test_client.put(
            f"{base}/batch",
            json={"updates": [{"id": chapter["id"], "content": "just two"}]},
            headers=author["headers"],
        )
        assert batch.status_code == 200
        assert batch.json()["count"] == 1
        assert batch.json()["chapters"][0]["wordCount"] == 2

        project = (await test_client.get(f"/api/projects/{project_id}")).json()["project"]
        assert project["wordCount"] == 6

        fetched = await test_client.get(f"{base}/{chapter['id']}")
        assert fetched.json()["chapter"]["content"] == "just two"

        deleted = await test_client.delete(f"{base}/{chapter['id']}", headers=author["headers"])
        assert deleted.status_code == 200
        assert (await test_client.get(f"{base}/{chapter['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_batch_create_in_order(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        project_id = await _publish(test_client, author)

        response = await test_client.post(
            f"/api/projects/{project_id}/chapters/batch",
            json={"chapters": [{"name": "A", "content": "x"}, {"name": "B", "content": "y z"}]},
            headers=author["headers"],
        )

        assert response.status_code == 200
        assert [c["name"] for c in response.json()["chapters"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_non_owner_cannot_add(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        stranger = await _register(test_client, "+15551239999", "Eve")
        project_id = await _publish(test_client, author)

        response = await test_client.post(
            f"/api/projects/{project_id}/chapters", json={"name": "Mine"},
            headers=stranger["headers"],
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_failed_write_is_server_error(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")

        # Project deleted between the ownership check and the insert
        with patch.object(project_service, "require_owner", new=AsyncMock(return_value=None)):
            response = await test_client.post(
                f"/api/projects/{uuid.uuid4()}/chapters", json={"name": "Orphan"},
                headers=author["headers"],
            )

        assert response.status_code == 500
        assert response.json()["error"] == "server_error"
        assert "IntegrityError" not in response.text


# ══════════════════════════════════════════════════════════════════════════
# Social
# ══════════════════════════════════════════════════════════════════════════

class TestSocial:

    @pytest.mark.asyncio
    async def test_like_toggle(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        reader = await _register(test_client, "+15551239999", "Eve")
        project_id = await _publish(test_client, author)

        liked = await test_client.post(
            "/api/likes", json={"projectId": project_id}, headers=reader["headers"]
        )
        assert liked.json()["liked"] is True
        state = await test_client.get(
            "/api/likes", params={"projectId": project_id}, headers=reader["headers"]
        )
        assert state.json() == {"liked": True}

        project = (await test_client.get(f"/api/projects/{project_id}")).json()["project"]
        assert project["likeCount"] == 1

        unliked = await test_client.post(
            "/api/likes", json={"projectId": project_id}, headers=reader["headers"]
        )
        assert unliked.json()["liked"] is False

    @pytest.mark.asyncio
    async def test_follow_and_list(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        reader = await _register(test_client, "+15551239999", "Eve")

        self_follow = await test_client.post(
            "/api/follows", json={"followingId": author["id"]}, headers=author["headers"]
        )
        assert self_follow.status_code == 400

        followed = await test_client.post(
            "/api/follows", json={"followingId": author["id"]}, headers=reader["headers"]
        )
        assert followed.json()["following"] is True

        followers = await test_client.get(
            "/api/follows", params={"type": "followers", "userId": author["id"]},
            headers=reader["headers"],
        )
        assert [u["displayName"] for u in followers.json()["users"]] == ["Eve"]

        following = await test_client.get("/api/follows", headers=reader["headers"])
        assert [u["id"] for u in following.json()["users"]] == [author["id"]]

    @pytest.mark.asyncio
    async def test_comment_create_list_delete(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        reader = await _register(test_client, "+15551239999", "Eve")
        project_id = await _publish(test_client, author)

        created = await test_client.post(
            "/api/comments", json={"projectId": project_id, "content": "Lovely"},
            headers=reader["headers"],
        )
        assert created.status_code == 200
        comment_id = created.json()["comment"]["id"]

        listed = await test_client.get("/api/comments", params={"projectId": project_id})
        assert [c["content"] for c in listed.json()["comments"]] == ["Lovely"]
        assert listed.json()["comments"][0]["displayName"] == "Eve"

        forbidden = await test_client.delete(
            "/api/comments", params={"id": comment_id}, headers=author["headers"]
        )
        assert forbidden.status_code == 403

        deleted = await test_client.delete(
            "/api/comments", params={"id": comment_id}, headers=reader["headers"]
        )
        assert deleted.status_code == 200
        project = (await test_client.get(f"/api/projects/{project_id}")).json()["project"]
        assert project["commentCount"] == 0

    @pytest.mark.asyncio
    async def test_reading_progress(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        reader = await _register(test_client, "+15551239999", "Eve")
        project_id = await _publish(test_client, author)
        chapter_id = (
            await test_client.get(f"/api/projects/{project_id}/chapters")
        ).json()["chapters"][0]["id"]

        empty = await test_client.get(
            "/api/reading-progress", params={"projectId": project_id}, headers=reader["headers"]
        )
        assert empty.json() == {"progress": None}

        for percentage in (10, 55.5):
            saved = await test_client.post(
                "/api/reading-progress",
                json={
                    "projectId": project_id,
                    "lastReadItemId": chapter_id,
                    "progressPercentage": percentage,
                },
                headers=reader["headers"],
            )
            assert saved.status_code == 200

        progress = await test_client.get(
            "/api/reading-progress", params={"projectId": project_id}, headers=reader["headers"]
        )
        assert progress.json()["progress"]["progressPercentage"] == pytest.approx(55.5)
        assert progress.json()["progress"]["lastReadItemId"] == chapter_id

        history = await test_client.get("/api/reading-progress", headers=reader["headers"])
        entries = history.json()["history"]
        assert len(entries) == 1
        assert entries[0]["title"] == "The Dragon's Road"

    @pytest.mark.asyncio
    async def test_progress_out_of_range(self, test_client):
        author = await _register(test_client, "+15551230000", "Ada")
        project_id = await _publish(test_client, author)

        response = await test_client.post(
            "/api/reading-progress",
            json={"projectId": project_id, "progressPercentage": 120},
            headers=author["headers"],
        )
        assert response.status_code == 400


# ══════════════════════════════════════════════════════════════════════════
# Uploads
# ══════════════════════════════════════════════════════════════════════════

class TestUploads:

    @pytest.mark.asyncio
    async def test_upload_then_serve(self, test_client, png_data_url, png_bytes):
        user = await _register(test_client, "+15551230000", "Ada")

        with patch.object(blob_store, "validate_mime_type", return_value="image/png"):
            response = await test_client.post(
                "/api/upload/image",
                json={"image": png_data_url, "folder": "quilkalam/inline"},
                headers=user["headers"],
            )

        assert response.status_code == 200
        data = response.json()
        assert data["width"] == 3
        assert data["height"] == 2
        assert data["publicId"].startswith("quilkalam/inline/")
        assert data["url"].endswith(".png")

        served = await test_client.get(data["url"].removeprefix("http://test"))
        assert served.status_code == 200
        assert served.content == png_bytes

    @pytest.mark.asyncio
    async def test_upload_requires_token(self, test_client, png_data_url):
        response = await test_client.post("/api/upload/image", json={"image": png_data_url})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_file_is_not_found(self, test_client):
        response = await test_client.get("/api/files/quilkalam/nothing/here.png")
        assert response.status_code == 404
