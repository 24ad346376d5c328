import pytest
from sqlalchemy import update

from backend.src.models.user import User, UserRole

from conftest import register


@pytest.fixture
async def admin_headers(client, db):
    headers = await register(client, email="admin@example.com")
    await db.execute(update(User).where(User.email == "admin@example.com").values(role=UserRole.ADMIN))
    await db.commit()
    return headers


async def send(client, chatbot_id, session_id="visitor", content="Hi"):
    response = await client.post(f"/api/v1/chat/{chatbot_id}/message", json={"sessionId": session_id, "content": content})
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/v1/admin/users"),
        ("get", "/api/v1/admin/users/usage-stats"),
        ("post", "/api/v1/admin/users/reset-monthly-stats"),
        ("patch", "/api/v1/admin/users/anyone/role"),
    ],
)
async def test_admin_routes_reject_regular_users(client, auth_headers, method, path):
    kwargs = {"json": {"role": "admin"}} if method == "patch" else {}

    response = await getattr(client, method)(path, headers=auth_headers, **kwargs)

    assert response.status_code == 403


async def test_list_users_pages(client, auth_headers, admin_headers):
    await register(client, email="third@example.com")

    first = (await client.get("/api/v1/admin/users?page=1&limit=2", headers=admin_headers)).json()
    second = (await client.get("/api/v1/admin/users?page=2&limit=2", headers=admin_headers)).json()

    assert first["totalCount"] == 3
    assert first["totalPages"] == 2
    assert len(first["users"]) == 2
    assert second["currentPage"] == 2
    emails = {u["email"] for u in first["users"] + second["users"]}
    assert emails == {"owner@example.com", "admin@example.com", "third@example.com"}


async def test_change_role(client, auth_headers, admin_headers):
    me = (await client.get("/api/v1/auth/me", headers=auth_headers)).json()

    promoted = await client.patch(f"/api/v1/admin/users/{me['id']}/role", json={"role": "admin"}, headers=admin_headers)
    assert promoted.json()["role"] == "admin"
    assert (await client.get("/api/v1/admin/users", headers=auth_headers)).status_code == 200

    invalid = await client.patch(f"/api/v1/admin/users/{me['id']}/role", json={"role": "root"}, headers=admin_headers)
    assert invalid.status_code == 422

    missing = await client.patch("/api/v1/admin/users/nobody/role", json={"role": "user"}, headers=admin_headers)
    assert missing.status_code == 404


async def test_usage_stats_and_monthly_reset(client, chatbot, auth_headers, admin_headers):
    await send(client, chatbot["id"])
    await send(client, chatbot["id"], content="Again")

    stats = (await client.get("/api/v1/admin/users/usage-stats", headers=admin_headers)).json()
    busiest = stats[0]
    assert busiest["messagesThisMonth"] == 4
    assert busiest["totalMessages"] == 4

    reset = await client.post("/api/v1/admin/users/reset-monthly-stats", headers=admin_headers)
    assert reset.json() == {"reset": 1}

    usage = (await client.get("/api/v1/auth/me/usage", headers=auth_headers)).json()
    assert usage["messagesThisMonth"] == 0
    assert usage["totalMessages"] == 4
    assert usage["chatbotsCreated"] == 1

    # Nothing left to reset
    again = await client.post("/api/v1/admin/users/reset-monthly-stats", headers=admin_headers)
    assert again.json() == {"reset": 0}


async def test_usage_stats_paginate(client, chatbot, auth_headers, admin_headers):
    await send(client, chatbot["id"])
    await client.get("/api/v1/auth/me/usage", headers=admin_headers)

    first = (await client.get("/api/v1/admin/users/usage-stats?limit=1", headers=admin_headers)).json()
    rest = (await client.get("/api/v1/admin/users/usage-stats?limit=1&offset=1", headers=admin_headers)).json()

    assert first[0]["totalMessages"] == 2
    assert rest[0]["totalMessages"] == 0
    assert first[0]["userId"] != rest[0]["userId"]


async def test_owner_exports_everything(client, chatbot, auth_headers):
    sent = await send(client, chatbot["id"], content="When do you open?")

    export = await client.get("/api/v1/auth/me/export", headers=auth_headers)

    assert export.status_code == 200
    data = export.json()
    assert data["user"]["email"] == "owner@example.com"
    assert data["usage"]["totalMessages"] == 2
    [bot] = data["chatbots"]
    assert bot["knowledgeBase"] == chatbot["knowledgeBase"]
    [conversation] = bot["conversations"]
    assert conversation["id"] == sent["conversationId"]
    assert [(m["role"], m["content"]) for m in conversation["messages"]] == [
        ("visitor", "When do you open?"),
        ("assistant", "echo: When do you open?"),
    ]


async def test_export_excludes_other_owners(client, chatbot):
    headers = await register(client, email="other@example.com")

    data = (await client.get("/api/v1/auth/me/export", headers=headers)).json()

    assert data["chatbots"] == []
    assert data["usage"]["totalMessages"] == 0
