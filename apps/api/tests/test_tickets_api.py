"""
HTTP tests for the tickets router.

The caller's actor arrives in X-Actor-Type / X-Actor-Name headers set by the
upstream auth layer.
"""
import uuid

from httpx import AsyncClient


ADMIN = {"X-Actor-Type": "admin", "X-Actor-Name": "Alice Admin"}
AGENT = {"X-Actor-Type": "agent", "X-Actor-Name": "Triage Bot"}
USER = {"X-Actor-Type": "user", "X-Actor-Name": "Uma User"}


async def _create_ticket(client: AsyncClient, **overrides) -> dict:
    payload = {
        "ticket_type": "bug",
        "title": "Login fails",
        "description": "Clicking sign in does nothing",
        "reporter_id": "u1",
        **overrides,
    }
    res = await client.post("/tickets", json=payload, headers=USER)
    assert res.status_code == 201, res.text
    return res.json()


async def test_health(client: AsyncClient):
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


async def test_actor_headers_required(client: AsyncClient):
    res = await client.post(
        "/tickets",
        json={"ticket_type": "bug", "title": "t", "description": "d", "reporter_id": "u1"},
    )
    assert res.status_code == 401

    res = await client.post(
        "/tickets",
        json={"ticket_type": "bug", "title": "t", "description": "d", "reporter_id": "u1"},
        headers={"X-Actor-Type": "robot"},
    )
    assert res.status_code == 401


async def test_create_and_get(client: AsyncClient):
    created = await _create_ticket(client, client_reference_id="widget-1")

    assert created["ticket_number"] == 1
    assert created["status"] == "new"

    again = await _create_ticket(client, client_reference_id="widget-1", title="Dup")
    assert again["id"] == created["id"]

    res = await client.get(f"/tickets/{created['id']}", headers=ADMIN)
    assert res.status_code == 200
    assert res.json()["title"] == "Login fails"

    res = await client.get("/tickets/by-number/default/1", headers=ADMIN)
    assert res.json()["id"] == created["id"]


async def test_submit_returns_receipt_only(client: AsyncClient):
    res = await client.post(
        "/tickets/submit",
        json={
            "ticket_type": "suggestion",
            "title": "Dark mode",
            "description": "Please",
            "reporter_id": "u9",
            "reporter_email": "u9@example.com",
            "source": "widget",
        },
    )
    assert res.status_code == 201
    body = res.json()
    assert set(body) == {"id", "ticket_number", "title", "status", "created_at"}


async def test_create_validation_errors(client: AsyncClient):
    res = await client.post(
        "/tickets",
        json={"ticket_type": "bug", "title": " ", "description": "d", "reporter_id": "u1"},
        headers=USER,
    )
    assert res.status_code == 422

    res = await client.post(
        "/tickets",
        json={"ticket_type": "epic", "title": "t", "description": "d", "reporter_id": "u1"},
        headers=USER,
    )
    assert res.status_code == 422


async def test_missing_ticket_is_404(client: AsyncClient):
    missing = uuid.uuid4()

    assert (await client.get(f"/tickets/{missing}", headers=ADMIN)).status_code == 404
    res = await client.patch(f"/tickets/{missing}", json={"title": "x"}, headers=ADMIN)
    assert res.status_code == 404
    res = await client.post(f"/tickets/{missing}/comments", json={"content": "hi"}, headers=ADMIN)
    assert res.status_code == 404


async def test_list_with_filters(client: AsyncClient):
    await _create_ticket(client, title="Bug one")
    await _create_ticket(client, title="Feature one", ticket_type="feature")
    await _create_ticket(client, title="Bug two")

    res = await client.get("/tickets", params={"ticket_type": "bug", "page_size": 1}, headers=ADMIN)
    body = res.json()
    assert body["total"] == 2
    assert body["total_pages"] == 2
    assert len(body["items"]) == 1

    res = await client.get("/tickets", params={"search": "feature"}, headers=ADMIN)
    assert [t["title"] for t in res.json()["items"]] == ["Feature one"]


async def test_patch_rejects_disallowed_fields(client: AsyncClient):
    created = await _create_ticket(client)

    res = await client.patch(
        f"/tickets/{created['id']}", json={"status": "closed"}, headers=ADMIN
    )
    assert res.status_code == 422

    res = await client.patch(
        f"/tickets/{created['id']}", json={"priority": "high", "assignee": "dev-1"}, headers=ADMIN
    )
    assert res.status_code == 200
    assert res.json()["priority"] == "high"
    assert res.json()["updated_by"] == "Alice Admin"


async def test_full_pipeline_over_http(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]

    res = await client.post(
        f"/tickets/{ticket_id}/triage",
        json={"ai_assessment": "Auth check broken", "ai_suggested_priority": "high"},
        headers=AGENT,
    )
    assert res.json()["status"] == "triaged"

    res = await client.get("/tickets/pipeline", headers=ADMIN)
    assert res.json()["your_decision"] == 1

    res = await client.post(
        f"/tickets/{ticket_id}/approve",
        json={"direction": "fix auth check", "work_priority": 1},
        headers=ADMIN,
    )
    assert res.json()["status"] == "approved"

    res = await client.get("/tickets/work-queue", headers=AGENT)
    assert [t["id"] for t in res.json()] == [ticket_id]

    res = await client.post(
        f"/tickets/{ticket_id}/resolve", json={"resolution_notes": "fixed"}, headers=AGENT
    )
    assert res.json()["status"] == "in_review"

    res = await client.post(
        f"/tickets/{ticket_id}/status", json={"status": "resolved"}, headers=ADMIN
    )
    assert res.json()["resolved_at"] is not None

    stats = (await client.get("/tickets/stats", headers=ADMIN)).json()
    assert stats["open"] == 0
    assert stats["by_status"] == {"resolved": 1}

    res = await client.get(f"/tickets/{ticket_id}/timeline", params={"view": "agent"}, headers=AGENT)
    assert res.status_code == 200
    assert res.text.startswith('Ticket T-1: "Login fails"')


async def test_reject_defaults(client: AsyncClient):
    created = await _create_ticket(client)

    res = await client.post(f"/tickets/{created['id']}/reject", json={}, headers=ADMIN)
    assert res.json()["status"] == "closed"
    assert res.json()["resolution"] == "wont_fix"


async def test_agent_message_needs_admin_approval(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]

    res = await client.post(
        f"/tickets/{ticket_id}/messages",
        json={"content": "Fixed, please retry", "requires_approval": False},
        headers=AGENT,
    )
    assert res.status_code == 201
    message = res.json()
    assert message["requires_approval"] is True

    user_view = await client.get(
        f"/tickets/{ticket_id}/timeline",
        params={"view": "user", "reporter_id": "u1"},
        headers=USER,
    )
    assert message["id"] not in {e["id"] for e in user_view.json()}

    # Agents cannot approve their own drafts
    res = await client.post(
        f"/tickets/{ticket_id}/activity/{message['id']}/approve", headers=AGENT
    )
    assert res.status_code == 403

    res = await client.post(
        f"/tickets/{ticket_id}/activity/{message['id']}/approve", headers=ADMIN
    )
    assert res.status_code == 200
    assert res.json()["approved_by"] == "Alice Admin"

    user_view = await client.get(
        f"/tickets/{ticket_id}/timeline",
        params={"view": "user", "reporter_id": "u1"},
        headers=USER,
    )
    assert message["id"] in {e["id"] for e in user_view.json()}


async def test_user_timeline_other_reporter_gets_nothing(client: AsyncClient):
    created = await _create_ticket(client)

    res = await client.get(
        f"/tickets/{created['id']}/timeline", params={"reporter_id": "intruder"}, headers=USER
    )
    assert res.status_code == 200
    assert res.json() == []

    res = await client.get(f"/tickets/{created['id']}/timeline", headers=USER)
    assert res.status_code == 422

    res = await client.get(
        f"/tickets/{created['id']}/timeline", params={"view": "user"}, headers=ADMIN
    )
    assert res.status_code == 422


async def test_promote_comment(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]

    comment = (
        await client.post(
            f"/tickets/{ticket_id}/comments", json={"content": "Root cause: cache"}, headers=ADMIN
        )
    ).json()
    assert comment["visibility"] == "internal"

    res = await client.post(
        f"/tickets/{ticket_id}/activity/{comment['id']}/promote", headers=ADMIN
    )
    assert res.status_code == 200
    assert res.json()["visibility"] == "user_visible"

    res = await client.post(
        f"/tickets/{ticket_id}/activity/{comment['id']}/promote", headers=ADMIN
    )
    assert res.status_code == 404


async def test_timeline_filters_over_http(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]
    await client.post(f"/tickets/{ticket_id}/comments", json={"content": "one"}, headers=ADMIN)

    res = await client.get(
        f"/tickets/{ticket_id}/timeline", params={"activity_type": "comment"}, headers=ADMIN
    )
    assert [e["content"] for e in res.json()] == ["one"]
    assert res.json()[0]["metadata"] is None


async def test_attachments_and_test_results(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]

    res = await client.post(
        f"/tickets/{ticket_id}/attachments",
        params={"reporter_id": "u1"},
        json={
            "filename": "blobs/abc.png",
            "original_name": "screen.png",
            "mime_type": "image/png",
            "size_bytes": 10,
        },
        headers=USER,
    )
    assert res.status_code == 201
    res = await client.get(f"/tickets/{ticket_id}/attachments", headers=ADMIN)
    assert [a["original_name"] for a in res.json()] == ["screen.png"]

    res = await client.post(
        f"/tickets/{ticket_id}/test-result", json={"result": "partial"}, headers=ADMIN
    )
    assert res.status_code == 201
    assert res.json()["metadata"]["result"] == "partial"

    res = await client.post(
        f"/tickets/{ticket_id}/test-result", json={"result": "pending"}, headers=ADMIN
    )
    assert res.status_code == 422


async def test_delete_requires_admin(client: AsyncClient):
    created = await _create_ticket(client)

    res = await client.delete(f"/tickets/{created['id']}", headers=AGENT)
    assert res.status_code == 403

    res = await client.delete(f"/tickets/{created['id']}", headers=ADMIN)
    assert res.status_code == 204
    assert (await client.get(f"/tickets/{created['id']}", headers=ADMIN)).status_code == 404


async def test_reporter_timeline_hides_internal_and_drafts(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]
    await client.post(
        f"/tickets/{ticket_id}/comments", json={"content": "internal secret"}, headers=AGENT
    )
    await client.post(
        f"/tickets/{ticket_id}/messages", json={"content": "unapproved agent draft"}, headers=AGENT
    )

    res = await client.get(f"/tickets/{ticket_id}/timeline")
    assert res.status_code == 401

    for view in ("full", "agent", "user"):
        res = await client.get(
            f"/tickets/{ticket_id}/timeline",
            params={"view": view, "reporter_id": "u1"},
            headers=USER,
        )
        assert res.status_code == 200, view
        assert [e["content"] for e in res.json()] == ["Ticket created via api"], view

    res = await client.get(f"/tickets/{ticket_id}/timeline", headers=ADMIN)
    assert [e["content"] for e in res.json()] == [
        "Ticket created via api",
        "internal secret",
        "unapproved agent draft",
    ]


async def test_reporters_cannot_drive_workflow(client: AsyncClient):
    created = await _create_ticket(client)
    ticket_id = created["id"]

    forbidden = [
        ("patch", f"/tickets/{ticket_id}", {"title": "Mine now"}),
        ("post", f"/tickets/{ticket_id}/status", {"status": "closed"}),
        ("post", f"/tickets/{ticket_id}/triage", {"ai_assessment": "x"}),
        ("post", f"/tickets/{ticket_id}/approve", {}),
        ("post", f"/tickets/{ticket_id}/reject", {}),
        ("post", f"/tickets/{ticket_id}/resolve", {"resolution_notes": "done"}),
        ("post", f"/tickets/{ticket_id}/test-result", {"result": "pass"}),
        ("post", f"/tickets/{ticket_id}/comments", {"content": "hi"}),
    ]
    for method, url, body in forbidden:
        res = await getattr(client, method)(url, json=body, headers=USER)
        assert res.status_code == 403, url

    for url in ("/tickets/stats", "/tickets/pipeline", "/tickets/work-queue", "/tickets/rework"):
        assert (await client.get(url, headers=USER)).status_code == 403, url

    res = await client.get(f"/tickets/{ticket_id}", headers=ADMIN)
    assert res.json()["status"] == "new"
    assert res.json()["title"] == "Login fails"


async def test_reporter_access_is_scoped_to_own_tickets(client: AsyncClient):
    mine = await _create_ticket(client)
    theirs = await _create_ticket(client, reporter_id="u2", title="Someone else")

    res = await client.get(f"/tickets/{mine['id']}", params={"reporter_id": "u1"}, headers=USER)
    assert res.status_code == 200
    res = await client.get(f"/tickets/{theirs['id']}", params={"reporter_id": "u1"}, headers=USER)
    assert res.status_code == 404

    assert (await client.get("/tickets", headers=USER)).status_code == 422
    res = await client.get("/tickets", params={"reporter_id": "u1"}, headers=USER)
    assert [t["id"] for t in res.json()["items"]] == [mine["id"]]

    res = await client.post(
        f"/tickets/{mine['id']}/messages",
        params={"reporter_id": "u1"},
        json={"content": "Still broken"},
        headers=USER,
    )
    assert res.status_code == 201
    assert res.json()["author_type"] == "user"

    res = await client.post(
        f"/tickets/{theirs['id']}/messages",
        params={"reporter_id": "u1"},
        json={"content": "Hello?"},
        headers=USER,
    )
    assert res.status_code == 404


async def test_create_with_unknown_parent_is_rejected(client: AsyncClient):
    res = await client.post(
        "/tickets",
        json={
            "ticket_type": "task",
            "title": "Orphan",
            "description": "d",
            "reporter_id": "u1",
            "parent_id": str(uuid.uuid4()),
        },
        headers=ADMIN,
    )
    assert res.status_code == 422

    res = await client.get("/tickets", headers=ADMIN)
    assert res.json()["total"] == 0
