"""Tests for agent tool bindings."""

import uuid

from ticketflow.db.enums import TicketStatus
from ticketflow.services import activity_service, agent_tools, ticket_service


def test_registry_exposes_all_tools():
    assert set(agent_tools.TOOLS) == {
        "submit_ticket",
        "get_ticket",
        "get_ticket_timeline",
        "get_triage_batch",
        "get_work_queue",
        "get_rework_items",
        "triage_ticket",
        "set_decision",
        "add_comment",
        "send_message",
        "resolve_ticket",
        "get_comments",
    }


def test_unknown_tool_and_bad_params(db):
    assert agent_tools.run_tool(db, "drop_tables")["error_code"] == "unknown_tool"

    result = agent_tools.run_tool(db, "submit_ticket", {"title": "No type"})
    assert result["error_code"] == "invalid_params"


def test_submit_ticket_is_idempotent(db):
    params = {
        "title": "Crash on save",
        "description": "Stack trace attached",
        "ticket_type": "bug",
        "client_reference_id": "agent-run-42",
    }
    first = agent_tools.run_tool(db, "submit_ticket", params)
    second = agent_tools.run_tool(db, "submit_ticket", {**params, "title": "Changed"})

    assert first == second
    assert first["ticket_number"] == 1
    assert first["status"] == "new"

    ticket = ticket_service.get_ticket(db, uuid.UUID(first["id"]))
    assert ticket.source == "agent"
    assert ticket.reporter_id == "agent"


def test_missing_ticket_returns_error(db):
    missing = str(uuid.uuid4())

    for name, extra in [
        ("get_ticket", {}),
        ("get_ticket_timeline", {}),
        ("triage_ticket", {}),
        ("set_decision", {"decision": "approved"}),
        ("add_comment", {"content": "hi"}),
        ("send_message", {"content": "hi"}),
        ("resolve_ticket", {"resolution_notes": "done"}),
        ("get_comments", {}),
    ]:
        assert agent_tools.run_tool(db, name, {"ticket_id": missing, **extra}) == {
            "error": "Ticket not found."
        }, name


def test_triage_then_batch(db, make_ticket):
    first = make_ticket(title="First")
    make_ticket(title="Second")

    batch = agent_tools.run_tool(db, "get_triage_batch", {"batch_size": 5})
    assert batch["count"] == 2

    result = agent_tools.run_tool(
        db,
        "triage_ticket",
        {"ticket_id": str(first.id), "ai_assessment": "Easy fix", "autonomy_score": 5},
    )
    assert result == {"success": True, "ticket_number": 1, "status": "triaged"}
    assert agent_tools.run_tool(db, "get_triage_batch", {})["count"] == 1


def test_set_decision_variants(db, make_ticket):
    approved = make_ticket(title="Approve me")
    rejected = make_ticket(title="Reject me")
    deferred = make_ticket(title="Defer me")

    result = agent_tools.run_tool(
        db,
        "set_decision",
        {"ticket_id": str(approved.id), "decision": "approved", "direction": "Go"},
    )
    assert result == {"success": True, "status": "approved"}
    assert approved.work_priority == 1

    result = agent_tools.run_tool(
        db, "set_decision", {"ticket_id": str(rejected.id), "decision": "rejected"}
    )
    assert result == {"success": True, "status": "closed", "resolution": "wont_fix"}

    result = agent_tools.run_tool(
        db, "set_decision", {"ticket_id": str(deferred.id), "decision": "deferred"}
    )
    assert result["resolution"] == "deferred"
    assert deferred.status == TicketStatus.CLOSED

    decision = activity_service.get_timeline(db, deferred.id)[1]
    assert decision.meta["decision"] == "deferred"
    assert decision.author_type == "admin"

    queue = agent_tools.run_tool(db, "get_work_queue", {})
    assert [t["title"] for t in queue["queue"]] == ["Approve me"]


def test_agent_message_tool_is_gated(db, ticket):
    result = agent_tools.run_tool(
        db, "send_message", {"ticket_id": str(ticket.id), "content": "Please retry"}
    )

    assert result["requires_approval"] is True
    assert len(activity_service.get_timeline_for_user(db, ticket.id, "u1")) == 1


def test_comments_roundtrip(db, ticket):
    agent_tools.run_tool(
        db, "add_comment", {"ticket_id": str(ticket.id), "content": "Repro'd locally"}
    )

    result = agent_tools.run_tool(db, "get_comments", {"ticket_id": str(ticket.id)})

    assert result["count"] == 1
    assert result["comments"][0]["content"] == "Repro'd locally"
    assert result["comments"][0]["author_type"] == "agent"
    assert result["comments"][0]["visibility"] == "internal"


def test_resolve_then_rework(db, admin, ticket):
    agent_tools.run_tool(
        db, "resolve_ticket", {"ticket_id": str(ticket.id), "resolution_notes": "Patched"}
    )
    assert ticket.status == TicketStatus.IN_REVIEW
    assert agent_tools.run_tool(db, "get_rework_items", {})["count"] == 0

    ticket_service.update_ticket(db, ticket.id, {"testing_result": "fail"}, admin)
    items = agent_tools.run_tool(db, "get_rework_items", {})
    assert items["count"] == 1
    assert items["items"][0]["id"] == str(ticket.id)


def test_timeline_tool_returns_narrative(db, ticket):
    result = agent_tools.run_tool(db, "get_ticket_timeline", {"ticket_id": str(ticket.id)})
    assert result["timeline"].startswith('Ticket T-1: "Login fails"')
