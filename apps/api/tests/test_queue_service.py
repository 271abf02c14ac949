"""Tests for derived work queues."""

from datetime import datetime, timedelta, timezone

from ticketflow.schemas.tickets import SubmittedTestResult
from ticketflow.services import queue_service, ticket_service


def test_triage_batch_returns_oldest_new_tickets(db, admin, make_ticket):
    tickets = [make_ticket(title=f"T{n}") for n in range(5)]
    ticket_service.change_status(db, tickets[0].id, "triaged", admin)

    batch = queue_service.get_triage_batch(db)

    assert [t.title for t in batch] == ["T1", "T2", "T3"]
    assert len(queue_service.get_triage_batch(db, batch_size=10)) == 4
    assert queue_service.get_triage_batch(db, batch_size=0) == []


def test_triage_batch_scoped_to_project(db, make_ticket):
    make_ticket(project_id="alpha")
    beta = make_ticket(project_id="beta")

    assert [t.id for t in queue_service.get_triage_batch(db, "beta")] == [beta.id]


def test_work_queue_orders_by_work_priority(db, admin, make_ticket):
    low = make_ticket(title="Later")
    high = make_ticket(title="Sooner")
    unranked = make_ticket(title="Unranked")
    make_ticket(title="Not approved")

    ticket_service.approve_ticket(db, low.id, admin, work_priority=5)
    ticket_service.approve_ticket(db, high.id, admin, work_priority=1)
    ticket_service.change_status(db, unranked.id, "approved", admin)

    queue = queue_service.get_work_queue(db)

    assert [t.title for t in queue] == ["Sooner", "Later", "Unranked"]


def test_rework_items_require_failed_result_and_active_status(db, admin, make_ticket):
    failing = make_ticket(title="Failing")
    partial = make_ticket(title="Partial")
    passed = make_ticket(title="Passed")
    still_new = make_ticket(title="Still new")

    for t in (failing, partial, passed):
        ticket_service.change_status(db, t.id, "in_review", admin)
    ticket_service.submit_test_result(db, passed.id, SubmittedTestResult(result="pass"), admin)
    ticket_service.submit_test_result(db, failing.id, SubmittedTestResult(result="fail"), admin)
    ticket_service.submit_test_result(db, partial.id, SubmittedTestResult(result="partial"), admin)
    ticket_service.submit_test_result(db, still_new.id, SubmittedTestResult(result="fail"), admin)

    items = queue_service.get_rework_items(db)

    # Most recently updated first
    assert [t.title for t in items] == ["Partial", "Failing"]


def test_follow_ups_due_by(db, admin, make_ticket):
    now = datetime.now(timezone.utc)
    soon = make_ticket(title="Soon")
    later = make_ticket(title="Later")
    undated = make_ticket(title="Undated")
    make_ticket(title="No follow-up")

    ticket_service.update_ticket(
        db, soon.id, {"needs_followup": True, "followup_after": now + timedelta(days=1)}, admin
    )
    ticket_service.update_ticket(
        db, later.id, {"needs_followup": True, "followup_after": now + timedelta(days=7)}, admin
    )
    ticket_service.update_ticket(db, undated.id, {"needs_followup": True}, admin)

    everything = queue_service.get_follow_ups(db)
    assert [t.title for t in everything] == ["Soon", "Later", "Undated"]

    due = queue_service.get_follow_ups(db, due_by=now + timedelta(days=2))
    assert [t.title for t in due] == ["Soon"]
