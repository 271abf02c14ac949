"""Agent tool bindings.

Each tool validates its params with a pydantic model, calls the ticket
services and returns a JSON-serialisable dict. Tools run as the agent actor,
except set_decision which records an admin decision.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from ticketflow.core.config import settings
from ticketflow.db.enums import (
    AIComplexity,
    ActivityType,
    AuthorType,
    Decision,
    TicketPriority,
    TicketType,
)
from ticketflow.schemas.tickets import (
    ActivityRead,
    Actor,
    ResolveData,
    TicketCreate,
    TicketRead,
    TimelineOptions,
    TriageData,
)
from ticketflow.services import activity_service, queue_service, ticket_service
from ticketflow.services.errors import TicketNotFoundError, TicketServiceError

logger = logging.getLogger(__name__)

TICKET_NOT_FOUND = {"error": "Ticket not found."}

AGENT_NAME = "Agent"
ADMIN_NAME = "Agent Admin"


def _agent(name: str | None = None) -> Actor:
    return Actor(type=AuthorType.AGENT, name=name or AGENT_NAME)


def _ticket_dict(ticket) -> dict[str, Any]:
    return TicketRead.model_validate(ticket).model_dump(mode="json")


def _tickets_dict(tickets, key: str) -> dict[str, Any]:
    return {key: [_ticket_dict(t) for t in tickets], "count": len(tickets)}


# ============================================================================
# Base Tool
# ============================================================================

class AgentTool(ABC):
    """Base class for agent tools."""

    name: str = ""
    description: str = ""
    params_model: type[BaseModel]

    @abstractmethod
    def run(self, db: Session, params: BaseModel) -> dict[str, Any]:
        """Execute the tool with validated params."""


# ============================================================================
# Param Models
# ============================================================================

class TicketIdParams(BaseModel):
    ticket_id: UUID


class ProjectParams(BaseModel):
    project_id: str | None = None


class SubmitTicketParams(BaseModel):
    title: str
    description: str
    ticket_type: TicketType
    project_id: str | None = None
    priority: TicketPriority | None = None
    route: str | None = None
    reporter_id: str | None = None
    reporter_name: str | None = None
    client_reference_id: str | None = None


class TriageBatchParams(ProjectParams):
    batch_size: int | None = Field(None, ge=1)


class TriageTicketParams(TicketIdParams):
    ai_assessment: str | None = None
    ai_solution_proposal: str | None = None
    ai_suggested_priority: TicketPriority | None = None
    ai_complexity: AIComplexity | None = None
    ai_estimated_files: list[str] | None = None
    autonomy_score: int | None = Field(None, ge=1, le=5)


class SetDecisionParams(TicketIdParams):
    decision: Decision
    direction: str | None = None
    work_priority: int | None = None
    resolution: str | None = None
    reason: str | None = None


class CommentParams(TicketIdParams):
    content: str
    author_name: str | None = None


class ResolveTicketParams(TicketIdParams):
    resolution_notes: str
    testing_instructions: str | None = None
    testing_url: str | None = None


# ============================================================================
# Tools
# ============================================================================

class SubmitTicketTool(AgentTool):
    name = "submit_ticket"
    description = "Submit a new ticket (bug, feature, suggestion, task, enhancement)"
    params_model = SubmitTicketParams

    def run(self, db, params):
        actor = _agent(params.reporter_name)
        data = TicketCreate(
            project_id=params.project_id or settings.DEFAULT_PROJECT_ID,
            source="agent",
            ticket_type=params.ticket_type,
            title=params.title,
            description=params.description,
            priority=params.priority,
            route=params.route,
            reporter_id=params.reporter_id or "agent",
            reporter_name=params.reporter_name,
            client_reference_id=params.client_reference_id,
        )
        ticket = ticket_service.create_ticket(db, data, actor)
        return {
            "id": str(ticket.id),
            "ticket_number": ticket.ticket_number,
            "title": ticket.title,
            "status": ticket.status.value,
        }


class GetTicketTool(AgentTool):
    name = "get_ticket"
    description = "Get a ticket by ID"
    params_model = TicketIdParams

    def run(self, db, params):
        ticket = ticket_service.get_ticket(db, params.ticket_id)
        if ticket is None:
            return dict(TICKET_NOT_FOUND)
        return _ticket_dict(ticket)


class GetTicketTimelineTool(AgentTool):
    name = "get_ticket_timeline"
    description = "Full chronological timeline for a ticket as plain text"
    params_model = TicketIdParams

    def run(self, db, params):
        if ticket_service.get_ticket(db, params.ticket_id) is None:
            return dict(TICKET_NOT_FOUND)
        return {"timeline": activity_service.get_timeline_for_agent(db, params.ticket_id)}


class GetTriageBatchTool(AgentTool):
    name = "get_triage_batch"
    description = "Get a batch of untriaged tickets ready for triage"
    params_model = TriageBatchParams

    def run(self, db, params):
        batch = queue_service.get_triage_batch(db, params.project_id, params.batch_size)
        return _tickets_dict(batch, "batch")


class GetWorkQueueTool(AgentTool):
    name = "get_work_queue"
    description = "Get approved tickets ordered by work priority"
    params_model = ProjectParams

    def run(self, db, params):
        return _tickets_dict(queue_service.get_work_queue(db, params.project_id), "queue")


class GetReworkItemsTool(AgentTool):
    name = "get_rework_items"
    description = "Get tickets with failed/partial test results that need rework"
    params_model = ProjectParams

    def run(self, db, params):
        return _tickets_dict(queue_service.get_rework_items(db, params.project_id), "items")


class TriageTicketTool(AgentTool):
    name = "triage_ticket"
    description = "Push triage analysis to a ticket (sets status to triaged)"
    params_model = TriageTicketParams

    def run(self, db, params):
        data = TriageData(**params.model_dump(exclude={"ticket_id"}))
        ticket = ticket_service.triage_ticket(db, params.ticket_id, data, _agent())
        if ticket is None:
            return dict(TICKET_NOT_FOUND)
        return {
            "success": True,
            "ticket_number": ticket.ticket_number,
            "status": ticket.status.value,
        }


class SetDecisionTool(AgentTool):
    name = "set_decision"
    description = "Set the decision on a triaged ticket (approve/reject/defer)"
    params_model = SetDecisionParams

    def run(self, db, params):
        actor = Actor(type=AuthorType.ADMIN, name=ADMIN_NAME)

        if params.decision == Decision.APPROVED:
            ticket = ticket_service.approve_ticket(
                db, params.ticket_id, actor, params.direction, params.work_priority
            )
            if ticket is None:
                return dict(TICKET_NOT_FOUND)
            return {"success": True, "status": ticket.status.value}

        if params.decision == Decision.REJECTED:
            resolution = params.resolution or "wont_fix"
            reason = params.reason or "Rejected"
        else:
            resolution = "deferred"
            reason = params.reason or "Deferred"

        ticket = ticket_service.reject_ticket(
            db, params.ticket_id, resolution, reason, actor, decision=params.decision
        )
        if ticket is None:
            return dict(TICKET_NOT_FOUND)
        return {"success": True, "status": ticket.status.value, "resolution": resolution}


class AddCommentTool(AgentTool):
    name = "add_comment"
    description = "Add an internal comment to a ticket"
    params_model = CommentParams

    def run(self, db, params):
        activity = activity_service.add_comment(
            db, params.ticket_id, params.content, _agent(params.author_name)
        )
        return {"success": True, "activity_id": str(activity.id)}


class SendMessageTool(AgentTool):
    name = "send_message"
    description = "Draft a message to the reporter (held until an admin approves it)"
    params_model = CommentParams

    def run(self, db, params):
        activity = activity_service.send_message(
            db, params.ticket_id, params.content, _agent(params.author_name)
        )
        return {
            "success": True,
            "activity_id": str(activity.id),
            "requires_approval": activity.requires_approval,
        }


class ResolveTicketTool(AgentTool):
    name = "resolve_ticket"
    description = "Submit a fix for testing (changes status to in_review)"
    params_model = ResolveTicketParams

    def run(self, db, params):
        data = ResolveData(**params.model_dump(exclude={"ticket_id"}))
        ticket = ticket_service.resolve_ticket(db, params.ticket_id, data, _agent())
        if ticket is None:
            return dict(TICKET_NOT_FOUND)
        return {"success": True, "status": ticket.status.value}


class GetCommentsTool(AgentTool):
    name = "get_comments"
    description = "Get all comments for a ticket"
    params_model = TicketIdParams

    def run(self, db, params):
        if ticket_service.get_ticket(db, params.ticket_id) is None:
            return dict(TICKET_NOT_FOUND)
        comments = activity_service.get_timeline(
            db, params.ticket_id, TimelineOptions(activity_types=[ActivityType.COMMENT])
        )
        return {
            "comments": [ActivityRead.model_validate(c).model_dump(mode="json") for c in comments],
            "count": len(comments),
        }


# ============================================================================
# Tool Registry
# ============================================================================

TOOLS: dict[str, AgentTool] = {
    tool.name: tool
    for tool in (
        SubmitTicketTool(),
        GetTicketTool(),
        GetTicketTimelineTool(),
        GetTriageBatchTool(),
        GetWorkQueueTool(),
        GetReworkItemsTool(),
        TriageTicketTool(),
        SetDecisionTool(),
        AddCommentTool(),
        SendMessageTool(),
        ResolveTicketTool(),
        GetCommentsTool(),
    )
}


def get_tool(name: str) -> AgentTool | None:
    """Get a tool by name."""
    return TOOLS.get(name)


def run_tool(db: Session, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Validate params and run the named tool.

    Service-level failures come back as {"error": ..., "error_code": ...};
    store errors propagate.
    """
    tool = get_tool(name)
    if tool is None:
        return {"error": f"Unknown tool: {name}", "error_code": "unknown_tool"}

    try:
        validated = tool.params_model.model_validate(params or {})
    except ValidationError as exc:
        return {"error": str(exc), "error_code": "invalid_params"}

    try:
        return tool.run(db, validated)
    except TicketNotFoundError:
        return dict(TICKET_NOT_FOUND)
    except (TicketServiceError, ValidationError) as exc:
        logger.warning(f"Agent tool {name} rejected: {exc}")
        return {"error": str(exc), "error_code": "rejected"}
