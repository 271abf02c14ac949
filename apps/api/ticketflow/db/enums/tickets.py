"""Ticket lifecycle and activity enums."""

from enum import Enum


class TicketStatus(str, Enum):
    """
    Ticket lifecycle status.

    Nominal forward order:
        new → triaged → approved → in_progress → in_review
        → user_review → resolved → closed

    closed is also reachable from any state (reject/defer).
    """

    NEW = "new"
    TRIAGED = "triaged"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    USER_REVIEW = "user_review"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid status."""
        return value in cls._value2member_map_


# Order used to detect backwards transitions.
STATUS_FLOW: tuple[TicketStatus, ...] = tuple(TicketStatus)

# Statuses that no longer count as open work.
CLOSED_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.RESOLVED})


class TicketType(str, Enum):
    """Kind of work item."""

    BUG = "bug"
    FEATURE = "feature"
    SUGGESTION = "suggestion"
    TASK = "task"
    ENHANCEMENT = "enhancement"


class TicketPriority(str, Enum):
    """Priority level (None on the ticket means unset)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TestingResult(str, Enum):
    """Outcome of testing a submitted fix."""

    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"
    PARTIAL = "partial"


# Results that send a ticket back for rework.
REWORK_RESULTS = frozenset({TestingResult.FAIL, TestingResult.PARTIAL})
REWORK_STATUSES = frozenset({TicketStatus.IN_PROGRESS, TicketStatus.IN_REVIEW})


class AIComplexity(str, Enum):
    """Complexity estimate attached during triage."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ActivityType(str, Enum):
    """Kinds of entries in a ticket's audit trail."""

    STATUS_CHANGE = "status_change"
    COMMENT = "comment"
    MESSAGE = "message"
    DECISION = "decision"
    TEST_RESULT = "test_result"
    ASSIGNMENT = "assignment"
    RESOLUTION = "resolution"
    FIELD_CHANGE = "field_change"
    SYSTEM = "system"


class AuthorType(str, Enum):
    """Who performed an action."""

    USER = "user"
    ADMIN = "admin"
    AGENT = "agent"
    SYSTEM = "system"


class Visibility(str, Enum):
    """Whether an activity may ever be shown to the reporter."""

    INTERNAL = "internal"
    USER_VISIBLE = "user_visible"


class Decision(str, Enum):
    """Admin decision on a triaged ticket."""

    APPROVED = "approved"
    REJECTED = "rejected"
    DEFERRED = "deferred"
