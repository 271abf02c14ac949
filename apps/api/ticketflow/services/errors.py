"""Exceptions raised by the ticket services."""


class TicketServiceError(Exception):
    """Base exception for ticket service errors."""

    pass


class TicketValidationError(TicketServiceError, ValueError):
    """Input rejected before any store write."""

    pass


class DisallowedFieldError(TicketValidationError):
    """update() was given a field outside the allow-list."""

    def __init__(self, fields: list[str]):
        self.fields = sorted(fields)
        super().__init__(f"Fields cannot be updated directly: {', '.join(self.fields)}")


class TicketNotFoundError(TicketServiceError):
    """Write target does not exist or is soft-deleted."""

    pass


class ApprovalNotPermittedError(TicketServiceError):
    """Only admins may move content across the reporter visibility boundary."""

    pass
