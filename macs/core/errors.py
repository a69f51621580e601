"""Shared error types for the coordination layer."""


class CoordinationError(Exception):
    """Base error for all coordination failures."""


class CoordinationValidationError(CoordinationError, ValueError):
    """Input to a coordination operation was malformed."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("Validation failed" + (f": {detail}" if detail else ""))


class MessageValidationError(CoordinationValidationError):
    """A message draft was rejected before any delivery was attempted."""


class EntryValidationError(CoordinationValidationError):
    """A blackboard write was rejected."""


class SessionNotFoundError(CoordinationError, LookupError):
    """No negotiation session exists with the given ID."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Negotiation session '{session_id}' not found.")


class SessionClosedError(CoordinationError):
    """The negotiation session already reached a terminal state."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(f"Negotiation session '{session_id}' is already {status}.")


class EntryNotFoundError(CoordinationError, LookupError):
    """No blackboard entry exists with the given ID."""

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(f"Blackboard entry '{entry_id}' not found.")


class HandlerTimeoutError(CoordinationError):
    """A subscriber handler did not settle within the bus timeout."""

    def __init__(self, agent: str, timeout: float) -> None:
        self.agent = agent
        self.timeout = timeout
        super().__init__(f"Handler for {agent} timed out after {timeout}s")
