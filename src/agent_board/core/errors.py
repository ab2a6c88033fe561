"""Error types raised by board operations."""


class BoardError(Exception):
    """Base class for board errors."""


class NotFoundError(BoardError):
    """Raised when a task or job does not exist."""


class ValidationError(BoardError):
    """Raised for malformed input."""


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not a legal pipeline edge."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition from {current} to {target}")


class ConflictError(BoardError):
    """Raised when a record changed underneath a version-checked write."""


class DownstreamUnavailable(BoardError):
    """Raised when the agent runtime is unreachable or rejects a dispatch."""
