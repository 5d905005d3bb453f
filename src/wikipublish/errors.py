from typing import Any, Optional


class PublishError(Exception):
    """Base class for failures that belong to a single publish action."""


class PreconditionError(PublishError):
    """The action is missing data it needs; nothing was sent."""


class RemoteApiError(PublishError):
    """A wiki API call failed or returned an API-level error object."""

    def __init__(self, info: str, code: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(info)
        self.info = info
        self.code = code
        self.status = status

    def __str__(self) -> str:
        if self.code:
            return f"{self.code}: {self.info}"
        return self.info


class UnresolvedReferenceError(PublishError):
    """A claim references an entity that cannot be resolved to a Q-ID."""


class ClaimBatchError(PublishError):
    def __init__(self, entity_id: str, failures: dict[str, str]) -> None:
        self.entity_id = entity_id
        self.failures = dict(failures)
        summary = "; ".join(f"{prop}: {message}" for prop, message in self.failures.items())
        super().__init__(f"{len(self.failures)} claim(s) failed on {entity_id}: {summary}")


class PlanValidationError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ActionStateError(Exception):
    """A scheduler operation is not allowed in the action's current state."""
