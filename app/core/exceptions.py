"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map them to consistent HTTP status codes. The circuit deletion engine
never lets them escape its public operations: it converts them into result
values (PolicyDecision, DeletionResult, ActivationCheck) so each layer's
contract is visible in its return type rather than in message strings.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Circuit", resource_id=42)
    raise ValidationError("title is required", details={"field": "title"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Circuit", "Status").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Circuit administration raises it, e.g. for a second initial status.
    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown for API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a uniqueness rule. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


# ── Circuit engine error kinds ───────────────────────────────────────────────


class DependencyCheckError(Exception):
    """A single dependency category could not be queried.

    Never fatal: the analyzer reports the category as blocking instead.
    """

    def __init__(self, category: str, circuit_id: int, cause: Exception | None = None) -> None:
        self.category = category
        self.circuit_id = circuit_id
        self.cause = cause
        msg = f"Failed to check {category} dependencies for circuit {circuit_id}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class BackupError(Exception):
    """A pre-deletion backup could not be produced. Downgraded to a warning."""


class DeleteFailure(Exception):
    """Deletion of one circuit failed. Captured per circuit, never batch-fatal.

    Args:
        circuit_id: The circuit whose deletion failed.
        reason: Store-level or guard explanation.
    """

    def __init__(self, circuit_id: int, reason: str) -> None:
        self.circuit_id = circuit_id
        self.reason = reason
        super().__init__(reason)
