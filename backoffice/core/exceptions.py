"""
Back-office exception hierarchy.

Services raise these canonical types; blueprints translate them once into
consistent HTTP responses via ``api_error``:

    ValidationError        → 400  (malformed input, rejected before any I/O)
    NotFoundError          → 404
    ConflictError          → 409  (rows no longer eligible; whole batch rejected)
    AccountingGatewayError → retried by the document job attempt counter

Usage:
    from backoffice.core.exceptions import ConflictError, ValidationError

    raise ValidationError("invoiceNumber is required", details={"invoiceNumber": "required"})
    raise ConflictError("TimeRecord", "2 of 3 rows are already billed")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "GeneratedDocument").
        resource_id: The key that was looked up. Included in logs and message.
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
    """Raised when input is malformed or violates a business rule.

    Always raised before any store mutation, so no side effects occur.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the store state no longer allows the requested transition.

    For lock-and-mark this means at least one requested row was already
    billed (or vanished) between read and lock; nothing was mutated.

    Args:
        resource: Model name.
        message: Human-readable explanation.
        details: Optional structured payload (requested/eligible counts).
    """

    def __init__(self, resource: str, message: str, details: dict | None = None) -> None:
        self.resource = resource
        self.details = details or {}
        super().__init__(message)


class AccountingGatewayError(Exception):
    """Raised when a call to the accounting system fails.

    Covers non-2xx responses, timeouts and network errors. The gateway
    does not retry; the document worker counts the failure as an attempt.

    Args:
        message: Human-readable explanation (truncated response body included).
        status_code: HTTP status, or None for network-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
