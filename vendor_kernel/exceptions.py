"""
Typed exception hierarchy for the vendor finance core.

Every error carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as attributes, so callers catch by type and render
by field instead of parsing messages:

    try:
        service.approve(payment_id, actor)
    except DualControlUnsatisfiedError as e:
        render_banner(e.message)          # "You have already approved..."
    except InvalidTransitionError as e:
        refetch_and_redecide(e.current_state)

Hierarchy::

    VendorKernelError
    +-- ValidationError
    |   +-- InvalidCurrencyError
    +-- EntityNotFoundError
    +-- InvalidTransitionError
    +-- InvalidStateError
    +-- DualControlUnsatisfiedError
    +-- RepositoryError
        +-- AlreadyDeletedOrNotFoundError
        +-- NotDeletedOrNotFoundError
        +-- SoftDeleteNotPermittedError

Error codes:

    VALIDATION_ERROR             missing / malformed input, unknown enum value
    INVALID_CURRENCY             not an ISO 4217 code
    ENTITY_NOT_FOUND             id does not resolve to a visible row
    INVALID_TRANSITION           state machine rejected the requested edge
    INVALID_STATE                record is not in the state the operation needs
    DUAL_CONTROL_UNSATISFIED     second distinct approver still required
    ALREADY_DELETED_OR_NOT_FOUND soft delete guard rejected the write
    NOT_DELETED_OR_NOT_FOUND     restore guard rejected the write
    SOFT_DELETE_NOT_PERMITTED    entity is not in the soft-delete registry

All errors are raised synchronously and never retried by the core.
Transition failures are terminal for the call only: callers re-fetch and
re-decide.
"""

from typing import Any


class VendorKernelError(Exception):
    """Base exception for all vendor finance core errors."""

    code: str = "VENDOR_KERNEL_ERROR"


# Validation


class ValidationError(VendorKernelError):
    """Required input missing or malformed."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: Any = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid {field}: {reason}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a recognised ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: Any):
        self.currency = currency
        super().__init__(
            "currency",
            f"'{currency}' is not a valid ISO 4217 currency code",
            value=currency,
        )


# Lookup


class EntityNotFoundError(VendorKernelError):
    """Entity with the given id does not exist (or is not visible)."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# State machines


class InvalidTransitionError(VendorKernelError):
    """A state machine rejected the requested (current, desired) edge.

    Also raised when a conditional update loses a race: the state the
    caller read has already moved on by the time the write executes.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str,
        desired_state: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.desired_state = desired_state
        self.reason = reason
        message = (
            f"{entity_type} {entity_id}: cannot transition "
            f"'{current_state}' -> '{desired_state}'"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidStateError(VendorKernelError):
    """Record is not in the state the operation requires."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current_state: str,
        required_state: str,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.required_state = required_state
        super().__init__(
            f"{entity_type} {entity_id} is '{current_state}', "
            f"operation requires '{required_state}'"
        )


class DualControlUnsatisfiedError(VendorKernelError):
    """Approval refused by the dual-control rule.

    ``reason`` is the machine-readable DualControlReason value; ``message``
    is the human-readable text the caller is expected to render verbatim.
    """

    code: str = "DUAL_CONTROL_UNSATISFIED"

    def __init__(self, payment_id: Any, actor_id: Any, reason: str, message: str):
        self.payment_id = str(payment_id)
        self.actor_id = str(actor_id)
        self.reason = reason
        self.message = message
        super().__init__(message)


# Repository guards


class RepositoryError(VendorKernelError):
    """Base exception for repository conditional-write failures."""

    code: str = "REPOSITORY_ERROR"


class AlreadyDeletedOrNotFoundError(RepositoryError):
    """Soft delete matched no active row."""

    code: str = "ALREADY_DELETED_OR_NOT_FOUND"

    def __init__(self, table: str, entity_id: Any):
        self.table = table
        self.entity_id = str(entity_id)
        super().__init__(f"Record {entity_id} in {table} not found or already deleted")


class NotDeletedOrNotFoundError(RepositoryError):
    """Restore matched no soft-deleted row."""

    code: str = "NOT_DELETED_OR_NOT_FOUND"

    def __init__(self, table: str, entity_id: Any):
        self.table = table
        self.entity_id = str(entity_id)
        super().__init__(f"Record {entity_id} in {table} not found or already active")


class SoftDeleteNotPermittedError(RepositoryError):
    """Entity is not registered for soft delete."""

    code: str = "SOFT_DELETE_NOT_PERMITTED"

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Soft delete is not enabled for table '{table}'")
