"""
Typed exception hierarchy for the workflow kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Dashboards must tell an approver precisely why an action was refused:
someone else already acted, the request is closed, it is not their turn,
or the store is down and the action can be retried.  Parsing message
strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        gateway.transition(...)
    except Exception as e:
        if "not your turn" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        gateway.transition(...)
    except WrongApproverError as e:
        flash(f"Waiting on {e.expected_role}")       # Structured data
        api_response(code=e.code)                     # Machine-readable
    except PersistenceUnavailableError:
        retry_later()                                 # e.retryable is True

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- UnknownRequestKindError
    |   +-- InvalidPayloadError
    |
    +-- TransitionError
    |   +-- StaleOrTerminalError
    |   +-- WrongApproverError
    |   +-- InvalidActionError
    |   +-- RejectionReasonRequiredError
    |   +-- IdempotencyKeyReusedError
    |
    +-- RoutingError
    |   +-- InvalidRoutingError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- PersistenceError
    |   +-- PersistenceUnavailableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
    |   +-- HistoryInconsistencyError
    |
    +-- NotificationError
        +-- NotificationNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|-------------------------------------
Request       | REQUEST_NOT_FOUND          | Request id doesn't exist
              | UNKNOWN_REQUEST_KIND       | Kind has no registered template
              | INVALID_PAYLOAD            | Payload is not a JSON object
--------------|----------------------------|-------------------------------------
Transition    | STALE_OR_TERMINAL          | Acting on an approved/rejected request
              | WRONG_APPROVER             | Actor role != current approver role
              | INVALID_ACTION             | Action is not approve/reject
              | REJECTION_REASON_REQUIRED  | Reject without comment on a kind
              |                            | that requires a reason
              | IDEMPOTENCY_KEY_REUSED     | Key already recorded for another
              |                            | role, actor or action
--------------|----------------------------|-------------------------------------
Routing       | INVALID_ROUTING            | No next role can be resolved
--------------|----------------------------|-------------------------------------
Concurrency   | CONCURRENT_MODIFICATION    | Version check failed (lost update)
--------------|----------------------------|-------------------------------------
Persistence   | PERSISTENCE_UNAVAILABLE    | Store I/O failed; retry whole call
--------------|----------------------------|-------------------------------------
Immutability  | IMMUTABILITY_VIOLATION     | History rewrite / request delete
--------------|----------------------------|-------------------------------------
Audit         | HISTORY_INCONSISTENT       | Stored status != replayed history
--------------|----------------------------|-------------------------------------
Notification  | NOTIFICATION_NOT_FOUND     | Notification id doesn't exist

===============================================================================
RETRY POLICY
===============================================================================

Nothing is retried inside the kernel.  ``retryable`` is a class attribute
that tells callers which errors may be retried verbatim.  Only
``PersistenceUnavailableError`` is retryable; approve/reject are not safe
to blind-retry otherwise (pass an ``idempotency_key`` to make the retry a
no-op if the first attempt did land).
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"
    retryable: bool = False


# Request-related exceptions


class RequestError(WorkflowKernelError):
    """Base exception for request lookup and creation errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """Workflow request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Workflow request not found: {request_id}")


class UnknownRequestKindError(RequestError):
    """No workflow template is registered for the request kind."""

    code: str = "UNKNOWN_REQUEST_KIND"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No workflow template registered for kind: {kind}")


class InvalidPayloadError(RequestError):
    """Request payload is not a JSON object."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid payload for {kind} request: {reason}")


# Transition-related exceptions


class TransitionError(WorkflowKernelError):
    """Base exception for refused transitions."""

    code: str = "TRANSITION_ERROR"


class StaleOrTerminalError(TransitionError):
    """Transition attempted on a request that is already approved or rejected."""

    code: str = "STALE_OR_TERMINAL"

    def __init__(self, request_id: str, phase: str, stage: str):
        self.request_id = request_id
        self.phase = phase
        self.stage = stage
        super().__init__(
            f"Request {request_id} is closed ({phase} at {stage}); "
            "no further transitions are accepted"
        )


class WrongApproverError(TransitionError):
    """Actor role does not match the request's current approver role."""

    code: str = "WRONG_APPROVER"

    def __init__(self, request_id: str, actor_role: str, expected_role: str | None):
        self.request_id = request_id
        self.actor_role = actor_role
        self.expected_role = expected_role
        super().__init__(
            f"Role '{actor_role}' cannot act on request {request_id}: "
            f"waiting on '{expected_role}'"
        )


class InvalidActionError(TransitionError):
    """Action is not one of the supported transition actions."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unsupported workflow action: {action!r}")


class RejectionReasonRequiredError(TransitionError):
    """Rejecting this kind of request requires a non-empty comment."""

    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, request_id: str, kind: str):
        self.request_id = request_id
        self.kind = kind
        super().__init__(
            f"A reason is required to reject {kind} request {request_id}"
        )


class IdempotencyKeyReusedError(TransitionError):
    """An idempotency key already recorded for a different command on this request."""

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, request_id: str, idempotency_key: str, recorded_seq: int):
        self.request_id = request_id
        self.idempotency_key = idempotency_key
        self.recorded_seq = recorded_seq
        super().__init__(
            f"Idempotency key {idempotency_key!r} on request {request_id} "
            f"belongs to history entry {recorded_seq}, not this command"
        )


# Routing-related exceptions


class RoutingError(WorkflowKernelError):
    """Base exception for routing errors."""

    code: str = "ROUTING_ERROR"


class InvalidRoutingError(RoutingError):
    """No next role can be resolved for the current stage."""

    code: str = "INVALID_ROUTING"

    def __init__(self, kind: str, current_role: str, reason: str):
        self.kind = kind
        self.current_role = current_role
        self.reason = reason
        super().__init__(
            f"Cannot route {kind} request from '{current_role}': {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Request was modified by another transaction after it was read."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Concurrent modification of request {request_id}: "
            "another approver acted first"
        )


# Persistence-related exceptions


class PersistenceError(WorkflowKernelError):
    """Base exception for store I/O errors."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceUnavailableError(PersistenceError):
    """
    The store failed after validation passed.

    The transaction was rolled back; callers should retry the whole
    operation, not just the write.
    """

    code: str = "PERSISTENCE_UNAVAILABLE"
    retryable: bool = True

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to rewrite history or delete a workflow record.

    History entries are append-only and requests are retained forever
    as audit records.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit-related exceptions


class AuditError(WorkflowKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class HistoryInconsistencyError(AuditError):
    """Stored status does not match the status replayed from history."""

    code: str = "HISTORY_INCONSISTENT"

    def __init__(self, request_id: str, expected: str, actual: str):
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History of request {request_id} replays to {expected}, "
            f"but stored status is {actual}"
        )


# Notification-related exceptions


class NotificationError(WorkflowKernelError):
    """Base exception for notification errors."""

    code: str = "NOTIFICATION_ERROR"


class NotificationNotFoundError(NotificationError):
    """Notification with given ID was not found."""

    code: str = "NOTIFICATION_NOT_FOUND"

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")
