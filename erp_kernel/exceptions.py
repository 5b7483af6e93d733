"""
Typed Exception Hierarchy for the ERP Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the approval core (the thin API layer, batch scripts, tests)
translate failures into transport responses.  Matching on message text is
fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        coordinator.submit_approval(...)
    except OutOfOrderError as e:
        api_response(409, code=e.code, expected=e.authoritative_tier)
    except NotAuthorizedError as e:
        api_response(403, code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- ApprovalError
    |   +-- RequestNotFoundError        (alias: NotFoundError)
    |   +-- NotAuthorizedError
    |   |   +-- OutOfOrderError
    |   +-- InvalidActionError
    |       +-- UnknownStatusError
    |       +-- InvalidRequestError
    |
    +-- StoreError
    |   +-- DocumentNotFoundError
    |   +-- TransientStoreError
    |       +-- OptimisticLockError
    |
    +-- NotificationDispatchError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
Approval        | REQUEST_NOT_FOUND             | Request id does not exist
                | NOT_AUTHORIZED                | Actor is in no approval tier
                | OUT_OF_ORDER                  | Actor's tier is not the active one
                | INVALID_ACTION                | Request is terminal / corrupt line
                | UNKNOWN_STATUS                | Stored status string not recognized
                | INVALID_REQUEST               | Submission payload rejected
----------------|-------------------------------|-------------------------------------
Store           | DOCUMENT_NOT_FOUND            | update() on a missing document
                | TRANSIENT_STORE_ERROR         | Store unavailable / retries exhausted
                | OPTIMISTIC_LOCK_CONFLICT      | Document changed since it was read
----------------|-------------------------------|-------------------------------------
Notification    | NOTIFICATION_DISPATCH_FAILED  | Email delivery failed (never raised
                |                               | to callers of the coordinator)

===============================================================================
RETRY POLICY
===============================================================================

Only ``TransientStoreError`` (and its subclass ``OptimisticLockError``) is
safe to retry, and only by recomputing the whole decision from a fresh read.
``NotAuthorizedError`` and ``InvalidActionError`` are never retried: a retry
cannot change eligibility.
"""


class ErpKernelError(Exception):
    """
    Base exception for all ERP kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ERP_KERNEL_ERROR"


# Approval-related exceptions


class ApprovalError(ErpKernelError):
    """Base exception for approval workflow errors."""

    code: str = "APPROVAL_ERROR"


class RequestNotFoundError(ApprovalError):
    """Referenced approval request does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, document_kind: str, request_id: str, owner: str):
        self.document_kind = document_kind
        self.request_id = request_id
        self.owner = owner
        super().__init__(
            f"{document_kind} request {request_id} of {owner} not found"
        )


NotFoundError = RequestNotFoundError


class NotAuthorizedError(ApprovalError):
    """Actor is not a member of the tier authoritative for the current status."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, request_id: str, actor: str, status: str):
        self.request_id = request_id
        self.actor = actor
        self.status = status
        super().__init__(
            f"{actor} is not allowed to act on request {request_id} "
            f"in status {status}"
        )


class OutOfOrderError(NotAuthorizedError):
    """
    Actor is an approver of this request, but not of the active tier.

    Raised when an earlier-tier approver acts after their turn, or a
    later-tier approver acts before theirs.
    """

    code: str = "OUT_OF_ORDER"

    def __init__(
        self,
        request_id: str,
        actor: str,
        status: str,
        actor_tier: str,
        authoritative_tier: str,
    ):
        self.actor_tier = actor_tier
        self.authoritative_tier = authoritative_tier
        super().__init__(request_id, actor, status)
        self.args = (
            f"{actor} approves at tier {actor_tier} but request {request_id} "
            f"is waiting on tier {authoritative_tier}",
        )


class InvalidActionError(ApprovalError):
    """The requested action is not valid for the request's current state."""

    code: str = "INVALID_ACTION"

    def __init__(self, request_id: str, status: str, reason: str):
        self.request_id = request_id
        self.status = status
        self.reason = reason
        super().__init__(
            f"Cannot act on request {request_id} in status {status}: {reason}"
        )


class UnknownStatusError(InvalidActionError):
    """Stored status string is neither canonical nor a known legacy label."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, raw_status: str, request_id: str = ""):
        self.raw_status = raw_status
        super().__init__(
            request_id, raw_status, f"unrecognized status label {raw_status!r}",
        )


class InvalidRequestError(InvalidActionError):
    """A new request or an edit was rejected before anything was written."""

    code: str = "INVALID_REQUEST"

    def __init__(self, reason: str, request_id: str = ""):
        super().__init__(request_id, "", reason)


# Store-related exceptions


class StoreError(ErpKernelError):
    """Base exception for document store errors."""

    code: str = "STORE_ERROR"


class DocumentNotFoundError(StoreError):
    """An update targeted a document that does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document not found: {path}")


class TransientStoreError(StoreError):
    """
    The store could not complete a transaction.

    Safe to retry with the whole decision recomputed from a fresh read.
    """

    code: str = "TRANSIENT_STORE_ERROR"

    def __init__(self, reason: str, attempts: int = 1):
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Transaction failed after {attempts} attempt(s): {reason}")


class OptimisticLockError(TransientStoreError):
    """A document read by the transaction was modified before commit."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"document {path} was modified by another transaction"
        )


# Notification-related exceptions


class NotificationDispatchError(ErpKernelError):
    """Email delivery for a committed notification failed. Logged only."""

    code: str = "NOTIFICATION_DISPATCH_FAILED"

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Email to {target} failed: {reason}")
