"""
Typed Exception Hierarchy for the Voucher Lifecycle Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (redemption endpoints, batch result tables, scheduled
jobs) must react to failures by TYPE, never by parsing messages:

    try:
        service.redeem(payload, site_id="A", actor_id=actor)
    except AlreadyTerminalError as e:
        show_banner(f"Voucher {e.serial_no} was already {e.current_status}")
    except SignatureMismatchError:
        show_banner("Forged or damaged code")

Every exception has a ``code`` class attribute (machine-readable, stable,
safe to return through an API) and carries its context as attributes.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    VoucherEngineError (base)
    |
    +-- ConfigurationError
    |
    +-- VerificationError
    |   +-- MalformedPayloadError
    |   +-- SignatureMismatchError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   |   +-- AlreadyTerminalError
    |   +-- ValidationFailedError
    |       +-- VoucherExpiredError
    |
    +-- StoreError
    |   +-- VoucherNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- ConcurrentModificationError
    |   +-- DuplicateSerialError
    |   +-- SerialGenerationExhaustedError
    |   +-- StoreUnavailableError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |   +-- ImmutabilityViolationError
    |
    +-- ArtifactError
    |   +-- ArtifactGenerationFailedError
    |
    +-- BatchError
    |   +-- BatchNotFoundError
    |   +-- BatchImmutableError
    |   +-- OperationNotRegisteredError
    |   +-- PartialBatchFailureError
    |
    +-- ShareLinkError
        +-- ShareLinkInvalidError
        +-- ShareLinkExpiredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|------------------------------------
Config       | CONFIGURATION_ERROR           | Missing secret / invalid settings
Verification | MALFORMED_PAYLOAD             | Scanned payload does not parse
             | SIGNATURE_MISMATCH            | Recomputed HMAC differs
Transition   | INVALID_TRANSITION            | Edge not in the transition table
             | ALREADY_TERMINAL              | Voucher already used/recalled/disposed
             | VALIDATION_FAILED             | Site / amount constraint violated
             | VOUCHER_EXPIRED               | Template valid_until has passed
Store        | VOUCHER_NOT_FOUND             | No voucher for id / serial
             | TEMPLATE_NOT_FOUND            | No template for id
             | CONCURRENT_MODIFICATION       | Compare-and-swap lost the race
             | DUPLICATE_SERIAL              | Serial already assigned
             | SERIAL_GENERATION_EXHAUSTED   | Too many serial collisions
             | STORE_UNAVAILABLE             | Backend could not be reached
Audit        | AUDIT_CHAIN_BROKEN            | Hash chain validation failed
             | IMMUTABILITY_VIOLATION        | UPDATE/DELETE on an audit record
Artifact     | ARTIFACT_GENERATION_FAILED    | Renderer failed after state commit
Batch        | BATCH_NOT_FOUND               | No batch record for id
             | BATCH_IMMUTABLE               | Batch already completed / failed
             | OPERATION_NOT_REGISTERED      | Unknown batch operation name
             | PARTIAL_BATCH_FAILURE         | failure_count > 0 (on request)
Share link   | SHARE_LINK_INVALID            | Unknown or forged share token
             | SHARE_LINK_EXPIRED            | Link past its expiry

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Inside a batch run, per-item exceptions are NEVER propagated.  The
   processor records ``exc.code`` and ``str(exc)`` in the item's result.

2. ConcurrentModificationError is surfaced to the immediate caller; the
   engine does not retry on its own.

3. No exception ever carries the codec signing secret.
"""


class VoucherEngineError(Exception):
    """
    Base exception for all voucher engine errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "VOUCHER_ENGINE_ERROR"


class ConfigurationError(VoucherEngineError):
    """Engine configuration is missing or inconsistent."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid configuration for {setting}: {reason}")


# Verification-layer exceptions


class VerificationError(VoucherEngineError):
    """Base exception for scanned-payload verification errors."""

    code: str = "VERIFICATION_ERROR"


class MalformedPayloadError(VerificationError):
    """Payload does not have the ``serial|timestamp|signature`` structure."""

    code: str = "MALFORMED_PAYLOAD"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed voucher payload: {reason}")


class SignatureMismatchError(VerificationError):
    """Recomputed signature does not match the presented one."""

    code: str = "SIGNATURE_MISMATCH"

    def __init__(self, serial_no: str):
        self.serial_no = serial_no
        super().__init__(f"Signature mismatch for voucher payload {serial_no}")


# State machine exceptions


class TransitionError(VoucherEngineError):
    """Base exception for state machine errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """Requested (current, target) pair is not an allowed edge."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, voucher_id: str, current_status: str, target_status: str):
        self.voucher_id = voucher_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Voucher {voucher_id} cannot move from {current_status} "
            f"to {target_status}"
        )


class AlreadyTerminalError(InvalidTransitionError):
    """
    Voucher is in a terminal state incompatible with the request.

    Raised when a used, recalled or disposed voucher is asked to become
    issued or used again.  Subclasses InvalidTransitionError because the
    requested edge is, by definition, not in the transition table.
    """

    code: str = "ALREADY_TERMINAL"

    def __init__(
        self,
        voucher_id: str,
        current_status: str,
        target_status: str,
        serial_no: str | None = None,
    ):
        self.serial_no = serial_no
        super().__init__(voucher_id, current_status, target_status)
        self.args = (
            f"Voucher {serial_no or voucher_id} is already {current_status}; "
            f"cannot become {target_status}",
        )


class ValidationFailedError(TransitionError):
    """Transition edge is allowed but its constraints are violated."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, voucher_id: str, field: str, reason: str):
        self.voucher_id = voucher_id
        self.field = field
        self.reason = reason
        super().__init__(f"Validation failed for voucher {voucher_id} ({field}): {reason}")


class VoucherExpiredError(ValidationFailedError):
    """Voucher's template expiry date has passed."""

    code: str = "VOUCHER_EXPIRED"

    def __init__(self, voucher_id: str, valid_until: str, as_of: str):
        self.valid_until = valid_until
        self.as_of = as_of
        super().__init__(
            voucher_id, "valid_until", f"expired on {valid_until} (as of {as_of})",
        )


# Store-boundary exceptions


class StoreError(VoucherEngineError):
    """Base exception for voucher store errors."""

    code: str = "STORE_ERROR"


class VoucherNotFoundError(StoreError):
    """No voucher matches the given id or serial number."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Voucher not found: {key}")


class TemplateNotFoundError(StoreError):
    """No voucher template matches the given id."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Voucher template not found: {template_id}")


class ConcurrentModificationError(StoreError):
    """Compare-and-swap update found a different status than expected."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, voucher_id: str, expected_status: str, actual_status: str):
        self.voucher_id = voucher_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Voucher {voucher_id} was modified concurrently: "
            f"expected {expected_status}, found {actual_status}"
        )


class DuplicateSerialError(StoreError):
    """Serial number is already assigned to another voucher."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, serial_no: str):
        self.serial_no = serial_no
        super().__init__(f"Serial number already assigned: {serial_no}")


class SerialGenerationExhaustedError(StoreError):
    """Every generated serial collided with an existing one."""

    code: str = "SERIAL_GENERATION_EXHAUSTED"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique serial after {attempts} attempts")


class StoreUnavailableError(StoreError):
    """Backend could not serve the request."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Voucher store unavailable during {operation}: {reason}")


# Audit exceptions


class AuditError(VoucherEngineError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit record hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(AuditError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(f"Cannot {operation} immutable {entity_type} {entity_id}")


# Renderer-boundary exceptions


class ArtifactError(VoucherEngineError):
    """Base exception for artifact rendering errors."""

    code: str = "ARTIFACT_ERROR"


class ArtifactGenerationFailedError(ArtifactError):
    """
    Rendering failed after the status transition was committed.

    The committed status is NOT rolled back; ``committed_status`` tells
    the caller which state the voucher is in now.
    """

    code: str = "ARTIFACT_GENERATION_FAILED"

    def __init__(self, voucher_id: str, committed_status: str, reason: str):
        self.voucher_id = voucher_id
        self.committed_status = committed_status
        self.reason = reason
        super().__init__(
            f"Artifact generation failed for voucher {voucher_id} "
            f"(status {committed_status} kept): {reason}"
        )


# Batch exceptions


class BatchError(VoucherEngineError):
    """Base exception for batch processing errors."""

    code: str = "BATCH_ERROR"


class BatchNotFoundError(BatchError):
    """Batch record with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Voucher batch not found: {batch_id}")


class BatchImmutableError(BatchError):
    """Batch record is completed or failed and may not change."""

    code: str = "BATCH_IMMUTABLE"

    def __init__(self, batch_id: str, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Voucher batch {batch_id} is {status} and cannot be modified")


class OperationNotRegisteredError(BatchError):
    """No batch operation is registered under the given name."""

    code: str = "OPERATION_NOT_REGISTERED"

    def __init__(self, operation_name: str, available: tuple[str, ...] = ()):
        self.operation_name = operation_name
        self.available = available
        super().__init__(
            f"Batch operation '{operation_name}' is not registered. "
            f"Available: {list(available)}"
        )


class PartialBatchFailureError(BatchError):
    """Batch finished with at least one failed item."""

    code: str = "PARTIAL_BATCH_FAILURE"

    def __init__(self, operation_name: str, success_count: int, failure_count: int):
        self.operation_name = operation_name
        self.success_count = success_count
        self.failure_count = failure_count
        super().__init__(
            f"Batch '{operation_name}' finished with {failure_count} failure(s) "
            f"and {success_count} success(es)"
        )


# Share link exceptions


class ShareLinkError(VoucherEngineError):
    """Base exception for batch share-link errors."""

    code: str = "SHARE_LINK_ERROR"


class ShareLinkInvalidError(ShareLinkError):
    """Token is unknown or its signature does not verify."""

    code: str = "SHARE_LINK_INVALID"

    def __init__(self):
        super().__init__("Share link is invalid")


class ShareLinkExpiredError(ShareLinkError):
    """Share link is past its expiry."""

    code: str = "SHARE_LINK_EXPIRED"

    def __init__(self, batch_id: str, expired_at: str):
        self.batch_id = batch_id
        self.expired_at = expired_at
        super().__init__(f"Share link for batch {batch_id} expired at {expired_at}")
