"""
Pure domain layer.

Frozen DTOs, the serial/token codec, the voucher state machine and the
store/renderer contracts.  No ORM, no database, no ambient clock.
"""

from voucher_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from voucher_kernel.domain.codec import SerialTokenCodec, VerificationPayload
from voucher_kernel.domain.rendering import (
    Artifact,
    ArtifactRenderer,
    RenderFormat,
    resolve_fields,
)
from voucher_kernel.domain.serial import (
    SerialParts,
    format_serial,
    generate_serial,
    parse_serial,
    validate_serial,
)
from voucher_kernel.domain.state_machine import (
    TRANSITION_TABLE,
    VoucherStateMachine,
    is_redeemable,
    is_reprintable,
)
from voucher_kernel.domain.store import VoucherStore
from voucher_kernel.domain.types import (
    AuditAction,
    BatchStatus,
    DateRange,
    Pagination,
    RecipientInfo,
    TransitionContext,
    TransitionResult,
    ValueType,
    Voucher,
    VoucherAuditRecord,
    VoucherBatch,
    VoucherFilter,
    VoucherMutation,
    VoucherStatus,
    VoucherTemplate,
)

__all__ = [
    "Artifact",
    "ArtifactRenderer",
    "AuditAction",
    "BatchStatus",
    "Clock",
    "DateRange",
    "DeterministicClock",
    "Pagination",
    "RecipientInfo",
    "RenderFormat",
    "SerialParts",
    "SerialTokenCodec",
    "SystemClock",
    "TRANSITION_TABLE",
    "TransitionContext",
    "TransitionResult",
    "ValueType",
    "VerificationPayload",
    "Voucher",
    "VoucherAuditRecord",
    "VoucherBatch",
    "VoucherFilter",
    "VoucherMutation",
    "VoucherStateMachine",
    "VoucherStatus",
    "VoucherStore",
    "VoucherTemplate",
    "format_serial",
    "generate_serial",
    "is_redeemable",
    "is_reprintable",
    "parse_serial",
    "resolve_fields",
    "validate_serial",
]
