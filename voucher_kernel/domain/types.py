"""
voucher_kernel.domain.types -- Pure frozen dataclasses for the voucher engine.

ZERO I/O.  Every DTO is a frozen dataclass; state changes produce new
instances via ``dataclasses.replace`` so a rejected transition can never
leave a half-mutated voucher behind.

Invariants enforced:
    - ``usage_amount`` is None unless status is USED, and never exceeds
      ``amount`` (checked by the state machine, asserted here on build).
    - ``serial_no`` is immutable: VoucherMutation has no serial field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Enums
# =============================================================================


class VoucherStatus(str, Enum):
    """Voucher lifecycle status."""

    REGISTERED = "registered"  # Recipient registered, never printed
    ISSUED = "issued"  # Printed or sent to a mobile holder
    USED = "used"  # Redeemed at a site
    RECALLED = "recalled"  # Collected back from the holder
    DISPOSED = "disposed"  # Destroyed / voided


class ValueType(str, Enum):
    """Nominal value type defined by a voucher template."""

    FIXED_ITEM = "fixed_item"  # Exchanged for a specific item
    CASH = "cash"  # Cash value, usage amount may be below nominal


class AuditAction(str, Enum):
    """Kind of lifecycle change recorded in the audit trail."""

    REGISTER = "register"
    ISSUE = "issue"
    REISSUE = "reissue"
    REDEEM = "redeem"
    RECALL = "recall"
    DISPOSE = "dispose"


# =============================================================================
# Template and voucher
# =============================================================================


@dataclass(frozen=True)
class VoucherTemplate:
    """Shared configuration applied to many vouchers."""

    template_id: UUID
    name: str
    value_type: ValueType
    amount: int
    valid_until: date | None = None
    eligible_site_ids: tuple[str, ...] = ()
    is_active: bool = True

    def is_expired(self, as_of: date) -> bool:
        return self.valid_until is not None and as_of > self.valid_until

    def accepts_site(self, site_id: str) -> bool:
        return not self.eligible_site_ids or site_id in self.eligible_site_ids


@dataclass(frozen=True)
class RecipientInfo:
    """Holder details captured at registration."""

    association: str
    member_id: str
    name: str
    dob: date | None = None
    phone: str | None = None


@dataclass(frozen=True)
class Voucher:
    """Immutable snapshot of a single voucher."""

    voucher_id: UUID
    serial_no: str
    template_id: UUID
    association: str
    member_id: str
    name: str
    amount: int
    status: VoucherStatus = VoucherStatus.REGISTERED
    dob: date | None = None
    phone: str | None = None
    usage_amount: int | None = None
    issued_at: datetime | None = None
    used_at: datetime | None = None
    used_at_site_id: str | None = None
    used_by: UUID | None = None
    recalled_at: datetime | None = None
    disposed_at: datetime | None = None
    recall_reason: str | None = None
    notes: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Voucher amount cannot be negative: {self.amount}")
        if self.usage_amount is not None and self.usage_amount > self.amount:
            raise ValueError(
                f"usage_amount {self.usage_amount} exceeds amount {self.amount}"
            )


@dataclass(frozen=True)
class VoucherMutation:
    """
    Field changes produced by one transition.

    Applied by ``VoucherStore.update()`` under a compare-and-swap on
    ``expected_status``.  Only lifecycle fields are present; identity and
    classification fields cannot be changed through a mutation.
    """

    status: VoucherStatus
    issued_at: datetime | None = None
    used_at: datetime | None = None
    used_at_site_id: str | None = None
    used_by: UUID | None = None
    usage_amount: int | None = None
    recalled_at: datetime | None = None
    disposed_at: datetime | None = None
    recall_reason: str | None = None
    notes: str | None = None

    def changed_fields(self) -> dict[str, Any]:
        """Fields to write: status always, the rest only when set."""
        changes: dict[str, Any] = {"status": self.status}
        for name in (
            "issued_at",
            "used_at",
            "used_at_site_id",
            "used_by",
            "usage_amount",
            "recalled_at",
            "disposed_at",
            "recall_reason",
            "notes",
        ):
            value = getattr(self, name)
            if value is not None:
                changes[name] = value
        return changes


@dataclass(frozen=True)
class TransitionContext:
    """Caller-supplied inputs for one transition."""

    actor_id: UUID
    as_of: datetime
    site_id: str | None = None
    usage_amount: int | None = None
    reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class VoucherAuditRecord:
    """
    Append-only record of one status change.

    ``seq``, ``prev_hash`` and ``hash`` are assigned by the store when the
    record is appended (see ``voucher_kernel.utils.hashing.seal_audit_record``).
    """

    record_id: UUID
    voucher_id: UUID
    serial_no: str
    action: AuditAction
    previous_status: VoucherStatus | None
    new_status: VoucherStatus
    actor_id: UUID
    occurred_at: datetime
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    seq: int | None = None
    prev_hash: str | None = None
    hash: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful state machine transition."""

    voucher: Voucher
    mutation: VoucherMutation
    audit_record: VoucherAuditRecord

    @property
    def previous_status(self) -> VoucherStatus | None:
        return self.audit_record.previous_status

    @property
    def new_status(self) -> VoucherStatus:
        return self.voucher.status


# =============================================================================
# Query DTOs
# =============================================================================


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range on one timestamp column."""

    column: str  # "issued_at" | "used_at" | "created_at"
    start: date | None = None
    end: date | None = None

    COLUMNS = ("issued_at", "used_at", "created_at")

    def __post_init__(self) -> None:
        if self.column not in self.COLUMNS:
            raise ValueError(f"Unsupported date range column: {self.column}")
        if self.start and self.end and self.start > self.end:
            raise ValueError(f"Date range start {self.start} is after end {self.end}")

    def bounds(self) -> tuple[datetime | None, datetime | None]:
        """Half-open UTC bounds: ``[start 00:00, day after end 00:00)``."""
        lower = upper = None
        if self.start is not None:
            lower = datetime.combine(self.start, time.min, tzinfo=timezone.utc)
        if self.end is not None:
            upper = datetime.combine(
                self.end + timedelta(days=1), time.min, tzinfo=timezone.utc,
            )
        return lower, upper

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        lower, upper = self.bounds()
        if lower is not None and value < lower:
            return False
        return upper is None or value < upper


@dataclass(frozen=True)
class Pagination:
    """Offset pagination for ``list_by_filter``."""

    offset: int = 0
    limit: int = 1000

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("offset cannot be negative")
        if self.limit <= 0:
            raise ValueError("limit must be positive")


@dataclass(frozen=True)
class VoucherFilter:
    """Filter for ``VoucherStore.list_by_filter``."""

    template_id: UUID | None = None
    statuses: tuple[VoucherStatus, ...] = ()
    date_ranges: tuple[DateRange, ...] = ()
    association: str | None = None
    serial_prefix: str | None = None


# =============================================================================
# Batch record
# =============================================================================


class BatchStatus(str, Enum):
    """Lifecycle of a bulk/mobile issuance batch record."""

    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class VoucherBatch:
    """
    Named group of vouchers processed together.

    Vouchers are referenced by id only; a voucher keeps its own identity
    and can be read outside its batch.  Once COMPLETED or FAILED, only
    ``download_count`` may change.
    """

    batch_id: UUID
    name: str
    owner_id: UUID
    template_id: UUID | None
    voucher_ids: tuple[UUID, ...]
    status: BatchStatus = BatchStatus.GENERATING
    total_count: int = 0
    generated_count: int = 0
    failed_count: int = 0
    share_token: str | None = None
    link_expires_at: datetime | None = None
    download_count: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (BatchStatus.COMPLETED, BatchStatus.FAILED)
