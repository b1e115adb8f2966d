"""
voucher_batch.domain.types -- Pure frozen dataclasses for batch runs.

ZERO I/O.  Result DTOs are frozen dataclasses with tuples for collections.

Invariants enforced:
    - A BatchRunResult holds exactly one BatchItemResult per input id, in
      input order, whatever happened to the run.
    - ``chunk_size`` never exceeds MAX_CHUNK_SIZE.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from voucher_kernel.domain.rendering import Artifact
from voucher_kernel.domain.types import VoucherBatch, VoucherStatus
from voucher_kernel.exceptions import PartialBatchFailureError

MAX_CHUNK_SIZE = 1000

# Actor recorded when a run is started without an explicit user.
SYSTEM_ACTOR_ID = UUID(int=0)

# Result codes produced by the processor itself (not by an exception).
CODE_BATCH_CANCELLED = "BATCH_CANCELLED"
CODE_DUPLICATE_ID = "DUPLICATE_ID"
CODE_STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
CODE_UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


# =============================================================================
# Options
# =============================================================================


@dataclass(frozen=True)
class BatchOptions:
    """Tuning and context for one ``BatchOperationProcessor.run()`` call.

    ``parameters`` carries operation inputs (``site_id``, ``usage_amount``,
    ``reason``, ``notes``) the same way for every operation.
    ``item_parameters`` maps a voucher id to inputs that override
    ``parameters`` for that voucher only.
    """

    chunk_size: int = MAX_CHUNK_SIZE
    workers: int = 1
    chunk_pause_seconds: float = 0.0
    cancel_event: threading.Event | None = None
    batch_id: UUID | None = None
    actor_id: UUID = SYSTEM_ACTOR_ID
    correlation_id: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    item_parameters: Mapping[UUID, Mapping[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(
                f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {self.chunk_size}"
            )
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if self.chunk_pause_seconds < 0:
            raise ValueError("chunk_pause_seconds cannot be negative")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome for one voucher id.

    ``previous_status == new_status`` on success means the voucher was
    already at the target (idempotent replay).  On failure ``code`` is the
    exception's machine-readable code.
    """

    voucher_id: UUID
    success: bool
    message: str
    code: str | None = None
    previous_status: VoucherStatus | None = None
    new_status: VoucherStatus | None = None
    artifact: Artifact | None = None
    duration_ms: int = 0

    @property
    def is_noop(self) -> bool:
        return self.success and self.previous_status == self.new_status


@dataclass(frozen=True)
class BatchRunResult:
    """Aggregate of one run.  Returned even when every item failed.

    ``needs_reconciliation`` is set when the batch record could not be
    brought up to date; the item results are authoritative.
    """

    operation_name: str
    results: tuple[BatchItemResult, ...] = ()
    chunk_sizes: tuple[int, ...] = ()
    cancelled: bool = False
    batch_id: UUID | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
    needs_reconciliation: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def failed_ids(self) -> tuple[UUID, ...]:
        """Ids to resubmit when retrying only the failed subset."""
        return tuple(r.voucher_id for r in self.results if not r.success)

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailureError if any item failed."""
        if self.failure_count:
            raise PartialBatchFailureError(
                self.operation_name, self.success_count, self.failure_count,
            )


@dataclass(frozen=True)
class MobileBatchOutcome:
    """A mobile issuance batch record together with its run result."""

    batch: VoucherBatch
    run: BatchRunResult
