"""
VoucherStore protocol -- the persistence contract the engine consumes.

Contract:
    The engine never talks to a database directly.  It needs exactly:
    fetch by id(s) / serial / filter, compare-and-swap update, append-only
    audit records, template lookup, batch records, and a per-item unit of
    work (SAVEPOINT in SQL, snapshot/restore in memory).

Implementations:
    - ``voucher_kernel.services.sql_store.SqlVoucherStore`` (SQLAlchemy).
    - ``voucher_kernel.services.memory_store.InMemoryVoucherStore``.

Concurrency:
    ``update()`` MUST be a compare-and-swap on status: if the stored status
    differs from ``expected_status`` it raises ConcurrentModificationError
    and writes nothing.  ``thread_safe`` tells the batch processor whether
    chunks may run on parallel workers.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable
from uuid import UUID

from voucher_kernel.domain.types import (
    BatchStatus,
    Pagination,
    Voucher,
    VoucherAuditRecord,
    VoucherBatch,
    VoucherFilter,
    VoucherMutation,
    VoucherStatus,
    VoucherTemplate,
)


@runtime_checkable
class VoucherStore(Protocol):
    """Persistence contract for vouchers, templates, audit records and batches."""

    @property
    def thread_safe(self) -> bool: ...

    # -- vouchers --------------------------------------------------------------

    def get_by_id(self, voucher_id: UUID) -> Voucher:
        """Raises VoucherNotFoundError."""
        ...

    def get_by_ids(self, voucher_ids: Sequence[UUID]) -> dict[UUID, Voucher]:
        """Vouchers keyed by id; unknown ids are simply absent."""
        ...

    def get_by_serial(self, serial_no: str) -> Voucher:
        """Raises VoucherNotFoundError."""
        ...

    def list_by_filter(
        self,
        voucher_filter: VoucherFilter,
        pagination: Pagination | None = None,
    ) -> list[Voucher]: ...

    def add_voucher(self, voucher: Voucher) -> Voucher:
        """Raises DuplicateSerialError if the serial is taken."""
        ...

    def update(
        self,
        voucher_id: UUID,
        expected_status: VoucherStatus,
        mutation: VoucherMutation,
    ) -> Voucher:
        """Compare-and-swap on status.

        Raises:
            VoucherNotFoundError: unknown id.
            ConcurrentModificationError: stored status != expected_status.
        """
        ...

    def unit_of_work(self) -> AbstractContextManager[None]:
        """Scope in which writes commit together or roll back together."""
        ...

    # -- audit -----------------------------------------------------------------

    def append_audit_record(self, record: VoucherAuditRecord) -> VoucherAuditRecord:
        """Assign seq / hash chain and persist.  Returns the sealed record."""
        ...

    def list_audit_records(self, voucher_id: UUID | None = None) -> list[VoucherAuditRecord]:
        """Records in seq order, optionally for one voucher."""
        ...

    # -- templates -------------------------------------------------------------

    def add_template(self, template: VoucherTemplate) -> VoucherTemplate: ...

    def get_template(self, template_id: UUID) -> VoucherTemplate:
        """Raises TemplateNotFoundError."""
        ...

    # -- batch records ---------------------------------------------------------

    def add_batch(self, batch: VoucherBatch) -> VoucherBatch: ...

    def get_batch(self, batch_id: UUID) -> VoucherBatch:
        """Raises BatchNotFoundError."""
        ...

    def get_batch_by_token(self, share_token: str) -> VoucherBatch:
        """Raises BatchNotFoundError."""
        ...

    def record_batch_progress(
        self, batch_id: UUID, generated: int, failed: int,
    ) -> VoucherBatch:
        """Add to generated/failed counts.  Raises BatchImmutableError."""
        ...

    def finish_batch(
        self, batch_id: UUID, status: BatchStatus, completed_at: datetime,
    ) -> VoucherBatch:
        """Move to COMPLETED / FAILED.  Raises BatchImmutableError."""
        ...

    def record_download(self, batch_id: UUID) -> VoucherBatch:
        """Increment download_count; allowed on terminal batches."""
        ...
