"""
InMemoryVoucherStore -- thread-safe, process-local VoucherStore.

Used by tests and by embedders that keep vouchers elsewhere and only need
the engine's semantics.  Mirrors SqlVoucherStore behavior: CAS updates,
hash-chained audit records, immutable terminal batches.

Units of work hold the store lock and keep an undo journal; an exception
inside the block replays the journal backwards.  Writes made outside a
unit of work apply immediately.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterator, Sequence
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
from voucher_kernel.exceptions import (
    BatchImmutableError,
    BatchNotFoundError,
    ConcurrentModificationError,
    DuplicateSerialError,
    TemplateNotFoundError,
    VoucherNotFoundError,
)
from voucher_kernel.utils.hashing import GENESIS_HASH, seal_audit_record


class InMemoryVoucherStore:
    """VoucherStore kept in dictionaries behind a re-entrant lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._vouchers: dict[UUID, Voucher] = {}
        self._serials: dict[str, UUID] = {}
        self._templates: dict[UUID, VoucherTemplate] = {}
        self._audit: list[VoucherAuditRecord] = []
        self._batches: dict[UUID, VoucherBatch] = {}
        self._tokens: dict[str, UUID] = {}
        self._undo: list[Callable[[], None]] = []
        self._depth = 0

    @property
    def thread_safe(self) -> bool:
        return True

    def _remember(self, undo: Callable[[], None]) -> None:
        if self._depth:
            self._undo.append(undo)

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with self._lock:
            mark = len(self._undo)
            self._depth += 1
            try:
                yield
            except BaseException:
                while len(self._undo) > mark:
                    self._undo.pop()()
                raise
            finally:
                self._depth -= 1
                if not self._depth:
                    self._undo.clear()

    # -------------------------------------------------------------------------
    # Vouchers
    # -------------------------------------------------------------------------

    def get_by_id(self, voucher_id: UUID) -> Voucher:
        with self._lock:
            try:
                return self._vouchers[voucher_id]
            except KeyError:
                raise VoucherNotFoundError(str(voucher_id)) from None

    def get_by_ids(self, voucher_ids: Sequence[UUID]) -> dict[UUID, Voucher]:
        with self._lock:
            return {
                vid: self._vouchers[vid] for vid in voucher_ids if vid in self._vouchers
            }

    def get_by_serial(self, serial_no: str) -> Voucher:
        with self._lock:
            voucher_id = self._serials.get(serial_no)
            if voucher_id is None:
                raise VoucherNotFoundError(serial_no)
            return self._vouchers[voucher_id]

    def list_by_filter(
        self,
        voucher_filter: VoucherFilter,
        pagination: Pagination | None = None,
    ) -> list[Voucher]:
        pagination = pagination or Pagination()
        with self._lock:
            candidates = list(self._vouchers.values())

        matches = [v for v in candidates if _matches(v, voucher_filter)]
        matches.sort(key=lambda v: v.serial_no)
        return matches[pagination.offset:pagination.offset + pagination.limit]

    def add_voucher(self, voucher: Voucher) -> Voucher:
        with self._lock:
            if voucher.serial_no in self._serials:
                raise DuplicateSerialError(voucher.serial_no)
            self._vouchers[voucher.voucher_id] = voucher
            self._serials[voucher.serial_no] = voucher.voucher_id

            def undo() -> None:
                del self._vouchers[voucher.voucher_id]
                del self._serials[voucher.serial_no]

            self._remember(undo)
            return voucher

    def update(
        self,
        voucher_id: UUID,
        expected_status: VoucherStatus,
        mutation: VoucherMutation,
    ) -> Voucher:
        with self._lock:
            current = self.get_by_id(voucher_id)
            if current.status != expected_status:
                raise ConcurrentModificationError(
                    str(voucher_id), expected_status.value, current.status.value,
                )
            updated = replace(current, **mutation.changed_fields())
            self._vouchers[voucher_id] = updated
            self._remember(lambda: self._vouchers.__setitem__(voucher_id, current))
            return updated

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def append_audit_record(self, record: VoucherAuditRecord) -> VoucherAuditRecord:
        with self._lock:
            if self._audit:
                last = self._audit[-1]
                seq, prev_hash = last.seq + 1, last.hash
            else:
                seq, prev_hash = 1, GENESIS_HASH
            sealed = seal_audit_record(record, seq, prev_hash)
            self._audit.append(sealed)
            self._remember(self._audit.pop)
            return sealed

    def list_audit_records(self, voucher_id: UUID | None = None) -> list[VoucherAuditRecord]:
        with self._lock:
            records = list(self._audit)
        if voucher_id is None:
            return records
        return [r for r in records if r.voucher_id == voucher_id]

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def add_template(self, template: VoucherTemplate) -> VoucherTemplate:
        with self._lock:
            self._templates[template.template_id] = template
            return template

    def get_template(self, template_id: UUID) -> VoucherTemplate:
        with self._lock:
            try:
                return self._templates[template_id]
            except KeyError:
                raise TemplateNotFoundError(str(template_id)) from None

    # -------------------------------------------------------------------------
    # Batch records
    # -------------------------------------------------------------------------

    def add_batch(self, batch: VoucherBatch) -> VoucherBatch:
        with self._lock:
            self._batches[batch.batch_id] = batch
            if batch.share_token:
                self._tokens[batch.share_token] = batch.batch_id
            return batch

    def get_batch(self, batch_id: UUID) -> VoucherBatch:
        with self._lock:
            try:
                return self._batches[batch_id]
            except KeyError:
                raise BatchNotFoundError(str(batch_id)) from None

    def get_batch_by_token(self, share_token: str) -> VoucherBatch:
        with self._lock:
            batch_id = self._tokens.get(share_token)
            if batch_id is None:
                raise BatchNotFoundError("<share token>")
            return self._batches[batch_id]

    def record_batch_progress(
        self, batch_id: UUID, generated: int, failed: int,
    ) -> VoucherBatch:
        with self._lock:
            batch = self._get_mutable_batch(batch_id)
            return self._put_batch(replace(
                batch,
                generated_count=batch.generated_count + generated,
                failed_count=batch.failed_count + failed,
            ))

    def finish_batch(
        self, batch_id: UUID, status: BatchStatus, completed_at: datetime,
    ) -> VoucherBatch:
        with self._lock:
            batch = self._get_mutable_batch(batch_id)
            return self._put_batch(replace(batch, status=status, completed_at=completed_at))

    def record_download(self, batch_id: UUID) -> VoucherBatch:
        with self._lock:
            batch = self.get_batch(batch_id)
            return self._put_batch(replace(batch, download_count=batch.download_count + 1))

    def _get_mutable_batch(self, batch_id: UUID) -> VoucherBatch:
        batch = self.get_batch(batch_id)
        if batch.is_terminal:
            raise BatchImmutableError(str(batch_id), batch.status.value)
        return batch

    def _put_batch(self, batch: VoucherBatch) -> VoucherBatch:
        previous = self._batches[batch.batch_id]
        self._batches[batch.batch_id] = batch
        self._remember(lambda: self._batches.__setitem__(batch.batch_id, previous))
        return batch


def _matches(voucher: Voucher, voucher_filter: VoucherFilter) -> bool:
    if voucher_filter.template_id is not None and voucher.template_id != voucher_filter.template_id:
        return False
    if voucher_filter.statuses and voucher.status not in voucher_filter.statuses:
        return False
    if voucher_filter.association is not None and voucher.association != voucher_filter.association:
        return False
    if voucher_filter.serial_prefix and not voucher.serial_no.startswith(voucher_filter.serial_prefix):
        return False
    return all(
        date_range.contains(getattr(voucher, date_range.column))
        for date_range in voucher_filter.date_ranges
    )
