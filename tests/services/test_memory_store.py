"""Tests for InMemoryVoucherStore: CAS updates, units of work, filters, batches."""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from voucher_kernel.domain.types import (
    BatchStatus,
    DateRange,
    Pagination,
    VoucherBatch,
    VoucherFilter,
    VoucherMutation,
    VoucherStatus,
)
from voucher_kernel.exceptions import (
    BatchImmutableError,
    BatchNotFoundError,
    ConcurrentModificationError,
    DuplicateSerialError,
    TemplateNotFoundError,
    VoucherNotFoundError,
)

from conftest import FIXED_NOW, make_voucher

ISSUE = VoucherMutation(status=VoucherStatus.ISSUED, issued_at=FIXED_NOW)


class TestVoucherReads:

    def test_get_by_id_and_serial(self, memory_store, seed_vouchers):
        voucher = seed_vouchers(1)[0]
        assert memory_store.get_by_id(voucher.voucher_id) == voucher
        assert memory_store.get_by_serial(voucher.serial_no) == voucher

    def test_missing_voucher(self, memory_store):
        with pytest.raises(VoucherNotFoundError):
            memory_store.get_by_id(uuid4())
        with pytest.raises(VoucherNotFoundError):
            memory_store.get_by_serial("250301000017")

    def test_get_by_ids_omits_missing(self, memory_store, seed_vouchers):
        vouchers = seed_vouchers(2)
        found = memory_store.get_by_ids([vouchers[0].voucher_id, uuid4()])
        assert list(found) == [vouchers[0].voucher_id]

    def test_missing_template(self, memory_store):
        with pytest.raises(TemplateNotFoundError):
            memory_store.get_template(uuid4())


class TestAddVoucher:

    def test_duplicate_serial_rejected(self, memory_store, cash_template):
        memory_store.add_voucher(make_voucher(cash_template, 5))
        with pytest.raises(DuplicateSerialError):
            memory_store.add_voucher(make_voucher(cash_template, 5))


class TestCompareAndSwap:

    def test_update_applies_mutation(self, memory_store, seed_vouchers):
        voucher = seed_vouchers(1)[0]
        updated = memory_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        assert updated.status == VoucherStatus.ISSUED
        assert updated.issued_at == FIXED_NOW
        assert memory_store.get_by_id(voucher.voucher_id) == updated

    def test_stale_expected_status(self, memory_store, seed_vouchers):
        voucher = seed_vouchers(1)[0]
        memory_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        with pytest.raises(ConcurrentModificationError) as exc_info:
            memory_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        assert exc_info.value.actual_status == "issued"

    def test_update_missing_voucher(self, memory_store):
        with pytest.raises(VoucherNotFoundError):
            memory_store.update(uuid4(), VoucherStatus.REGISTERED, ISSUE)


class TestUnitOfWork:

    def test_exception_rolls_back_every_write(self, memory_store, seed_vouchers, cash_template):
        voucher = seed_vouchers(1)[0]
        with pytest.raises(RuntimeError):
            with memory_store.unit_of_work():
                memory_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
                memory_store.add_voucher(make_voucher(cash_template, 99))
                raise RuntimeError("boom")
        assert memory_store.get_by_id(voucher.voucher_id).status == VoucherStatus.REGISTERED
        with pytest.raises(VoucherNotFoundError):
            memory_store.get_by_serial(make_voucher(cash_template, 99).serial_no)

    def test_nested_failure_keeps_outer_writes(self, memory_store, seed_vouchers):
        first, second = seed_vouchers(2)
        with memory_store.unit_of_work():
            memory_store.update(first.voucher_id, VoucherStatus.REGISTERED, ISSUE)
            with pytest.raises(RuntimeError):
                with memory_store.unit_of_work():
                    memory_store.update(second.voucher_id, VoucherStatus.REGISTERED, ISSUE)
                    raise RuntimeError("inner")
        assert memory_store.get_by_id(first.voucher_id).status == VoucherStatus.ISSUED
        assert memory_store.get_by_id(second.voucher_id).status == VoucherStatus.REGISTERED


class TestListByFilter:

    def test_status_and_prefix_filters(self, memory_store, seed_vouchers):
        vouchers = seed_vouchers(3)
        memory_store.update(vouchers[1].voucher_id, VoucherStatus.REGISTERED, ISSUE)
        issued = memory_store.list_by_filter(VoucherFilter(statuses=(VoucherStatus.ISSUED,)))
        assert [v.voucher_id for v in issued] == [vouchers[1].voucher_id]
        by_prefix = memory_store.list_by_filter(VoucherFilter(serial_prefix="250301"))
        assert len(by_prefix) == 3

    def test_date_range_filter(self, memory_store, seed_vouchers):
        vouchers = seed_vouchers(2)
        memory_store.update(
            vouchers[0].voucher_id, VoucherStatus.REGISTERED,
            VoucherMutation(status=VoucherStatus.ISSUED,
                            issued_at=datetime(2025, 2, 28, 23, 0, tzinfo=timezone.utc)),
        )
        memory_store.update(vouchers[1].voucher_id, VoucherStatus.REGISTERED, ISSUE)
        march = VoucherFilter(date_ranges=(DateRange("issued_at", date(2025, 3, 1), date(2025, 3, 31)),))
        assert [v.voucher_id for v in memory_store.list_by_filter(march)] == [vouchers[1].voucher_id]

    def test_pagination_is_serial_ordered(self, memory_store, seed_vouchers):
        vouchers = seed_vouchers(5)
        page = memory_store.list_by_filter(VoucherFilter(), Pagination(offset=2, limit=2))
        assert [v.serial_no for v in page] == [vouchers[2].serial_no, vouchers[3].serial_no]


class TestBatchRecords:

    def _batch(self, **overrides):
        values = dict(
            batch_id=uuid4(), name="March", owner_id=uuid4(), template_id=None,
            voucher_ids=(uuid4(),), total_count=1,
        )
        values.update(overrides)
        return VoucherBatch(**values)

    def test_progress_and_finish(self, memory_store):
        batch = memory_store.add_batch(self._batch())
        memory_store.record_batch_progress(batch.batch_id, 1, 0)
        finished = memory_store.finish_batch(batch.batch_id, BatchStatus.COMPLETED, FIXED_NOW)
        assert finished.generated_count == 1
        assert finished.status == BatchStatus.COMPLETED

    def test_terminal_batch_is_immutable(self, memory_store):
        batch = memory_store.add_batch(self._batch())
        memory_store.finish_batch(batch.batch_id, BatchStatus.FAILED, FIXED_NOW)
        with pytest.raises(BatchImmutableError):
            memory_store.record_batch_progress(batch.batch_id, 1, 0)
        with pytest.raises(BatchImmutableError):
            memory_store.finish_batch(batch.batch_id, BatchStatus.COMPLETED, FIXED_NOW)

    def test_download_counter_allowed_after_completion(self, memory_store):
        batch = memory_store.add_batch(self._batch(share_token="nonce.sig"))
        memory_store.finish_batch(batch.batch_id, BatchStatus.COMPLETED, FIXED_NOW)
        assert memory_store.record_download(batch.batch_id).download_count == 1

    def test_lookup_by_token(self, memory_store):
        batch = memory_store.add_batch(self._batch(
            share_token="nonce.sig", link_expires_at=FIXED_NOW + timedelta(hours=24),
        ))
        assert memory_store.get_batch_by_token("nonce.sig").batch_id == batch.batch_id
        with pytest.raises(BatchNotFoundError):
            memory_store.get_batch_by_token("other.sig")
