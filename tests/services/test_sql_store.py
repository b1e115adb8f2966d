"""
Tests for SqlVoucherStore on in-memory SQLite.

Validates DTO round-trips, the compare-and-swap UPDATE, SAVEPOINT units of
work, duplicate serial handling, filters and batch record immutability.
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from voucher_kernel.domain.types import (
    BatchStatus,
    DateRange,
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
    StoreUnavailableError,
    TemplateNotFoundError,
    VoucherNotFoundError,
)

from conftest import FIXED_NOW, make_voucher

ISSUE = VoucherMutation(status=VoucherStatus.ISSUED, issued_at=FIXED_NOW)


@pytest.fixture
def sql_vouchers(sql_store, sql_template):
    return [sql_store.add_voucher(make_voucher(sql_template, i)) for i in range(3)]


class TestRoundTrip:

    def test_voucher_round_trip(self, sql_store, sql_template):
        original = make_voucher(sql_template, 1, dob=date(1950, 1, 2), phone="010-0000-0000")
        stored = sql_store.add_voucher(original)
        assert stored == original
        assert sql_store.get_by_serial(original.serial_no) == original

    def test_template_round_trip(self, sql_store, sql_template):
        loaded = sql_store.get_template(sql_template.template_id)
        assert loaded == sql_template
        assert loaded.eligible_site_ids == ("A", "B")

    def test_timestamps_load_as_utc(self, sql_store, sql_vouchers):
        loaded = sql_store.get_by_id(sql_vouchers[0].voucher_id)
        assert loaded.created_at.tzinfo is not None
        assert loaded.created_at == FIXED_NOW

    def test_missing_rows(self, sql_store):
        with pytest.raises(VoucherNotFoundError):
            sql_store.get_by_id(uuid4())
        with pytest.raises(TemplateNotFoundError):
            sql_store.get_template(uuid4())

    def test_get_by_ids(self, sql_store, sql_vouchers):
        ids = [v.voucher_id for v in sql_vouchers] + [uuid4()]
        assert set(sql_store.get_by_ids(ids)) == {v.voucher_id for v in sql_vouchers}
        assert sql_store.get_by_ids([]) == {}


class TestAddVoucher:

    def test_duplicate_serial(self, sql_store, sql_template, sql_vouchers):
        with pytest.raises(DuplicateSerialError):
            sql_store.add_voucher(make_voucher(sql_template, 0))
        # session stays usable after the collision
        sql_store.add_voucher(make_voucher(sql_template, 50))
        assert len(sql_store.list_by_filter(VoucherFilter())) == 4


class TestCompareAndSwap:

    def test_update(self, sql_store, sql_vouchers):
        voucher = sql_vouchers[0]
        updated = sql_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        assert updated.status == VoucherStatus.ISSUED
        assert updated.issued_at == FIXED_NOW
        assert sql_store.get_by_id(voucher.voucher_id).status == VoucherStatus.ISSUED

    def test_lost_race(self, sql_store, sql_vouchers, captured_logs):
        voucher = sql_vouchers[0]
        sql_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        with pytest.raises(ConcurrentModificationError) as exc_info:
            sql_store.update(voucher.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        assert exc_info.value.actual_status == "issued"
        assert any(r["message"] == "voucher_cas_conflict" for r in captured_logs())

    def test_missing_voucher(self, sql_store):
        with pytest.raises(VoucherNotFoundError):
            sql_store.update(uuid4(), VoucherStatus.REGISTERED, ISSUE)


class TestUnitOfWork:

    def test_failure_rolls_back_savepoint_only(self, sql_store, sql_vouchers):
        first, second = sql_vouchers[0], sql_vouchers[1]
        sql_store.update(first.voucher_id, VoucherStatus.REGISTERED, ISSUE)
        with pytest.raises(RuntimeError):
            with sql_store.unit_of_work():
                sql_store.update(second.voucher_id, VoucherStatus.REGISTERED, ISSUE)
                raise RuntimeError("boom")
        assert sql_store.get_by_id(first.voucher_id).status == VoucherStatus.ISSUED
        assert sql_store.get_by_id(second.voucher_id).status == VoucherStatus.REGISTERED


class TestListByFilter:

    def test_filters(self, sql_store, sql_template, sql_vouchers):
        sql_store.update(sql_vouchers[2].voucher_id, VoucherStatus.REGISTERED, ISSUE)
        issued = sql_store.list_by_filter(VoucherFilter(
            template_id=sql_template.template_id,
            statuses=(VoucherStatus.ISSUED,),
            association="Riverside Seniors",
        ))
        assert [v.voucher_id for v in issued] == [sql_vouchers[2].voucher_id]

    def test_date_range(self, sql_store, sql_vouchers):
        sql_store.update(sql_vouchers[0].voucher_id, VoucherStatus.REGISTERED, ISSUE)
        hit = VoucherFilter(date_ranges=(DateRange("issued_at", date(2025, 3, 1), date(2025, 3, 1)),))
        miss = VoucherFilter(date_ranges=(DateRange("issued_at", date(2025, 3, 2)),))
        assert len(sql_store.list_by_filter(hit)) == 1
        assert sql_store.list_by_filter(miss) == []


class TestBatchRecords:

    def test_batch_lifecycle(self, sql_store, sql_vouchers):
        batch = sql_store.add_batch(VoucherBatch(
            batch_id=uuid4(), name="March", owner_id=uuid4(), template_id=None,
            voucher_ids=tuple(v.voucher_id for v in sql_vouchers), total_count=3,
            share_token="nonce.sig",
            link_expires_at=datetime(2025, 3, 2, tzinfo=timezone.utc),
            created_at=FIXED_NOW,
        ))
        assert sql_store.get_batch_by_token("nonce.sig").voucher_ids == batch.voucher_ids

        sql_store.record_batch_progress(batch.batch_id, 2, 1)
        finished = sql_store.finish_batch(
            batch.batch_id, BatchStatus.COMPLETED, FIXED_NOW + timedelta(minutes=1),
        )
        assert (finished.generated_count, finished.failed_count) == (2, 1)

        with pytest.raises(BatchImmutableError):
            sql_store.record_batch_progress(batch.batch_id, 1, 0)
        assert sql_store.record_download(batch.batch_id).download_count == 1

    def test_unknown_batch(self, sql_store):
        with pytest.raises(BatchNotFoundError):
            sql_store.get_batch(uuid4())
        with pytest.raises(BatchNotFoundError):
            sql_store.get_batch_by_token("missing")


class TestStoreUnavailable:

    def test_missing_table_maps_to_store_unavailable(self, sql_store, db_session, captured_logs):
        db_session.execute(text("DROP TABLE vouchers"))
        with pytest.raises(StoreUnavailableError) as exc_info:
            sql_store.get_by_ids([uuid4()])

        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert exc_info.value.operation == "get_by_ids"
        assert "no such table" in exc_info.value.reason
        logged = [r for r in captured_logs() if r["message"] == "store_unavailable"]
        assert logged[0]["error_type"] == "OperationalError"

    def test_integrity_error_passes_through(self, sql_store, sql_template, db_session):
        db_session.expunge_all()
        with pytest.raises(IntegrityError):
            sql_store.add_template(sql_template)
