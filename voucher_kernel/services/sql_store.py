"""
SqlVoucherStore -- SQLAlchemy implementation of the VoucherStore protocol.

Contract:
    Works on a caller-owned ``Session``.  Never calls ``session.commit()``;
    the caller (``session_scope()`` or a web request) controls the outer
    transaction.  ``unit_of_work()`` opens a SAVEPOINT so one voucher's
    failure never rolls back its siblings.

Invariants enforced:
    - Compare-and-swap: ``UPDATE vouchers SET ... WHERE id = :id AND
      status = :expected``.  Zero rows affected means the voucher is gone
      or another writer won the race.
    - Audit records get the next ``seq`` and are chained to the previous
      record's hash before insert.
    - Terminal batch records only accept download counter changes.
    - Driver errors (lost connection, missing table, locked database)
      surface as ``StoreUnavailableError``; ``IntegrityError`` does not.

Non-goals:
    - Not thread-safe: a Session belongs to one thread.  The batch
      processor refuses ``workers > 1`` for this store.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

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
    StoreUnavailableError,
    TemplateNotFoundError,
    VoucherNotFoundError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.audit_record import VoucherAuditRecordModel
from voucher_kernel.models.batch import VoucherBatchModel
from voucher_kernel.models.voucher import VoucherModel, VoucherTemplateModel
from voucher_kernel.utils.hashing import GENESIS_HASH, seal_audit_record

logger = get_logger("services.sql_store")

# DateRange.column -> mapped column
_DATE_COLUMNS = {
    "issued_at": VoucherModel.issued_at,
    "used_at": VoucherModel.used_at,
    "created_at": VoucherModel.registered_at,
}


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Map driver failures to StoreUnavailableError.

    IntegrityError passes through untouched; callers that care about
    constraint violations (``add_voucher``) handle it themselves.
    """
    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        reason = str(exc.orig) if exc.orig is not None else type(exc).__name__
        logger.warning(
            "store_unavailable",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "connection_invalidated": exc.connection_invalidated,
            },
        )
        raise StoreUnavailableError(operation, reason) from exc


def _translate_db_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with _store_errors(method.__name__):
            return method(self, *args, **kwargs)
    return wrapper


class SqlVoucherStore:
    """VoucherStore backed by a SQLAlchemy Session."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def thread_safe(self) -> bool:
        return False

    @property
    def session(self) -> Session:
        return self._session

    # -------------------------------------------------------------------------
    # Vouchers
    # -------------------------------------------------------------------------

    @_translate_db_errors
    def get_by_id(self, voucher_id: UUID) -> Voucher:
        model = self._session.get(VoucherModel, voucher_id)
        if model is None:
            raise VoucherNotFoundError(str(voucher_id))
        return model.to_dto()

    @_translate_db_errors
    def get_by_ids(self, voucher_ids: Sequence[UUID]) -> dict[UUID, Voucher]:
        if not voucher_ids:
            return {}
        models = self._session.execute(
            select(VoucherModel).where(VoucherModel.id.in_(list(voucher_ids)))
        ).scalars().all()
        return {m.id: m.to_dto() for m in models}

    @_translate_db_errors
    def get_by_serial(self, serial_no: str) -> Voucher:
        model = self._session.execute(
            select(VoucherModel).where(VoucherModel.serial_no == serial_no)
        ).scalar_one_or_none()
        if model is None:
            raise VoucherNotFoundError(serial_no)
        return model.to_dto()

    @_translate_db_errors
    def list_by_filter(
        self,
        voucher_filter: VoucherFilter,
        pagination: Pagination | None = None,
    ) -> list[Voucher]:
        pagination = pagination or Pagination()
        stmt = select(VoucherModel)

        if voucher_filter.template_id is not None:
            stmt = stmt.where(VoucherModel.template_id == voucher_filter.template_id)
        if voucher_filter.statuses:
            stmt = stmt.where(
                VoucherModel.status.in_([s.value for s in voucher_filter.statuses])
            )
        if voucher_filter.association is not None:
            stmt = stmt.where(VoucherModel.association == voucher_filter.association)
        if voucher_filter.serial_prefix:
            stmt = stmt.where(
                VoucherModel.serial_no.startswith(voucher_filter.serial_prefix)
            )
        for date_range in voucher_filter.date_ranges:
            column = _DATE_COLUMNS[date_range.column]
            lower, upper = date_range.bounds()
            if lower is not None:
                stmt = stmt.where(column >= lower)
            if upper is not None:
                stmt = stmt.where(column < upper)

        stmt = (
            stmt.order_by(VoucherModel.serial_no)
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    @_translate_db_errors
    def add_voucher(self, voucher: Voucher) -> Voucher:
        """Insert a voucher.

        The insert runs inside its own SAVEPOINT so a serial collision
        leaves the surrounding transaction usable for a retry.

        Raises:
            DuplicateSerialError: If ``serial_no`` already exists.
        """
        taken = self._session.execute(
            select(VoucherModel.id).where(VoucherModel.serial_no == voucher.serial_no)
        ).scalar_one_or_none()
        if taken is not None:
            raise DuplicateSerialError(voucher.serial_no)

        model = VoucherModel.from_dto(voucher)
        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateSerialError(voucher.serial_no) from None
        savepoint.commit()
        return model.to_dto()

    @_translate_db_errors
    def update(
        self,
        voucher_id: UUID,
        expected_status: VoucherStatus,
        mutation: VoucherMutation,
    ) -> Voucher:
        values = mutation.changed_fields()
        values["status"] = mutation.status.value

        result = self._session.execute(
            update(VoucherModel)
            .where(
                VoucherModel.id == voucher_id,
                VoucherModel.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            actual = self._session.execute(
                select(VoucherModel.status).where(VoucherModel.id == voucher_id)
            ).scalar_one_or_none()
            if actual is None:
                raise VoucherNotFoundError(str(voucher_id))
            logger.warning(
                "voucher_cas_conflict",
                extra={
                    "voucher_id": str(voucher_id),
                    "expected_status": expected_status.value,
                    "actual_status": actual,
                },
            )
            raise ConcurrentModificationError(
                str(voucher_id), expected_status.value, actual,
            )

        model = self._session.get(VoucherModel, voucher_id, populate_existing=True)
        return model.to_dto()

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with _store_errors("unit_of_work"):
            savepoint = self._session.begin_nested()
        try:
            yield
        except BaseException:
            savepoint.rollback()
            # rows refreshed by update() inside the savepoint are stale now
            self._session.expire_all()
            raise
        with _store_errors("unit_of_work"):
            savepoint.commit()

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    @_translate_db_errors
    def append_audit_record(self, record: VoucherAuditRecord) -> VoucherAuditRecord:
        last = self._session.execute(
            select(VoucherAuditRecordModel.seq, VoucherAuditRecordModel.hash)
            .order_by(VoucherAuditRecordModel.seq.desc())
            .limit(1)
        ).first()
        seq = last.seq + 1 if last else 1
        prev_hash = last.hash if last else GENESIS_HASH

        sealed = seal_audit_record(record, seq, prev_hash)
        self._session.add(VoucherAuditRecordModel.from_dto(sealed))
        self._session.flush()
        return sealed

    @_translate_db_errors
    def list_audit_records(self, voucher_id: UUID | None = None) -> list[VoucherAuditRecord]:
        stmt = select(VoucherAuditRecordModel).order_by(VoucherAuditRecordModel.seq)
        if voucher_id is not None:
            stmt = stmt.where(VoucherAuditRecordModel.voucher_id == voucher_id)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    @_translate_db_errors
    def add_template(self, template: VoucherTemplate) -> VoucherTemplate:
        model = VoucherTemplateModel.from_dto(template)
        self._session.add(model)
        self._session.flush()
        return model.to_dto()

    @_translate_db_errors
    def get_template(self, template_id: UUID) -> VoucherTemplate:
        model = self._session.get(VoucherTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Batch records
    # -------------------------------------------------------------------------

    @_translate_db_errors
    def add_batch(self, batch: VoucherBatch) -> VoucherBatch:
        model = VoucherBatchModel.from_dto(batch)
        self._session.add(model)
        self._session.flush()
        return model.to_dto()

    @_translate_db_errors
    def get_batch(self, batch_id: UUID) -> VoucherBatch:
        return self._get_batch_model(batch_id).to_dto()

    @_translate_db_errors
    def get_batch_by_token(self, share_token: str) -> VoucherBatch:
        model = self._session.execute(
            select(VoucherBatchModel).where(VoucherBatchModel.share_token == share_token)
        ).scalar_one_or_none()
        if model is None:
            raise BatchNotFoundError("<share token>")
        return model.to_dto()

    @_translate_db_errors
    def record_batch_progress(
        self, batch_id: UUID, generated: int, failed: int,
    ) -> VoucherBatch:
        model = self._get_mutable_batch_model(batch_id)
        model.generated_count += generated
        model.failed_count += failed
        self._session.flush()
        return model.to_dto()

    @_translate_db_errors
    def finish_batch(
        self, batch_id: UUID, status: BatchStatus, completed_at: datetime,
    ) -> VoucherBatch:
        model = self._get_mutable_batch_model(batch_id)
        model.status = status.value
        model.completed_at = completed_at
        self._session.flush()
        return model.to_dto()

    @_translate_db_errors
    def record_download(self, batch_id: UUID) -> VoucherBatch:
        model = self._get_batch_model(batch_id)
        model.download_count += 1
        self._session.flush()
        return model.to_dto()

    def _get_batch_model(self, batch_id: UUID) -> VoucherBatchModel:
        model = self._session.get(VoucherBatchModel, batch_id)
        if model is None:
            raise BatchNotFoundError(str(batch_id))
        return model

    def _get_mutable_batch_model(self, batch_id: UUID) -> VoucherBatchModel:
        model = self._get_batch_model(batch_id)
        if model.status != BatchStatus.GENERATING.value:
            raise BatchImmutableError(str(batch_id), model.status)
        return model
