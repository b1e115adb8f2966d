"""
ORM persistence for the hash-chained voucher audit trail.

Invariants enforced:
    - Append-only: ``before_update`` / ``before_delete`` listeners raise
      ImmutabilityViolationError for any change to a stored record.
    - ``seq`` is UNIQUE and assigned by the store in append order.
    - ``hash`` links to ``prev_hash`` (see voucher_kernel.utils.hashing).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import Base, UTCDateTime, UUIDString
from voucher_kernel.domain.types import AuditAction, VoucherAuditRecord, VoucherStatus
from voucher_kernel.exceptions import ImmutabilityViolationError
from voucher_kernel.logging_config import get_logger

logger = get_logger("models.audit_record")


class VoucherAuditRecordModel(Base):
    """One status change of one voucher.  Never updated, never deleted."""

    __tablename__ = "voucher_audit_records"

    __table_args__ = (
        Index("ix_voucher_audit_voucher", "voucher_id"),
        Index("ix_voucher_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=False,
        unique=True,
    )
    voucher_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    serial_no: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<VoucherAuditRecord {self.seq} {self.action} on {self.serial_no}>"

    def to_dto(self) -> VoucherAuditRecord:
        return VoucherAuditRecord(
            record_id=self.id,
            voucher_id=self.voucher_id,
            serial_no=self.serial_no,
            action=AuditAction(self.action),
            previous_status=(
                VoucherStatus(self.previous_status) if self.previous_status else None
            ),
            new_status=VoucherStatus(self.new_status),
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            reason=self.reason,
            details=self.details or {},
            seq=self.seq,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )

    @classmethod
    def from_dto(cls, dto: VoucherAuditRecord) -> VoucherAuditRecordModel:
        if dto.seq is None or dto.hash is None or dto.prev_hash is None:
            raise ValueError("audit record must be sealed before persisting")
        return cls(
            id=dto.record_id,
            seq=dto.seq,
            voucher_id=dto.voucher_id,
            serial_no=dto.serial_no,
            action=dto.action.value,
            previous_status=dto.previous_status.value if dto.previous_status else None,
            new_status=dto.new_status.value,
            actor_id=dto.actor_id,
            occurred_at=dto.occurred_at,
            reason=dto.reason,
            details=dto.details or None,
            prev_hash=dto.prev_hash,
            hash=dto.hash,
        )


def _block(operation: str):
    def _listener(mapper, connection, target):
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "VoucherAuditRecord",
                "entity_id": str(target.id),
                "operation": operation,
            },
        )
        raise ImmutabilityViolationError("VoucherAuditRecord", str(target.id), operation)

    return _listener


event.listen(VoucherAuditRecordModel, "before_update", _block("update"))
event.listen(VoucherAuditRecordModel, "before_delete", _block("delete"))
