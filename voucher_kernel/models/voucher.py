"""
ORM models for vouchers and voucher templates.

Contract:
    VoucherModel and VoucherTemplateModel persist the domain snapshots from
    ``voucher_kernel.domain.types``.  Each has ``to_dto()`` / ``from_dto()``
    round-trip methods; services never hand ORM objects to callers.

Invariants enforced:
    - ``serial_no`` is UNIQUE (global uniqueness lives here, not in the
      serial generator).
    - ``usage_amount <= amount`` via CHECK constraint.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from voucher_kernel.domain.types import (
    ValueType,
    Voucher,
    VoucherStatus,
    VoucherTemplate,
)


class VoucherTemplateModel(TrackedBase):
    """Shared template (value type, nominal amount, expiry, eligible sites)."""

    __tablename__ = "voucher_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    value_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    eligible_site_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self) -> VoucherTemplate:
        return VoucherTemplate(
            template_id=self.id,
            name=self.name,
            value_type=ValueType(self.value_type),
            amount=self.amount,
            valid_until=self.valid_until,
            eligible_site_ids=tuple(self.eligible_site_ids or ()),
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: VoucherTemplate) -> VoucherTemplateModel:
        return cls(
            id=dto.template_id,
            name=dto.name,
            value_type=dto.value_type.value,
            amount=dto.amount,
            valid_until=dto.valid_until,
            eligible_site_ids=list(dto.eligible_site_ids) or None,
            is_active=dto.is_active,
        )


class VoucherModel(TrackedBase):
    """Persistent voucher row.  Status changes go through SqlVoucherStore.update()."""

    __tablename__ = "vouchers"

    __table_args__ = (
        Index("ix_vouchers_status", "status"),
        Index("ix_vouchers_template_status", "template_id", "status"),
        Index("ix_vouchers_issued_at", "issued_at"),
        Index("ix_vouchers_used_at", "used_at"),
        CheckConstraint(
            "usage_amount IS NULL OR usage_amount <= amount",
            name="ck_vouchers_usage_le_amount",
        ),
    )

    serial_no: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("voucher_templates.id"),
        nullable=False,
    )
    association: Mapped[str] = mapped_column(String(200), nullable=False)
    member_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    dob: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    issued_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    used_at_site_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    used_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    recalled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    disposed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    recall_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    registered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> Voucher:
        return Voucher(
            voucher_id=self.id,
            serial_no=self.serial_no,
            template_id=self.template_id,
            association=self.association,
            member_id=self.member_id,
            name=self.name,
            amount=self.amount,
            status=VoucherStatus(self.status),
            dob=self.dob,
            phone=self.phone,
            usage_amount=self.usage_amount,
            issued_at=self.issued_at,
            used_at=self.used_at,
            used_at_site_id=self.used_at_site_id,
            used_by=self.used_by,
            recalled_at=self.recalled_at,
            disposed_at=self.disposed_at,
            recall_reason=self.recall_reason,
            notes=self.notes,
            created_at=self.registered_at,
        )

    @classmethod
    def from_dto(cls, dto: Voucher) -> VoucherModel:
        return cls(
            id=dto.voucher_id,
            serial_no=dto.serial_no,
            template_id=dto.template_id,
            association=dto.association,
            member_id=dto.member_id,
            name=dto.name,
            dob=dto.dob,
            phone=dto.phone,
            amount=dto.amount,
            usage_amount=dto.usage_amount,
            status=dto.status.value,
            issued_at=dto.issued_at,
            used_at=dto.used_at,
            used_at_site_id=dto.used_at_site_id,
            used_by=dto.used_by,
            recalled_at=dto.recalled_at,
            disposed_at=dto.disposed_at,
            recall_reason=dto.recall_reason,
            notes=dto.notes,
            registered_at=dto.created_at,
        )
