"""
ORM model for bulk / mobile issuance batch records.

Contract:
    VoucherBatchModel persists ``VoucherBatch``.  Voucher ids are stored as
    an ordered JSON list, not as a foreign-key relationship: a voucher
    does not belong to its batch.

Invariants enforced:
    - ``share_token`` is UNIQUE.
    - Terminal batches are guarded by SqlVoucherStore (only the download
      counter may change).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from voucher_kernel.domain.types import BatchStatus, VoucherBatch


class VoucherBatchModel(TrackedBase):
    """Persistent batch record."""

    __tablename__ = "voucher_batches"

    __table_args__ = (
        Index("ix_voucher_batches_owner", "owner_id"),
        Index("ix_voucher_batches_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    template_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    voucher_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    generated_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    share_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    link_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> VoucherBatch:
        return VoucherBatch(
            batch_id=self.id,
            name=self.name,
            owner_id=self.owner_id,
            template_id=self.template_id,
            voucher_ids=tuple(UUID(v) for v in self.voucher_ids),
            status=BatchStatus(self.status),
            total_count=self.total_count,
            generated_count=self.generated_count,
            failed_count=self.failed_count,
            share_token=self.share_token,
            link_expires_at=self.link_expires_at,
            download_count=self.download_count,
            created_at=self.requested_at,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(cls, dto: VoucherBatch) -> VoucherBatchModel:
        return cls(
            id=dto.batch_id,
            name=dto.name,
            owner_id=dto.owner_id,
            template_id=dto.template_id,
            voucher_ids=[str(v) for v in dto.voucher_ids],
            status=dto.status.value,
            total_count=dto.total_count,
            generated_count=dto.generated_count,
            failed_count=dto.failed_count,
            share_token=dto.share_token,
            link_expires_at=dto.link_expires_at,
            download_count=dto.download_count,
            requested_at=dto.created_at,
            completed_at=dto.completed_at,
            created_by_id=dto.owner_id,
        )
