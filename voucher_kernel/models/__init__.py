"""ORM models.  Importing this package registers every mapper on Base.metadata."""

from voucher_kernel.models.audit_record import VoucherAuditRecordModel
from voucher_kernel.models.batch import VoucherBatchModel
from voucher_kernel.models.voucher import VoucherModel, VoucherTemplateModel

__all__ = [
    "VoucherAuditRecordModel",
    "VoucherBatchModel",
    "VoucherModel",
    "VoucherTemplateModel",
]
