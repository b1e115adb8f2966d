"""Services for the voucher kernel (stores and lifecycle)."""

from voucher_kernel.services.lifecycle_service import VoucherLifecycleService
from voucher_kernel.services.memory_store import InMemoryVoucherStore
from voucher_kernel.services.sql_store import SqlVoucherStore

__all__ = [
    "InMemoryVoucherStore",
    "SqlVoucherStore",
    "VoucherLifecycleService",
]
