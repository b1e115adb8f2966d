"""Batch execution services."""

from voucher_batch.services.processor import BatchOperationProcessor

__all__ = ["BatchOperationProcessor"]
