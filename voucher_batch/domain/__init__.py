"""Pure batch DTOs (options, per-item and per-run results)."""

from voucher_batch.domain.types import (
    MAX_CHUNK_SIZE,
    SYSTEM_ACTOR_ID,
    BatchItemResult,
    BatchOptions,
    BatchRunResult,
    MobileBatchOutcome,
)

__all__ = [
    "MAX_CHUNK_SIZE",
    "SYSTEM_ACTOR_ID",
    "BatchItemResult",
    "BatchOptions",
    "BatchRunResult",
    "MobileBatchOutcome",
]
