"""
BatchOperationProcessor -- chunked, unit-of-work-per-item batch execution.

Contract:
    ``run(voucher_ids, operation, options)`` applies one operation to an
    ordered list of voucher ids and returns a BatchRunResult with exactly
    one entry per input id, in input order.

Architecture: voucher_batch/services.  Imports voucher_batch.domain,
    voucher_batch.operations and the VoucherStore protocol.

Invariants enforced:
    - Unit of work per item: one voucher's failure never rolls back or
      blocks its siblings.
    - Chunks hold at most ``chunk_size`` (<= 1000) ids and are drained from a
      queue by ``workers`` workers (default 1, i.e. sequential).  More than
      one worker requires a thread-safe store; ordering of results is by
      input position, never by completion.
    - A failing chunk load marks that chunk's ids failed and processing
      continues with the next chunk.
    - Cancellation stops chunks that have not started.  Finished chunks
      stay committed; unstarted ids get BATCH_CANCELLED entries.
    - Duplicate ids are processed once; later copies get DUPLICATE_ID.
    - Batch record bookkeeping failures are logged and never stop the run.
      Counters are reconciled from the results when the record is finished;
      if that also fails the result carries ``needs_reconciliation``.
    - ConcurrentModificationError is reported per item, never retried here.
    - The processor holds no lock across store or renderer calls.
"""

from __future__ import annotations

import contextvars
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.store import VoucherStore
from voucher_kernel.domain.types import BatchStatus, Voucher
from voucher_kernel.exceptions import (
    ArtifactGenerationFailedError,
    BatchImmutableError,
    ConfigurationError,
    VoucherEngineError,
    VoucherNotFoundError,
)
from voucher_kernel.logging_config import LogContext, get_logger

from voucher_batch.domain.types import (
    CODE_BATCH_CANCELLED,
    CODE_DUPLICATE_ID,
    CODE_STORE_UNAVAILABLE,
    CODE_UNHANDLED_EXCEPTION,
    BatchItemResult,
    BatchOptions,
    BatchRunResult,
)
from voucher_batch.operations.base import (
    BatchOperation,
    OperationRegistry,
    OperationRequest,
)

logger = get_logger("batch.processor")

_Chunk = tuple[int, list[tuple[int, UUID]]]  # (chunk index, [(input position, id)])


class BatchOperationProcessor:
    """Applies a BatchOperation across many vouchers.

    Contract:
        - ``run()`` never raises for per-item or per-chunk failures.
        - It raises only for caller errors: unknown operation name, workers
          > 1 on a non-thread-safe store, a terminal batch record.

    Non-goals:
        - Does NOT commit the outer transaction of a SQL store; the caller
          owns it.
        - Does NOT retry failed items.
    """

    def __init__(
        self,
        store: VoucherStore,
        registry: OperationRegistry | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self._registry = registry or OperationRegistry()
        self._clock = clock or SystemClock()
        self._progress_lock = threading.Lock()

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        voucher_ids: Iterable[UUID],
        operation: BatchOperation | str,
        options: BatchOptions | None = None,
    ) -> BatchRunResult:
        """Apply ``operation`` to every id.

        Raises:
            OperationNotRegisteredError: ``operation`` is an unknown name.
            ConfigurationError: ``workers > 1`` on a store that is not thread-safe.
            BatchNotFoundError / BatchImmutableError: bad ``options.batch_id``.
        """
        options = options or BatchOptions()
        if isinstance(operation, str):
            operation = self._registry.get(operation)
        if options.workers > 1 and not self._store.thread_safe:
            raise ConfigurationError(
                "batch.workers",
                f"{type(self._store).__name__} is not thread-safe; use workers=1",
            )
        if options.batch_id is not None:
            batch = self._store.get_batch(options.batch_id)
            if batch.is_terminal:
                raise BatchImmutableError(str(batch.batch_id), batch.status.value)

        ids = list(voucher_ids)
        start_time = time.monotonic()
        started_at = self._clock.now()
        cancel_event = options.cancel_event or threading.Event()
        record_stale = threading.Event()
        request = OperationRequest(
            actor_id=options.actor_id,
            as_of=started_at,
            parameters=dict(options.parameters),
            item_parameters=dict(options.item_parameters),
        )

        results: list[BatchItemResult | None] = [None] * len(ids)
        unique: list[tuple[int, UUID]] = []
        seen: set[UUID] = set()
        for position, voucher_id in enumerate(ids):
            if voucher_id in seen:
                results[position] = _failure(
                    voucher_id, CODE_DUPLICATE_ID,
                    "duplicate id in batch input; processed at its first position",
                )
                continue
            seen.add(voucher_id)
            unique.append((position, voucher_id))

        chunks: list[_Chunk] = [
            (index, unique[offset:offset + options.chunk_size])
            for index, offset in enumerate(range(0, len(unique), options.chunk_size))
        ]

        with LogContext.bind(
            correlation_id=options.correlation_id,
            actor_id=str(options.actor_id),
            batch_id=str(options.batch_id) if options.batch_id else None,
            operation=operation.name,
        ):
            logger.info(
                "batch_run_started",
                extra={
                    "operation": operation.name,
                    "total_ids": len(ids),
                    "unique_ids": len(unique),
                    "chunk_count": len(chunks),
                    "chunk_size": options.chunk_size,
                    "workers": options.workers,
                },
            )

            work: queue.Queue[_Chunk] = queue.Queue()
            for chunk in chunks:
                work.put(chunk)

            if options.workers == 1 or len(chunks) <= 1:
                self._drain(
                    work, operation, request, options, cancel_event, results, record_stale,
                )
            else:
                worker_count = min(options.workers, len(chunks))
                with ThreadPoolExecutor(
                    max_workers=worker_count, thread_name_prefix="voucher-batch",
                ) as pool:
                    futures = [
                        pool.submit(
                            contextvars.copy_context().run,
                            self._drain, work, operation, request, options,
                            cancel_event, results, record_stale,
                        )
                        for _ in range(worker_count)
                    ]
                    for future in futures:
                        future.result()

            cancelled = cancel_event.is_set()
            for position, voucher_id in unique:
                if results[position] is None:
                    results[position] = _failure(
                        voucher_id, CODE_BATCH_CANCELLED,
                        "batch cancelled before this item's chunk started",
                    )

            final = tuple(results)
            run_result = BatchRunResult(
                operation_name=operation.name,
                results=final,
                chunk_sizes=tuple(len(chunk) for _, chunk in chunks),
                cancelled=cancelled,
                batch_id=options.batch_id,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
                correlation_id=options.correlation_id,
            )

            if options.batch_id is not None:
                if not self._finish_batch_record(
                    options.batch_id, run_result, record_stale.is_set(),
                ):
                    run_result = replace(run_result, needs_reconciliation=True)

            logger.info(
                "batch_run_cancelled" if cancelled else "batch_run_completed",
                extra={
                    "operation": operation.name,
                    "success_count": run_result.success_count,
                    "failure_count": run_result.failure_count,
                    "duration_ms": run_result.duration_ms,
                },
            )
            return run_result

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------

    def _drain(
        self,
        work: queue.Queue[_Chunk],
        operation: BatchOperation,
        request: OperationRequest,
        options: BatchOptions,
        cancel_event: threading.Event,
        results: list[BatchItemResult | None],
        record_stale: threading.Event,
    ) -> None:
        """Worker loop: take chunks until the queue is empty or the run is cancelled."""
        first = True
        while True:
            try:
                chunk_index, chunk = work.get_nowait()
            except queue.Empty:
                return

            if not first and options.chunk_pause_seconds:
                cancel_event.wait(options.chunk_pause_seconds)
            first = False

            if cancel_event.is_set():
                logger.info(
                    "batch_chunk_skipped_cancelled",
                    extra={"chunk_index": chunk_index, "chunk_size": len(chunk)},
                )
                continue

            chunk_results = self._process_chunk(chunk, operation, request)
            for (position, _), item_result in zip(chunk, chunk_results):
                results[position] = item_result

            succeeded = sum(1 for r in chunk_results if r.success)
            failed = len(chunk_results) - succeeded
            if options.batch_id is not None:
                self._record_progress(options.batch_id, chunk_index, succeeded, failed, record_stale)

            logger.info(
                "batch_chunk_completed",
                extra={
                    "chunk_index": chunk_index,
                    "chunk_size": len(chunk),
                    "succeeded": succeeded,
                    "failed": failed,
                },
            )

    def _process_chunk(
        self,
        chunk: Sequence[tuple[int, UUID]],
        operation: BatchOperation,
        request: OperationRequest,
    ) -> list[BatchItemResult]:
        ids = [voucher_id for _, voucher_id in chunk]
        try:
            loaded = self._store.get_by_ids(ids)
        except VoucherEngineError as exc:
            return self._fail_chunk(ids, exc.code, str(exc))
        except Exception as exc:
            return self._fail_chunk(ids, CODE_STORE_UNAVAILABLE, str(exc))

        item_results = []
        for voucher_id in ids:
            voucher = loaded.get(voucher_id)
            if voucher is None:
                missing = VoucherNotFoundError(str(voucher_id))
                item_results.append(_failure(voucher_id, missing.code, str(missing)))
                continue
            item_results.append(self._process_item(voucher, operation, request))
        return item_results

    def _fail_chunk(self, ids: list[UUID], code: str, message: str) -> list[BatchItemResult]:
        logger.error(
            "batch_chunk_load_failed",
            extra={"chunk_size": len(ids), "error_code": code, "error_message": message},
        )
        return [_failure(voucher_id, code, message) for voucher_id in ids]

    def _process_item(
        self,
        voucher: Voucher,
        operation: BatchOperation,
        request: OperationRequest,
    ) -> BatchItemResult:
        item_start = time.monotonic()
        request = request.for_voucher(voucher.voucher_id)

        def elapsed() -> int:
            return int((time.monotonic() - item_start) * 1000)

        try:
            with self._store.unit_of_work():
                outcome = operation.execute_item(voucher, request)
        except VoucherEngineError as exc:
            return _failure(
                voucher.voucher_id, exc.code, str(exc),
                previous_status=voucher.status, duration_ms=elapsed(),
            )
        except Exception as exc:
            logger.error(
                "batch_item_unhandled_exception",
                extra={
                    "voucher_id": str(voucher.voucher_id),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return _failure(
                voucher.voucher_id, CODE_UNHANDLED_EXCEPTION, str(exc),
                previous_status=voucher.status, duration_ms=elapsed(),
            )

        try:
            artifact = operation.after_commit(outcome, request)
        except Exception as exc:
            if not isinstance(exc, ArtifactGenerationFailedError):
                exc = ArtifactGenerationFailedError(
                    str(voucher.voucher_id), outcome.new_status.value, str(exc),
                )
            return BatchItemResult(
                voucher_id=voucher.voucher_id,
                success=False,
                message=str(exc),
                code=exc.code,
                previous_status=outcome.previous_status,
                new_status=outcome.new_status,
                duration_ms=elapsed(),
            )

        return BatchItemResult(
            voucher_id=voucher.voucher_id,
            success=True,
            message=outcome.message,
            previous_status=outcome.previous_status,
            new_status=outcome.new_status,
            artifact=artifact,
            duration_ms=elapsed(),
        )

    # -------------------------------------------------------------------------
    # Batch record
    # -------------------------------------------------------------------------

    def _record_progress(
        self,
        batch_id: UUID,
        chunk_index: int,
        succeeded: int,
        failed: int,
        record_stale: threading.Event,
    ) -> None:
        try:
            with self._progress_lock:
                self._store.record_batch_progress(batch_id, succeeded, failed)
        except Exception as exc:
            record_stale.set()
            logger.error(
                "batch_record_progress_failed",
                extra={
                    "chunk_index": chunk_index,
                    "succeeded": succeeded,
                    "failed": failed,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )

    def _finish_batch_record(
        self, batch_id: UUID, run_result: BatchRunResult, record_stale: bool,
    ) -> bool:
        """Bring the record's counters in line with ``run_result`` and close it.

        Returns False when the record could not be updated; the items
        themselves are committed either way.
        """
        if run_result.success_count or run_result.total == 0:
            status = BatchStatus.COMPLETED
        else:
            status = BatchStatus.FAILED
        completed_at: datetime = run_result.completed_at or self._clock.now()

        try:
            batch = self._store.get_batch(batch_id)
            # duplicates, cancelled ids and chunks whose progress write failed
            missing_success = max(run_result.success_count - batch.generated_count, 0)
            missing_failed = max(run_result.failure_count - batch.failed_count, 0)
            if missing_success or missing_failed:
                self._store.record_batch_progress(batch_id, missing_success, missing_failed)
            self._store.finish_batch(batch_id, status, completed_at)
        except Exception as exc:
            logger.error(
                "batch_record_finish_failed",
                extra={
                    "batch_id": str(batch_id),
                    "status": status.value,
                    "success_count": run_result.success_count,
                    "failure_count": run_result.failure_count,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return False

        if record_stale:
            logger.warning(
                "batch_record_reconciled",
                extra={"batch_id": str(batch_id), "status": status.value},
            )
        logger.info(
            "batch_record_finished",
            extra={"batch_id": str(batch_id), "status": status.value},
        )
        return True


def _failure(
    voucher_id: UUID,
    code: str,
    message: str,
    previous_status=None,
    duration_ms: int = 0,
) -> BatchItemResult:
    return BatchItemResult(
        voucher_id=voucher_id,
        success=False,
        message=message,
        code=code,
        previous_status=previous_status,
        duration_ms=duration_ms,
    )
