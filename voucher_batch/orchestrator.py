"""
BatchOrchestrator -- DI container and entry point for batch work.

Contract:
    Wires codec, lifecycle service, operation registry and processor
    around one VoucherStore.  Exposes:

    - ``run_batch()``          the runBatch entry point.
    - ``create_batch()``       persist a GENERATING batch record.
    - ``start_mobile_batch()`` record + share link + ``mobile_issue`` run.
    - ``open_share_link()``    resolve a share token for a voucher holder.

Invariants enforced:
    - One Clock instance is shared by every wired component.
    - Share links never outlive ``share_links.max_expiry_hours``.
    - Share tokens are compared in constant time and never logged.

Non-goals:
    - Does NOT manage session lifecycle; the caller commits.
    - Does NOT serve artifacts; ``open_share_link`` only authorizes.
"""

from __future__ import annotations

import random
from dataclasses import replace
from datetime import timedelta
from typing import Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from voucher_config import EngineConfig, get_active_config
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.codec import SerialTokenCodec
from voucher_kernel.domain.rendering import ArtifactRenderer
from voucher_kernel.domain.store import VoucherStore
from voucher_kernel.domain.types import VoucherBatch
from voucher_kernel.exceptions import (
    BatchNotFoundError,
    ShareLinkExpiredError,
    ShareLinkInvalidError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.services.lifecycle_service import VoucherLifecycleService
from voucher_kernel.services.sql_store import SqlVoucherStore

from voucher_batch.domain.types import (
    BatchOptions,
    BatchRunResult,
    MobileBatchOutcome,
)
from voucher_batch.operations import OperationRegistry, default_operation_registry
from voucher_batch.services.processor import BatchOperationProcessor

logger = get_logger("batch.orchestrator")

MOBILE_ISSUE = "mobile_issue"


class BatchOrchestrator:
    """Composition root for the voucher engine.

    Non-goals:
        - Does NOT read the environment itself; ``from_config`` takes an
          already-resolved EngineConfig.
    """

    def __init__(
        self,
        store: VoucherStore,
        codec: SerialTokenCodec,
        config: EngineConfig,
        renderer: ArtifactRenderer | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        registry: OperationRegistry | None = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self._config = config
        self._clock = clock or SystemClock()
        self._lifecycle = VoucherLifecycleService(
            store=store,
            codec=codec,
            clock=self._clock,
            rng=rng,
            max_serial_attempts=config.serials.max_attempts,
        )
        self._registry = (
            registry if registry is not None
            else default_operation_registry(self._lifecycle, renderer)
        )
        self._processor = BatchOperationProcessor(
            store=store, registry=self._registry, clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        store: VoucherStore,
        config: EngineConfig,
        renderer: ArtifactRenderer | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> BatchOrchestrator:
        """Build the codec from ``config.codec.secret`` and wire everything."""
        return cls(
            store=store,
            codec=SerialTokenCodec(config.codec.secret or ""),
            config=config,
            renderer=renderer,
            clock=clock,
            rng=rng,
        )

    @classmethod
    def from_session(
        cls,
        session: Session,
        renderer: ArtifactRenderer | None = None,
        clock: Clock | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> BatchOrchestrator:
        """Wire a SqlVoucherStore on ``session`` with the active configuration."""
        return cls.from_config(
            store=SqlVoucherStore(session),
            config=get_active_config(environ=environ),
            renderer=renderer,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store(self) -> VoucherStore:
        return self._store

    @property
    def lifecycle(self) -> VoucherLifecycleService:
        return self._lifecycle

    @property
    def processor(self) -> BatchOperationProcessor:
        return self._processor

    @property
    def registry(self) -> OperationRegistry:
        return self._registry

    @property
    def config(self) -> EngineConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Batch runs
    # -------------------------------------------------------------------------

    def default_options(self, **overrides) -> BatchOptions:
        """BatchOptions seeded from ``config.batch``; keyword overrides win."""
        values = {
            "chunk_size": self._config.batch.chunk_size,
            "workers": self._config.batch.workers,
            "chunk_pause_seconds": self._config.batch.chunk_pause_seconds,
        }
        values.update(overrides)
        return BatchOptions(**values)

    def run_batch(
        self,
        voucher_ids: Iterable[UUID],
        operation_name: str,
        options: BatchOptions | None = None,
    ) -> BatchRunResult:
        """Run a registered operation over ``voucher_ids``."""
        return self._processor.run(
            voucher_ids, operation_name, options or self.default_options(),
        )

    def create_batch(
        self,
        name: str,
        owner_id: UUID,
        voucher_ids: Iterable[UUID],
        template_id: UUID | None = None,
        shareable: bool = False,
        link_expiry_hours: int | None = None,
    ) -> VoucherBatch:
        """Persist a GENERATING batch record for ``voucher_ids``.

        ``shareable`` adds a signed share token and a link expiry.
        """
        ids = tuple(voucher_ids)
        now = self._clock.now()
        batch = VoucherBatch(
            batch_id=uuid4(),
            name=name,
            owner_id=owner_id,
            template_id=template_id,
            voucher_ids=ids,
            total_count=len(ids),
            created_at=now,
        )
        if shareable:
            hours = self._validate_expiry(link_expiry_hours)
            batch = replace(
                batch,
                share_token=self._codec.generate_share_token(batch.batch_id),
                link_expires_at=now + timedelta(hours=hours),
            )
        stored = self._store.add_batch(batch)
        logger.info(
            "batch_record_created",
            extra={
                "batch_id": str(stored.batch_id),
                "batch_name": name,
                "total_count": stored.total_count,
                "has_share_link": stored.share_token is not None,
            },
        )
        return stored

    def start_mobile_batch(
        self,
        name: str,
        owner_id: UUID,
        voucher_ids: Iterable[UUID],
        template_id: UUID | None = None,
        link_expiry_hours: int | None = None,
        options: BatchOptions | None = None,
    ) -> MobileBatchOutcome:
        """Create a shareable batch record and run ``mobile_issue`` over it.

        Raises:
            ValueError: ``link_expiry_hours`` outside ``1..max_expiry_hours``.
            OperationNotRegisteredError: No renderer was wired.
        """
        ids = tuple(voucher_ids)
        self._registry.get(MOBILE_ISSUE)
        batch = self.create_batch(
            name, owner_id, ids,
            template_id=template_id,
            shareable=True,
            link_expiry_hours=link_expiry_hours,
        )

        run_options = options or self.default_options(actor_id=owner_id)
        run_options = replace(run_options, batch_id=batch.batch_id)
        run = self._processor.run(ids, MOBILE_ISSUE, run_options)
        return MobileBatchOutcome(batch=self._store.get_batch(batch.batch_id), run=run)

    def open_share_link(self, share_token: str) -> VoucherBatch:
        """Authorize a holder's download link and count the download.

        Raises:
            ShareLinkInvalidError: Unknown, malformed or forged token.
            ShareLinkExpiredError: Link is past ``link_expires_at``.
        """
        try:
            batch = self._store.get_batch_by_token(share_token)
        except BatchNotFoundError:
            logger.warning("share_link_rejected", extra={"reason": "unknown_token"})
            raise ShareLinkInvalidError() from None

        if not self._codec.verify_share_token(share_token, batch.batch_id):
            logger.warning(
                "share_link_rejected",
                extra={"reason": "bad_signature", "batch_id": str(batch.batch_id)},
            )
            raise ShareLinkInvalidError()

        now = self._clock.now()
        if batch.link_expires_at is not None and now > batch.link_expires_at:
            logger.info(
                "share_link_rejected",
                extra={"reason": "expired", "batch_id": str(batch.batch_id)},
            )
            raise ShareLinkExpiredError(
                str(batch.batch_id), batch.link_expires_at.isoformat(),
            )

        updated = self._store.record_download(batch.batch_id)
        logger.info(
            "share_link_opened",
            extra={
                "batch_id": str(updated.batch_id),
                "download_count": updated.download_count,
            },
        )
        return updated

    def _validate_expiry(self, hours: int | None) -> int:
        limits = self._config.share_links
        if hours is None:
            return limits.default_expiry_hours
        if not 1 <= hours <= limits.max_expiry_hours:
            raise ValueError(
                f"link_expiry_hours must be between 1 and {limits.max_expiry_hours}, got {hours}"
            )
        return hours
