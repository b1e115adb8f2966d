"""
Artifact operations: print and mobile_issue.

Two separately-failable steps per voucher:

    1. ``execute_item`` issues (``registered -> issued``) or reissues
       (``issued -> issued``) the voucher.  Committed by the processor.
    2. ``after_commit`` resolves template fields, signs the QR payload and
       calls the external ArtifactRenderer.

A renderer failure in step 2 surfaces as ArtifactGenerationFailedError
carrying the already-committed status.  Step 1 is not rolled back.
"""

from __future__ import annotations

from voucher_kernel.domain.rendering import (
    Artifact,
    ArtifactRenderer,
    RenderFormat,
    resolve_fields,
)
from voucher_kernel.domain.types import TransitionContext, Voucher, VoucherStatus
from voucher_kernel.exceptions import ArtifactGenerationFailedError
from voucher_kernel.logging_config import get_logger
from voucher_kernel.services.lifecycle_service import VoucherLifecycleService

from voucher_batch.operations.base import OperationOutcome, OperationRequest

logger = get_logger("batch.artifact")


class ArtifactOperation:
    """Issue or reissue a voucher, then render it."""

    def __init__(
        self,
        name: str,
        lifecycle: VoucherLifecycleService,
        renderer: ArtifactRenderer,
        render_format: RenderFormat,
        description: str = "",
    ):
        self._name = name
        self._lifecycle = lifecycle
        self._renderer = renderer
        self._render_format = render_format
        self._description = description or f"Issue and render vouchers ({render_format.value})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def render_format(self) -> RenderFormat:
        return self._render_format

    def execute_item(self, voucher: Voucher, request: OperationRequest) -> OperationOutcome:
        context = TransitionContext(
            actor_id=request.actor_id,
            as_of=request.as_of,
            notes=request.param("notes"),
        )
        result = self._lifecycle.apply_transition(voucher, VoucherStatus.ISSUED, context)
        return OperationOutcome(
            voucher=result.voucher,
            previous_status=voucher.status,
            new_status=result.new_status,
            message=f"{result.audit_record.action.value}d for {self._render_format.value}",
        )

    def after_commit(self, outcome: OperationOutcome, request: OperationRequest) -> Artifact:
        voucher = outcome.voucher
        try:
            template = self._lifecycle.store.get_template(voucher.template_id)
            payload = self._lifecycle.payload_for(voucher)
            fields = resolve_fields(voucher, template, payload)
            return self._renderer.render(voucher, template, self._render_format, fields)
        except Exception as exc:
            logger.error(
                "artifact_generation_failed",
                extra={
                    "voucher_id": str(voucher.voucher_id),
                    "render_format": self._render_format.value,
                    "committed_status": outcome.new_status.value,
                    "error_type": type(exc).__name__,
                },
            )
            raise ArtifactGenerationFailedError(
                str(voucher.voucher_id), outcome.new_status.value, str(exc),
            ) from exc
