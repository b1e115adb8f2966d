"""Batch operations and the default operation registry."""

from voucher_kernel.domain.rendering import ArtifactRenderer, RenderFormat
from voucher_kernel.domain.types import VoucherStatus
from voucher_kernel.services.lifecycle_service import VoucherLifecycleService

from voucher_batch.operations.artifact import ArtifactOperation
from voucher_batch.operations.base import (
    BatchOperation,
    OperationOutcome,
    OperationRegistry,
    OperationRequest,
)
from voucher_batch.operations.transition import RedeemOperation, TransitionOperation


def default_operation_registry(
    lifecycle: VoucherLifecycleService,
    renderer: ArtifactRenderer | None = None,
) -> OperationRegistry:
    """Registry with every built-in operation.

    ``print`` and ``mobile_issue`` need a renderer and are only registered
    when one is supplied.
    """
    registry = OperationRegistry()
    registry.register(TransitionOperation(
        "issue", VoucherStatus.ISSUED, lifecycle,
        description="Issue registered vouchers",
    ))
    registry.register(TransitionOperation(
        "reissue", VoucherStatus.ISSUED, lifecycle,
        description="Reissue already-issued vouchers",
        required_status=VoucherStatus.ISSUED,
    ))
    registry.register(TransitionOperation(
        "recall", VoucherStatus.RECALLED, lifecycle,
        description="Recall issued vouchers",
    ))
    registry.register(TransitionOperation(
        "dispose", VoucherStatus.DISPOSED, lifecycle,
        description="Dispose registered or issued vouchers",
    ))
    registry.register(RedeemOperation(lifecycle))
    if renderer is not None:
        registry.register(ArtifactOperation(
            "print", lifecycle, renderer, RenderFormat.PRINT,
            description="Issue and render print sheets",
        ))
        registry.register(ArtifactOperation(
            "mobile_issue", lifecycle, renderer, RenderFormat.DISPLAY,
            description="Issue and render mobile vouchers",
        ))
    return registry


__all__ = [
    "ArtifactOperation",
    "BatchOperation",
    "OperationOutcome",
    "OperationRegistry",
    "OperationRequest",
    "RedeemOperation",
    "TransitionOperation",
    "default_operation_registry",
]
