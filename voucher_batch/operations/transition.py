"""
Status-only batch operations: issue, reissue, recall, dispose, redeem.

Each wraps VoucherLifecycleService so the batch path and the single-voucher
path share one implementation of validate / CAS-update / audit.

Replay rule: a voucher already at the target is reported as a successful
no-op, so retrying ``issue`` never reissues and never invalidates a payload
that was already handed out.  Only an operation whose required status is its
own target (``reissue``) walks the ``issued -> issued`` edge.
"""

from __future__ import annotations

from voucher_kernel.domain.rendering import Artifact
from voucher_kernel.domain.types import TransitionContext, Voucher, VoucherStatus
from voucher_kernel.exceptions import ValidationFailedError
from voucher_kernel.services.lifecycle_service import VoucherLifecycleService

from voucher_batch.operations.base import OperationOutcome, OperationRequest


def _noop(voucher: Voucher) -> OperationOutcome:
    return OperationOutcome(
        voucher=voucher,
        previous_status=voucher.status,
        new_status=voucher.status,
        message=f"already {voucher.status.value}",
    )


class TransitionOperation:
    """Move every voucher to one target status."""

    def __init__(
        self,
        name: str,
        target: VoucherStatus,
        lifecycle: VoucherLifecycleService,
        description: str = "",
        required_status: VoucherStatus | None = None,
    ):
        self._name = name
        self._target = target
        self._lifecycle = lifecycle
        self._description = description or f"Transition vouchers to {target.value}"
        self._required_status = required_status

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def target(self) -> VoucherStatus:
        return self._target

    def execute_item(self, voucher: Voucher, request: OperationRequest) -> OperationOutcome:
        if voucher.status == self._target and self._required_status != self._target:
            return _noop(voucher)

        if self._required_status is not None and voucher.status != self._required_status:
            raise ValidationFailedError(
                str(voucher.voucher_id), "status",
                f"{self._name} requires a {self._required_status.value} voucher, "
                f"found {voucher.status.value}",
            )

        context = TransitionContext(
            actor_id=request.actor_id,
            as_of=request.as_of,
            reason=request.param("reason"),
            notes=request.param("notes"),
        )
        result = self._lifecycle.apply_transition(voucher, self._target, context)
        return OperationOutcome(
            voucher=result.voucher,
            previous_status=voucher.status,
            new_status=result.new_status,
            message=f"{result.audit_record.action.value}: "
                    f"{voucher.status.value} -> {result.new_status.value}",
        )

    def after_commit(self, outcome: OperationOutcome, request: OperationRequest) -> Artifact | None:
        return None


class RedeemOperation:
    """Redeem vouchers (``site_id``, optional ``usage_amount`` and ``notes``).

    Run-level parameters are the defaults; per-voucher ``item_parameters``
    supply a different site or amount for individual rows.
    """

    name = "redeem"
    description = "Redeem vouchers at a site"

    def __init__(self, lifecycle: VoucherLifecycleService):
        self._lifecycle = lifecycle

    def execute_item(self, voucher: Voucher, request: OperationRequest) -> OperationOutcome:
        if voucher.status == VoucherStatus.USED:
            return _noop(voucher)

        result = self._lifecycle.redeem_voucher(
            voucher,
            site_id=request.param("site_id"),
            actor_id=request.actor_id,
            usage_amount=request.param("usage_amount"),
            notes=request.param("notes"),
        )
        return OperationOutcome(
            voucher=result.voucher,
            previous_status=voucher.status,
            new_status=result.new_status,
            message=f"redeemed {result.voucher.usage_amount} at {result.voucher.used_at_site_id}",
        )

    def after_commit(self, outcome: OperationOutcome, request: OperationRequest) -> Artifact | None:
        return None
