"""
Voucher state machine (``voucher_kernel.domain.state_machine``).

Responsibility
--------------
Pure validation of every status change a voucher can undergo.  The edge
table below is the single source of truth; nothing else in the engine
compares status strings.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  Takes a Voucher snapshot, returns a
new snapshot plus the mutation to persist and the audit record to append.
Persistence is the caller's job (lifecycle service / batch operations).

Edges
-----
    registered -> issued      ISSUE
    issued     -> issued      REISSUE   (reprint, status unchanged)
    issued     -> used        REDEEM    (requires site; usage amount <= nominal)
    issued     -> recalled    RECALL
    registered -> disposed    DISPOSE
    issued     -> disposed    DISPOSE

``used``, ``recalled`` and ``disposed`` are terminal.  A redemption is
reachable from ``registered`` through ``issued`` (see ``redemption_path``).

Invariants enforced
-------------------
* A rejected transition never mutates the voucher (snapshots are frozen).
* ``usage_amount`` is only ever set by the REDEEM edge, and never exceeds
  the nominal amount.
* Once ``used``, a voucher can never be redeemed again, whatever amount
  was recorded.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Mapping
from uuid import uuid4

from voucher_kernel.domain.types import (
    AuditAction,
    TransitionContext,
    TransitionResult,
    Voucher,
    VoucherAuditRecord,
    VoucherMutation,
    VoucherStatus,
)
from voucher_kernel.exceptions import (
    AlreadyTerminalError,
    InvalidTransitionError,
    ValidationFailedError,
)

S = VoucherStatus


@dataclass(frozen=True)
class Transition:
    """One allowed edge of the voucher lifecycle."""

    from_status: VoucherStatus
    to_status: VoucherStatus
    action: AuditAction


TRANSITIONS: tuple[Transition, ...] = (
    Transition(S.REGISTERED, S.ISSUED, AuditAction.ISSUE),
    Transition(S.ISSUED, S.ISSUED, AuditAction.REISSUE),
    Transition(S.ISSUED, S.USED, AuditAction.REDEEM),
    Transition(S.ISSUED, S.RECALLED, AuditAction.RECALL),
    Transition(S.REGISTERED, S.DISPOSED, AuditAction.DISPOSE),
    Transition(S.ISSUED, S.DISPOSED, AuditAction.DISPOSE),
)

TRANSITION_TABLE: Mapping[tuple[VoucherStatus, VoucherStatus], AuditAction] = MappingProxyType(
    {(t.from_status, t.to_status): t.action for t in TRANSITIONS}
)

TERMINAL_STATUSES: frozenset[VoucherStatus] = frozenset(
    {S.USED, S.RECALLED, S.DISPOSED}
)
REDEEMABLE_STATUSES: frozenset[VoucherStatus] = frozenset({S.REGISTERED, S.ISSUED})
REPRINTABLE_STATUSES: frozenset[VoucherStatus] = frozenset({S.REGISTERED, S.ISSUED})


def is_allowed(current: VoucherStatus, target: VoucherStatus) -> bool:
    return (current, target) in TRANSITION_TABLE


def allowed_targets(current: VoucherStatus) -> tuple[VoucherStatus, ...]:
    return tuple(t.to_status for t in TRANSITIONS if t.from_status == current)


def is_terminal(voucher: Voucher) -> bool:
    return voucher.status in TERMINAL_STATUSES


def is_redeemable(voucher: Voucher) -> bool:
    """True only for registered or issued vouchers."""
    return voucher.status in REDEEMABLE_STATUSES


def is_reprintable(voucher: Voucher) -> bool:
    """True for never-printed and already-printed vouchers alike."""
    return voucher.status in REPRINTABLE_STATUSES


def redemption_path(current: VoucherStatus) -> tuple[VoucherStatus, ...]:
    """Targets to apply, in order, to redeem a voucher in ``current``.

    A registered voucher is issued first so both steps are audited.
    Terminal statuses return ``(USED,)`` so the transition call reports
    AlreadyTerminalError.
    """
    if current == S.REGISTERED:
        return (S.ISSUED, S.USED)
    return (S.USED,)


class VoucherStateMachine:
    """
    Validates and applies voucher transitions.

    Contract:
        ``transition(voucher, target, context)`` returns a TransitionResult
        or raises InvalidTransitionError / AlreadyTerminalError /
        ValidationFailedError.  The input voucher is never modified.

    Non-goals:
        - Does not check template expiry or site eligibility (lifecycle
          service does, it holds the template).
        - Does not persist anything.
    """

    def transition(
        self,
        voucher: Voucher,
        target: VoucherStatus,
        context: TransitionContext,
    ) -> TransitionResult:
        current = voucher.status
        action = TRANSITION_TABLE.get((current, target))
        if action is None:
            if current in TERMINAL_STATUSES:
                raise AlreadyTerminalError(
                    str(voucher.voucher_id),
                    current.value,
                    target.value,
                    serial_no=voucher.serial_no,
                )
            raise InvalidTransitionError(
                str(voucher.voucher_id), current.value, target.value,
            )

        mutation, details = self._build_mutation(voucher, target, action, context)
        updated = replace(voucher, **mutation.changed_fields())

        record = VoucherAuditRecord(
            record_id=uuid4(),
            voucher_id=voucher.voucher_id,
            serial_no=voucher.serial_no,
            action=action,
            previous_status=current,
            new_status=target,
            actor_id=context.actor_id,
            occurred_at=context.as_of,
            reason=context.reason,
            details=details,
        )
        return TransitionResult(voucher=updated, mutation=mutation, audit_record=record)

    def _build_mutation(
        self,
        voucher: Voucher,
        target: VoucherStatus,
        action: AuditAction,
        context: TransitionContext,
    ) -> tuple[VoucherMutation, dict]:
        details: dict = {}
        if context.notes:
            details["notes"] = context.notes

        if action in (AuditAction.ISSUE, AuditAction.REISSUE):
            if voucher.issued_at is not None:
                details["previous_issued_at"] = voucher.issued_at.isoformat()
            return VoucherMutation(
                status=target, issued_at=context.as_of, notes=context.notes,
            ), details

        if action == AuditAction.REDEEM:
            usage_amount = self._validate_redemption(voucher, context)
            details.update(site_id=context.site_id, usage_amount=usage_amount)
            return VoucherMutation(
                status=target,
                used_at=context.as_of,
                used_at_site_id=context.site_id,
                used_by=context.actor_id,
                usage_amount=usage_amount,
                notes=context.notes,
            ), details

        if action == AuditAction.RECALL:
            return VoucherMutation(
                status=target,
                recalled_at=context.as_of,
                recall_reason=context.reason,
                notes=context.notes,
            ), details

        # DISPOSE
        return VoucherMutation(
            status=target, disposed_at=context.as_of, notes=context.notes,
        ), details

    @staticmethod
    def _validate_redemption(voucher: Voucher, context: TransitionContext) -> int:
        voucher_id = str(voucher.voucher_id)
        if not context.site_id or not context.site_id.strip():
            raise ValidationFailedError(voucher_id, "site_id", "usage site is required")

        if context.usage_amount is None:
            return voucher.amount
        if context.usage_amount <= 0:
            raise ValidationFailedError(
                voucher_id, "usage_amount",
                f"usage amount must be positive, got {context.usage_amount}",
            )
        if context.usage_amount > voucher.amount:
            raise ValidationFailedError(
                voucher_id, "usage_amount",
                f"usage amount {context.usage_amount} exceeds nominal amount {voucher.amount}",
            )
        return context.usage_amount
