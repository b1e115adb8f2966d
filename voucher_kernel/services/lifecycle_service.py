"""
VoucherLifecycleService -- single-voucher entry points of the engine.

Contract:
    - ``register_voucher()`` creates a REGISTERED voucher with a fresh serial.
    - ``transition_voucher()`` loads, validates, CAS-updates and audits one
      transition inside a unit of work.
    - ``verify()`` checks a scanned payload with the codec only.
    - ``redeem()`` / ``redeem_by_serial()`` run the full redemption path:
      authenticity, lookup, redeemable check, template checks, USED.
    - ``issue_payload()`` signs the payload printed on an issued voucher.

Architecture: voucher_kernel/services.  Depends on the domain layer and the
    VoucherStore protocol; never on a concrete store.

Invariants enforced:
    - Every status change goes through VoucherStateMachine and appends
      exactly one audit record in the same unit of work as the update.
    - Template expiry is the only expiry; payload age is never checked.
    - ConcurrentModificationError propagates to the caller, no auto-retry.
    - The codec secret never reaches a log line or an exception.
"""

from __future__ import annotations

import random
from uuid import UUID, uuid4

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.codec import SerialTokenCodec, VerificationPayload
from voucher_kernel.domain.serial import generate_serial, parse_serial
from voucher_kernel.domain.state_machine import (
    VoucherStateMachine,
    is_redeemable,
    redemption_path,
)
from voucher_kernel.domain.store import VoucherStore
from voucher_kernel.domain.types import (
    AuditAction,
    RecipientInfo,
    TransitionContext,
    TransitionResult,
    ValueType,
    Voucher,
    VoucherAuditRecord,
    VoucherStatus,
    VoucherTemplate,
)
from voucher_kernel.exceptions import (
    AlreadyTerminalError,
    DuplicateSerialError,
    SerialGenerationExhaustedError,
    ValidationFailedError,
    VerificationError,
    VoucherExpiredError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.utils.hashing import verify_audit_chain

logger = get_logger("services.lifecycle")

DEFAULT_MAX_SERIAL_ATTEMPTS = 5


class VoucherLifecycleService:
    """Register, transition, verify and redeem individual vouchers."""

    def __init__(
        self,
        store: VoucherStore,
        codec: SerialTokenCodec,
        clock: Clock | None = None,
        state_machine: VoucherStateMachine | None = None,
        rng: random.Random | None = None,
        max_serial_attempts: int = DEFAULT_MAX_SERIAL_ATTEMPTS,
    ):
        if max_serial_attempts < 1:
            raise ValueError("max_serial_attempts must be at least 1")
        self._store = store
        self._codec = codec
        self._clock = clock or SystemClock()
        self._state_machine = state_machine or VoucherStateMachine()
        self._rng = rng
        self._max_serial_attempts = max_serial_attempts

    @property
    def store(self) -> VoucherStore:
        return self._store

    @property
    def clock(self) -> Clock:
        return self._clock

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_voucher(
        self,
        template_id: UUID,
        recipient: RecipientInfo,
        actor_id: UUID,
        notes: str | None = None,
    ) -> Voucher:
        """Create a REGISTERED voucher for ``recipient`` under a template.

        A serial collision is retried with a new random part.

        Raises:
            TemplateNotFoundError: Unknown template.
            ValidationFailedError: Template is inactive.
            SerialGenerationExhaustedError: Every attempt collided.
        """
        template = self._store.get_template(template_id)
        voucher_id = uuid4()
        if not template.is_active:
            raise ValidationFailedError(
                str(voucher_id), "template_id",
                f"template '{template.name}' is inactive",
            )

        now = self._clock.now()
        for attempt in range(1, self._max_serial_attempts + 1):
            voucher = Voucher(
                voucher_id=voucher_id,
                serial_no=generate_serial(now, self._rng),
                template_id=template.template_id,
                association=recipient.association,
                member_id=recipient.member_id,
                name=recipient.name,
                amount=template.amount,
                dob=recipient.dob,
                phone=recipient.phone,
                notes=notes,
                created_at=now,
            )
            try:
                with self._store.unit_of_work():
                    stored = self._store.add_voucher(voucher)
                    self._store.append_audit_record(VoucherAuditRecord(
                        record_id=uuid4(),
                        voucher_id=voucher_id,
                        serial_no=stored.serial_no,
                        action=AuditAction.REGISTER,
                        previous_status=None,
                        new_status=VoucherStatus.REGISTERED,
                        actor_id=actor_id,
                        occurred_at=now,
                        details={"template_id": str(template.template_id)},
                    ))
            except DuplicateSerialError:
                logger.warning(
                    "serial_collision",
                    extra={"voucher_id": str(voucher_id), "attempt": attempt},
                )
                continue

            logger.info(
                "voucher_registered",
                extra={
                    "voucher_id": str(voucher_id),
                    "serial_no": stored.serial_no,
                    "template_id": str(template.template_id),
                    "amount": stored.amount,
                },
            )
            return stored

        raise SerialGenerationExhaustedError(self._max_serial_attempts)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def transition_voucher(
        self,
        voucher_id: UUID,
        target: VoucherStatus,
        context: TransitionContext,
    ) -> TransitionResult:
        """Apply one transition and persist it.

        Raises:
            VoucherNotFoundError, InvalidTransitionError, AlreadyTerminalError,
            ValidationFailedError, ConcurrentModificationError.
        """
        with LogContext.bind(voucher_id=str(voucher_id)):
            with self._store.unit_of_work():
                voucher = self._store.get_by_id(voucher_id)
                return self.apply_transition(voucher, target, context)

    def apply_transition(
        self,
        voucher: Voucher,
        target: VoucherStatus,
        context: TransitionContext,
    ) -> TransitionResult:
        """Validate, CAS-update and audit a transition on an already-loaded voucher.

        The caller owns the unit of work.  ``voucher.status`` is the expected
        status for the compare-and-swap.
        """
        result = self._state_machine.transition(voucher, target, context)
        updated = self._store.update(voucher.voucher_id, voucher.status, result.mutation)
        sealed = self._store.append_audit_record(result.audit_record)

        logger.info(
            "voucher_transitioned",
            extra={
                "voucher_id": str(voucher.voucher_id),
                "serial_no": voucher.serial_no,
                "action": sealed.action.value,
                "from_status": voucher.status.value,
                "to_status": updated.status.value,
                "audit_seq": sealed.seq,
            },
        )
        return TransitionResult(voucher=updated, mutation=result.mutation, audit_record=sealed)

    # -------------------------------------------------------------------------
    # Verification and redemption
    # -------------------------------------------------------------------------

    def verify(self, payload: str) -> VerificationPayload:
        """Check a scanned payload's structure and signature.  No store access."""
        try:
            verified = self._codec.decode_and_verify(payload)
        except VerificationError as exc:
            logger.warning("payload_verification_failed", extra={"error_code": exc.code})
            raise
        logger.debug("payload_verified", extra={"serial_no": verified.serial_no})
        return verified

    def redeem(
        self,
        payload: str,
        site_id: str,
        actor_id: UUID,
        usage_amount: int | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Redeem the voucher behind a scanned payload.

        Raises:
            MalformedPayloadError / SignatureMismatchError: Bad code.
            VoucherNotFoundError: Valid signature, unknown serial.
            AlreadyTerminalError: Voucher already used, recalled or disposed.
            ValidationFailedError / VoucherExpiredError: Template checks,
                amount and site constraints, or a payload superseded by a
                reissue.
        """
        verified = self.verify(payload)
        voucher = self._store.get_by_serial(verified.serial_no)
        self._ensure_redeemable(voucher)

        if voucher.issued_at is not None and voucher.issued_at != verified.issued_at:
            raise ValidationFailedError(
                str(voucher.voucher_id), "payload",
                "payload was superseded by a later reissue",
            )
        return self.redeem_voucher(voucher, site_id, actor_id, usage_amount, notes)

    def redeem_by_serial(
        self,
        serial_no: str,
        site_id: str,
        actor_id: UUID,
        usage_amount: int | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Redeem by a manually typed serial; the check digit replaces the signature."""
        serial_no = serial_no.replace("-", "").strip()
        parse_serial(serial_no)
        voucher = self._store.get_by_serial(serial_no)
        return self.redeem_voucher(voucher, site_id, actor_id, usage_amount, notes)

    def _ensure_redeemable(self, voucher: Voucher) -> None:
        if not is_redeemable(voucher):
            logger.warning(
                "redeem_rejected_terminal",
                extra={
                    "voucher_id": str(voucher.voucher_id),
                    "serial_no": voucher.serial_no,
                    "status": voucher.status.value,
                },
            )
            raise AlreadyTerminalError(
                str(voucher.voucher_id),
                voucher.status.value,
                VoucherStatus.USED.value,
                serial_no=voucher.serial_no,
            )

    def redeem_voucher(
        self,
        voucher: Voucher,
        site_id: str,
        actor_id: UUID,
        usage_amount: int | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Redeem an already-loaded voucher (template checks, then USED).

        A REGISTERED voucher is issued first; both steps are audited.
        """
        self._ensure_redeemable(voucher)
        template = self._store.get_template(voucher.template_id)
        now = self._clock.now()
        self._check_template(voucher, template, site_id, usage_amount, now.date())

        with LogContext.bind(voucher_id=str(voucher.voucher_id), operation="redeem"):
            with self._store.unit_of_work():
                result = None
                current = voucher
                for target in redemption_path(voucher.status):
                    context = TransitionContext(
                        actor_id=actor_id,
                        as_of=now,
                        site_id=site_id if target == VoucherStatus.USED else None,
                        usage_amount=usage_amount if target == VoucherStatus.USED else None,
                        notes=notes,
                    )
                    result = self.apply_transition(current, target, context)
                    current = result.voucher
        return result

    @staticmethod
    def _check_template(
        voucher: Voucher,
        template: VoucherTemplate,
        site_id: str,
        usage_amount: int | None,
        today,
    ) -> None:
        voucher_id = str(voucher.voucher_id)
        if template.is_expired(today):
            raise VoucherExpiredError(
                voucher_id, template.valid_until.isoformat(), today.isoformat(),
            )
        if site_id and not template.accepts_site(site_id):
            raise ValidationFailedError(
                voucher_id, "site_id",
                f"site '{site_id}' is not eligible for template '{template.name}'",
            )
        if (
            template.value_type == ValueType.FIXED_ITEM
            and usage_amount is not None
            and usage_amount != voucher.amount
        ):
            raise ValidationFailedError(
                voucher_id, "usage_amount",
                "fixed-item vouchers are consumed at their nominal amount",
            )

    # -------------------------------------------------------------------------
    # Payloads and audit
    # -------------------------------------------------------------------------

    def issue_payload(self, voucher_id: UUID) -> str:
        """Signed payload for the QR code of an issued voucher."""
        voucher = self._store.get_by_id(voucher_id)
        if voucher.status != VoucherStatus.ISSUED or voucher.issued_at is None:
            raise ValidationFailedError(
                str(voucher_id), "status",
                f"payload is only available for issued vouchers, not {voucher.status.value}",
            )
        return self.payload_for(voucher)

    def payload_for(self, voucher: Voucher) -> str:
        return self._codec.encode_payload(voucher.serial_no, voucher.issued_at)

    def audit_trail(self, voucher_id: UUID) -> list[VoucherAuditRecord]:
        return self._store.list_audit_records(voucher_id)

    def verify_audit_trail(self) -> int:
        """Recompute the whole hash chain.  Returns the number of records checked."""
        return verify_audit_chain(self._store.list_audit_records())
