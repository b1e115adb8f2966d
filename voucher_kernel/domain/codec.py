"""
SerialTokenCodec -- signed, scannable voucher payloads.

Responsibility:
    Produce the string embedded in a voucher's QR code / barcode and verify
    a scanned string without touching the voucher store.  A forged or
    damaged code is rejected here, before any lookup.

Payload format (ASCII, ``|``-separated):

    <serial>|<timestamp>|<signature>

    serial     12-digit serial (see serial.py), check digit verified
    timestamp  UTC issuance instant as ``YYYYMMDDHHMMSSffffff`` (20 digits)
    signature  hex HMAC-SHA256(secret, "<serial>|<timestamp>")

Invariants enforced:
    - The secret is injected at construction, never read from globals,
      never logged, never included in an exception or ``repr``.
    - Signatures are compared in constant time.
    - The timestamp is informational.  Payload age is NOT an expiry check;
      expiry comes from the voucher's template.  Replay of a consumed
      voucher is stopped by the state machine, not here.

Share tokens (batch download links) use the same key:

    <nonce>.<signature>

    nonce      18 random bytes, base64url without padding
    signature  first 32 hex chars of HMAC-SHA256(secret, "share|<nonce>|<batch_id>")
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from voucher_kernel.domain.serial import parse_serial
from voucher_kernel.exceptions import (
    ConfigurationError,
    MalformedPayloadError,
    SignatureMismatchError,
)

PAYLOAD_SEPARATOR = "|"
_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"
_TIMESTAMP_LENGTH = 20
_SHARE_NONCE_BYTES = 18
_SHARE_SIGNATURE_LENGTH = 32


@dataclass(frozen=True)
class VerificationPayload:
    """Decoded contents of a scanned code.  Transient, never persisted."""

    serial_no: str
    issued_at: datetime
    signature: str


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _parse_timestamp(raw: str) -> datetime:
    if len(raw) != _TIMESTAMP_LENGTH or not raw.isascii() or not raw.isdigit():
        raise MalformedPayloadError(f"timestamp must be {_TIMESTAMP_LENGTH} digits")
    try:
        parsed = datetime.strptime(raw, _TIMESTAMP_FORMAT)
    except ValueError:
        raise MalformedPayloadError("timestamp is not a valid instant") from None
    return parsed.replace(tzinfo=timezone.utc)


class SerialTokenCodec:
    """
    Signs and verifies voucher payloads and batch share tokens.

    Contract:
        - ``encode_payload(serial, issued_at)`` -> ``serial|ts|sig``.
        - ``decode_and_verify(payload)`` -> VerificationPayload, or raises
          MalformedPayloadError / SignatureMismatchError.
        - ``generate_share_token(batch_id)`` / ``verify_share_token()``.

    Guarantees:
        - Same serial at different instants yields different signatures.
        - Thread-safe: holds only the immutable key.
    """

    def __init__(self, secret_key: str | bytes):
        if isinstance(secret_key, str):
            secret_key = secret_key.encode("utf-8")
        if not secret_key:
            raise ConfigurationError("codec.secret", "signing secret must not be empty")
        self._key = secret_key

    def __repr__(self) -> str:
        return "SerialTokenCodec(secret_key=<redacted>)"

    # -------------------------------------------------------------------------
    # Voucher payloads
    # -------------------------------------------------------------------------

    def _sign(self, message: str) -> str:
        return hmac.new(self._key, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def encode_payload(self, serial_no: str, issued_at: datetime) -> str:
        """Build the signed payload for a voucher.

        Naive datetimes are taken as UTC.

        Raises:
            MalformedPayloadError: If ``serial_no`` is not a valid serial.
        """
        parse_serial(serial_no)
        timestamp = _format_timestamp(issued_at)
        signature = self._sign(f"{serial_no}{PAYLOAD_SEPARATOR}{timestamp}")
        return PAYLOAD_SEPARATOR.join((serial_no, timestamp, signature))

    def decode_and_verify(self, payload: str) -> VerificationPayload:
        """Parse a scanned payload and check its signature.

        Structure is checked first so a damaged code is reported as
        malformed; only a well-formed payload can produce a mismatch.
        """
        if not isinstance(payload, str) or not payload:
            raise MalformedPayloadError("payload is empty")

        parts = payload.strip().split(PAYLOAD_SEPARATOR)
        if len(parts) != 3:
            raise MalformedPayloadError(
                f"expected 3 '{PAYLOAD_SEPARATOR}'-separated fields, got {len(parts)}"
            )
        serial_no, timestamp, signature = parts
        if not signature:
            raise MalformedPayloadError("signature is empty")

        parse_serial(serial_no)
        issued_at = _parse_timestamp(timestamp)

        expected = self._sign(f"{serial_no}{PAYLOAD_SEPARATOR}{timestamp}")
        if not hmac.compare_digest(
            expected.encode("utf-8"), signature.encode("utf-8")
        ):
            raise SignatureMismatchError(serial_no)

        return VerificationPayload(
            serial_no=serial_no,
            issued_at=issued_at,
            signature=signature,
        )

    # -------------------------------------------------------------------------
    # Share tokens
    # -------------------------------------------------------------------------

    def _share_signature(self, nonce: str, batch_id: UUID) -> str:
        return self._sign(f"share|{nonce}|{batch_id}")[:_SHARE_SIGNATURE_LENGTH]

    def generate_share_token(self, batch_id: UUID) -> str:
        """Unguessable token binding a download link to one batch."""
        nonce = base64.urlsafe_b64encode(
            secrets.token_bytes(_SHARE_NONCE_BYTES)
        ).decode("ascii").rstrip("=")
        return f"{nonce}.{self._share_signature(nonce, batch_id)}"

    def verify_share_token(self, token: str, batch_id: UUID) -> bool:
        nonce, sep, signature = token.partition(".")
        if not sep or not nonce or not signature:
            return False
        expected = self._share_signature(nonce, batch_id)
        return hmac.compare_digest(
            expected.encode("utf-8"), signature.encode("utf-8")
        )
