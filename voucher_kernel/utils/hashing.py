"""
Deterministic hashing for the voucher audit chain.

Every audit record carries ``hash = SHA-256(voucher_id | action |
payload_hash | prev_hash)`` where ``payload_hash`` covers the record's
business fields.  Tampering with any stored record, or deleting one from
the middle, breaks the chain at that point.
"""

import hashlib
import json
from dataclasses import replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from voucher_kernel.domain.types import VoucherAuditRecord
from voucher_kernel.exceptions import AuditChainBrokenError

GENESIS_HASH = "0" * 64


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable rendering of special types."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def _record_payload(record: VoucherAuditRecord) -> dict:
    # Timestamps are hashed as UTC ISO strings so a backend that drops
    # tzinfo on read still reproduces the hash.
    occurred_at = record.occurred_at
    if occurred_at.tzinfo is not None:
        occurred_at = occurred_at.astimezone(timezone.utc).replace(tzinfo=None)
    return {
        "record_id": record.record_id,
        "serial_no": record.serial_no,
        "previous_status": record.previous_status,
        "new_status": record.new_status,
        "actor_id": record.actor_id,
        "occurred_at": occurred_at,
        "reason": record.reason,
        "details": record.details,
        "seq": record.seq,
    }


def compute_audit_hash(record: VoucherAuditRecord, prev_hash: str) -> str:
    payload_hash = hash_payload(_record_payload(record))
    material = f"{record.voucher_id}|{record.action.value}|{payload_hash}|{prev_hash}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def seal_audit_record(
    record: VoucherAuditRecord, seq: int, prev_hash: str | None,
) -> VoucherAuditRecord:
    """Assign ``seq`` and chain the record onto ``prev_hash``."""
    prev = prev_hash or GENESIS_HASH
    numbered = replace(record, seq=seq, prev_hash=prev)
    return replace(numbered, hash=compute_audit_hash(numbered, prev))


def verify_audit_chain(records: Iterable[VoucherAuditRecord]) -> int:
    """Recompute every hash in seq order.

    Returns:
        Number of records verified.

    Raises:
        AuditChainBrokenError: on the first record whose prev_hash or hash
            does not match.
    """
    prev = GENESIS_HASH
    count = 0
    for record in sorted(records, key=lambda r: r.seq or 0):
        if record.prev_hash != prev:
            raise AuditChainBrokenError(record.seq or 0, prev, record.prev_hash or "")
        expected = compute_audit_hash(record, prev)
        if record.hash != expected:
            raise AuditChainBrokenError(record.seq or 0, expected, record.hash or "")
        prev = record.hash
        count += 1
    return count
