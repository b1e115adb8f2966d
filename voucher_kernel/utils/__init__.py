"""Utility modules for the voucher kernel."""

from voucher_kernel.utils.hashing import (
    canonicalize_json,
    compute_audit_hash,
    hash_payload,
    verify_audit_chain,
)

__all__ = [
    "canonicalize_json",
    "compute_audit_hash",
    "hash_payload",
    "verify_audit_chain",
]
