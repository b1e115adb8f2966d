"""
Voucher Kernel

Lifecycle engine for paper and mobile gift vouchers:
- Signed, scannable serial payloads verified without a store round trip
- Closed status enum with an explicit transition table
- Compare-and-swap persistence with a hash-chained audit trail
"""

__version__ = "0.1.0"
