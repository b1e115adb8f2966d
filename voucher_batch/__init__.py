"""
voucher_batch -- Batch Operation Processor for the voucher engine.

Applies one operation (a status transition, or a transition followed by
artifact rendering) across an ordered list of voucher ids in bounded
chunks, recording one result per id and continuing past failures.

Architecture:
    voucher_batch/ is a top-level package.  Nothing in voucher_kernel
    imports from voucher_batch.
"""
