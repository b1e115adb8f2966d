"""
BatchOperation protocol, supporting types, and OperationRegistry.

Contract:
    ``BatchOperation`` is the strategy the processor applies to every
    voucher of a run.  ``OperationRegistry`` stores operations keyed by
    ``name`` (``issue``, ``redeem``, ``print``, ...).

Architecture:
    voucher_batch/operations.  Imports only voucher_kernel domain types and
    the lifecycle service; never a concrete store.

Invariants enforced:
    - One operation per ``name``.
    - ``execute_item`` runs inside the processor's unit of work; anything
      it raises rolls back that voucher only.
    - ``after_commit`` runs after the unit of work closed; its failures are
      reported as ArtifactGenerationFailed and never undo the state change.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Protocol, runtime_checkable
from uuid import UUID

from voucher_kernel.domain.rendering import Artifact
from voucher_kernel.domain.types import Voucher, VoucherStatus
from voucher_kernel.exceptions import OperationNotRegisteredError


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class OperationRequest:
    """Inputs for the items of a run.

    ``parameters`` apply to every item; ``item_parameters`` override them
    for individual vouchers (a bulk redemption sheet with one amount and
    site per row).
    """

    actor_id: UUID
    as_of: datetime
    parameters: dict[str, Any] = field(default_factory=dict)
    item_parameters: Mapping[UUID, Mapping[str, Any]] = field(default_factory=dict)

    def param(self, name: str, default: Any = None) -> Any:
        return self.parameters.get(name, default)

    def for_voucher(self, voucher_id: UUID) -> OperationRequest:
        """Request seen by one voucher: run-level parameters plus its overrides."""
        overrides = self.item_parameters.get(voucher_id)
        if not overrides:
            return self
        merged = dict(self.parameters)
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return replace(self, parameters=merged, item_parameters={})


@dataclass(frozen=True)
class OperationOutcome:
    """Result of ``execute_item`` for one voucher."""

    voucher: Voucher
    previous_status: VoucherStatus
    new_status: VoucherStatus
    message: str


# =============================================================================
# BatchOperation Protocol
# =============================================================================


@runtime_checkable
class BatchOperation(Protocol):
    """Interface every batch operation implements.

    Contract:
        - ``name``: unique key registered in OperationRegistry.
        - ``description``: human-readable label for logs and UIs.
        - ``execute_item()``: state step for ONE voucher.
        - ``after_commit()``: optional side effect once the state step is
          committed (rendering).  Returns None when there is nothing to do.

    Non-goals:
        - Does NOT open units of work; the processor owns them.
        - Does NOT retry.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    def execute_item(self, voucher: Voucher, request: OperationRequest) -> OperationOutcome:
        ...

    def after_commit(
        self, outcome: OperationOutcome, request: OperationRequest,
    ) -> Artifact | None:
        ...


# =============================================================================
# OperationRegistry
# =============================================================================


class OperationRegistry:
    """Registry mapping operation names to BatchOperation implementations."""

    def __init__(self) -> None:
        self._operations: dict[str, BatchOperation] = {}

    def register(self, operation: BatchOperation) -> None:
        """Register an operation.

        Raises:
            ValueError: If an operation with the same name is already registered.
        """
        if operation.name in self._operations:
            raise ValueError(f"Operation '{operation.name}' is already registered")
        self._operations[operation.name] = operation

    def get(self, name: str) -> BatchOperation:
        """Raises OperationNotRegisteredError if ``name`` is unknown."""
        try:
            return self._operations[name]
        except KeyError:
            raise OperationNotRegisteredError(name, self.list_operations()) from None

    def list_operations(self) -> tuple[str, ...]:
        return tuple(sorted(self._operations))

    def __len__(self) -> int:
        return len(self._operations)

    def __contains__(self, name: str) -> bool:
        return name in self._operations
