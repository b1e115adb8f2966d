"""
Artifact renderer contract and field resolution.

The engine does not render anything.  It resolves the values a template
needs (serial, amounts, holder, signed payload for the QR code) and hands
them to an external ``ArtifactRenderer`` together with the voucher and
template.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol, runtime_checkable
from uuid import UUID

from voucher_kernel.domain.serial import format_serial
from voucher_kernel.domain.types import Voucher, VoucherTemplate


class RenderFormat(str, Enum):
    """Layout requested from the renderer."""

    PRINT = "print"  # A4 / label sheet for browser printing
    DISPLAY = "display"  # Compact mobile view


@dataclass(frozen=True)
class Artifact:
    """A rendered document for one voucher."""

    voucher_id: UUID
    render_format: RenderFormat
    media_type: str
    content: bytes | str
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ArtifactRenderer(Protocol):
    """Turns a voucher plus template into a printable/displayable document."""

    def render(
        self,
        voucher: Voucher,
        template: VoucherTemplate,
        render_format: RenderFormat,
        fields: Mapping[str, Any],
    ) -> Artifact:
        """Raise any exception on failure; the caller wraps it."""
        ...


def resolve_fields(
    voucher: Voucher,
    template: VoucherTemplate,
    payload: str | None = None,
) -> dict[str, Any]:
    """Field values a design template can reference."""
    return {
        "serial_no": voucher.serial_no,
        "serial_display": format_serial(voucher.serial_no),
        "template_name": template.name,
        "value_type": template.value_type.value,
        "amount": voucher.amount,
        "association": voucher.association,
        "member_id": voucher.member_id,
        "name": voucher.name,
        "dob": voucher.dob.isoformat() if voucher.dob else None,
        "issued_at": voucher.issued_at.isoformat() if voucher.issued_at else None,
        "valid_until": template.valid_until.isoformat() if template.valid_until else None,
        "qr_payload": payload,
        "barcode_value": voucher.serial_no,
    }
