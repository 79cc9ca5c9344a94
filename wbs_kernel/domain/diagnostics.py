"""Diagnostics -- non-fatal corrections reported alongside engine results."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from wbs_kernel.invariants import WbsInvariant


class DiagnosticCode(str, Enum):
    """What the engine corrected or refused."""

    ORPHANED_PARENT = "orphaned_parent"
    CYCLE_BROKEN = "cycle_broken"
    PARENT_NOT_CATEGORY = "parent_not_category"
    DUPLICATE_ID = "duplicate_id"
    DUPLICATE_CODE = "duplicate_code"
    QUANTITY_CLAMPED = "quantity_clamped"
    PERCENTAGE_CLAMPED = "percentage_clamped"
    NEGATIVE_VALUE_CLAMPED = "negative_value_clamped"
    DIVISION_UNDEFINED = "division_undefined"
    MOVE_REJECTED = "move_rejected"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single local correction.

    Contract:
        Produced by engines instead of raising when input data is
        malformed but recoverable.
    Guarantees:
        - ``item_id`` names the line item that was corrected.
        - ``invariant`` names the guarantee that was restored, when one
          applies.
    """

    code: DiagnosticCode
    item_id: str
    message: str
    severity: Severity = Severity.WARNING
    invariant: WbsInvariant | None = None

    def as_log_extra(self) -> dict[str, str | None]:
        return {
            "diagnostic_code": self.code.value,
            "item_id": self.item_id,
            "severity": self.severity.value,
            "invariant": self.invariant.value if self.invariant else None,
        }


def codes_of(diagnostics: Iterable[Diagnostic]) -> set[DiagnosticCode]:
    """Distinct diagnostic codes, handy for assertions and summaries."""
    return {d.code for d in diagnostics}
