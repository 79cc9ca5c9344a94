"""
Shared result types for single-item edits.

Kept apart from the engines so that markup and measurement can both return
the same shape without importing each other.
"""

from __future__ import annotations

from dataclasses import dataclass

from wbs_kernel.domain.diagnostics import Diagnostic
from wbs_kernel.domain.line_item import ItemPatch, LineItem, patch_between


@dataclass(frozen=True)
class EditResult:
    """
    Outcome of editing one line item.

    Contract:
        ``item`` is the corrected new record; ``original`` is untouched.
    Guarantees:
        - ``diagnostics`` lists every clamp applied to the requested value.
    """

    original: LineItem
    item: LineItem
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def was_clamped(self) -> bool:
        return bool(self.diagnostics)

    @property
    def patch(self) -> ItemPatch | None:
        """Changed fields for persistence, or None when nothing changed."""
        return patch_between(self.original, self.item)
