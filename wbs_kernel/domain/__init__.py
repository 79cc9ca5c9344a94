"""Pure domain types and numeric kernel for the WBS engines."""

from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode, Severity, codes_of
from wbs_kernel.domain.line_item import (
    EditedExMarkup,
    EditedWithMarkup,
    ItemPatch,
    LineItem,
    LineItemKind,
    PriceAuthority,
    PriceEdit,
    diff_items,
    patch_between,
)

__all__ = [
    "Diagnostic",
    "DiagnosticCode",
    "Severity",
    "codes_of",
    "EditedExMarkup",
    "EditedWithMarkup",
    "ItemPatch",
    "LineItem",
    "LineItemKind",
    "PriceAuthority",
    "PriceEdit",
    "diff_items",
    "patch_between",
]
