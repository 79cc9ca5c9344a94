"""
Module: wbs_engines.code_import
Responsibility:
    Turn already-parsed spreadsheet rows keyed by dotted position codes
    (``1``, ``1.2``, ``1.2.3``) into line items with minted ids and
    parent references resolved by code prefix.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Reading the workbook is
    the caller's business; this module starts from rows.

Invariants enforced:
    - ``order`` is the row index, so the imported sibling order is the
      sheet order.
    - The first row carrying a code owns it; later rows with the same code
      are imported but never chosen as a parent.
    - A row whose parent code is missing becomes a root (nothing is
      dropped).

Usage:
    from wbs_engines.code_import import ImportedRow, resolve_imported_rows

    result = resolve_imported_rows([
        ImportedRow(code="1", kind="category", name="Foundations"),
        ImportedRow(code="1.1", name="Concrete", unit="m3", contract_quantity="12"),
    ])
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from wbs_engines.tracer import traced_engine
from wbs_engines.tree_builder import build_tree, normalize_code, resolve_parents_by_code
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import LineItem, LineItemKind
from wbs_kernel.domain.rounding import ZERO, to_decimal
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger, log_diagnostics

logger = get_logger("engines.code_import")

DEFAULT_ITEM_UNIT = "un"
DEFAULT_ROW_NAME = "New item"


@dataclass(frozen=True)
class ImportedRow:
    """One parsed sheet row."""

    code: str
    kind: str = "item"
    name: str = ""
    unit: str = ""
    contract_quantity: Decimal = ZERO
    unit_price_ex_markup: Decimal = ZERO
    external_code: str = ""
    # Price reference table the unit price came from, e.g. "SINAPI 03/2025".
    price_source: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", normalize_code(self.code or ""))
        object.__setattr__(
            self, "contract_quantity", to_decimal(self.contract_quantity, "contract_quantity")
        )
        object.__setattr__(
            self,
            "unit_price_ex_markup",
            to_decimal(self.unit_price_ex_markup, "unit_price_ex_markup"),
        )

    @property
    def line_item_kind(self) -> LineItemKind:
        """Anything other than ``category`` (any case) is a priced item."""
        if str(self.kind or "").strip().lower() == LineItemKind.CATEGORY.value:
            return LineItemKind.CATEGORY
        return LineItemKind.ITEM


@dataclass(frozen=True)
class ImportResult:
    items: tuple[LineItem, ...]
    diagnostics: tuple[Diagnostic, ...]
    category_count: int
    item_count: int


def _new_id() -> str:
    return str(uuid.uuid4())


@traced_engine("code_import", "1.0")
def resolve_imported_rows(
    rows: Sequence[ImportedRow],
    id_factory: Callable[[], str] | None = None,
) -> ImportResult:
    """
    Build line items from code-keyed rows.

    Args:
        rows: Parsed rows in sheet order. Rows with an empty code are
            skipped.
        id_factory: Mints ids; random UUID4 strings when omitted.

    Returns:
        ImportResult with items in row order.
    """
    id_factory = id_factory or _new_id
    rows = [row for row in rows if row.code]
    diagnostics: list[Diagnostic] = []

    ids = [id_factory() for _ in rows]
    parents = resolve_parents_by_code([row.code for row in rows])

    first_owner: dict[str, int] = {}
    for index, row in enumerate(rows):
        owner = first_owner.setdefault(row.code, index)
        if owner != index:
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.DUPLICATE_CODE,
                item_id=ids[index],
                message=f"Code {row.code} already used by row {owner}; row kept, not a parent",
            ))

    items: list[LineItem] = []
    for index, row in enumerate(rows):
        parent_index = parents[index]
        if parent_index is None and "." in row.code:
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.ORPHANED_PARENT,
                item_id=ids[index],
                message=f"No row with the parent code of {row.code}; placed at root",
                invariant=WbsInvariant.PARENT_IS_CATEGORY,
            ))

        kind = row.line_item_kind
        unit = row.unit.strip() or ("" if kind is LineItemKind.CATEGORY else DEFAULT_ITEM_UNIT)
        items.append(LineItem(
            id=ids[index],
            parent_id=ids[parent_index] if parent_index is not None else None,
            kind=kind,
            order=index,
            name=row.name.strip() or DEFAULT_ROW_NAME,
            unit=unit,
            code=row.external_code,
            source=row.price_source.strip(),
            wbs=row.code,
            contract_quantity=row.contract_quantity,
            unit_price_ex_markup=row.unit_price_ex_markup,
        ))

    log_diagnostics(logger, "import_row_repaired", diagnostics)

    category_count = sum(1 for item in items if item.is_category)
    logger.info("rows_imported", extra={
        "row_count": len(rows),
        "category_count": category_count,
        "item_count": len(items) - category_count,
        "diagnostic_count": len(diagnostics),
    })
    return ImportResult(
        items=tuple(items),
        diagnostics=tuple(diagnostics),
        category_count=category_count,
        item_count=len(items) - category_count,
    )


def order_parents_first(items: Sequence[LineItem]) -> tuple[LineItem, ...]:
    """
    Stable sort by depth so every parent precedes its children.

    Used to insert an import in batches where a child row must reference
    an already stored parent.
    """
    tree = build_tree(items)
    depth = {node.id: node.depth for node in tree}
    return tuple(sorted(items, key=lambda item: depth.get(item.id, 0)))
