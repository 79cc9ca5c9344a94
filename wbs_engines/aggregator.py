"""
Module: wbs_engines.aggregator
Responsibility:
    Derive every computed field of the WBS: unit prices through the BDI
    markup, contract / previous / current / accumulated / balance
    quantities and totals for priced items, and bottom-up rollups for
    categories.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumes a ``WbsTree`` from ``wbs_engines.tree_builder``.

Invariants enforced:
    - Rounding at the point of production: every monetary value is rounded
      half away from zero as soon as it is computed, and category totals
      are plain sums of already-rounded children. A category therefore
      always equals the sum of its direct children, for every financial
      field, at every depth.
    - CURRENT_QUANTITY_BOUNDED: a stored current quantity outside
      ``[0, contract - previous]`` is clamped (and reported).
    - Division by zero yields zero percentages, never NaN.
    - Quantities roll up only when every descendant item shares one unit;
      otherwise the rollup is ``None`` (absent, not zero).
    - Over-execution policy lives in one predicate, ``overrun_is_clamped``.

Failure modes:
    - InvalidMarkupError for an unusable BDI percentage.
    - Data problems are clamped and returned as diagnostics.

Usage:
    from wbs_engines.tree_builder import build_tree
    from wbs_engines.aggregator import aggregate

    forest = aggregate(build_tree(items), Decimal("20"))
    forest.get("1").contract_total
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from wbs_config.schema import DEFAULT_SETTINGS, EngineSettings
from wbs_engines.markup import coerce_bdi, resolve_unit_prices
from wbs_engines.tracer import traced_engine
from wbs_engines.tree_builder import TreeNode, WbsTree
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import LineItem, LineItemKind
from wbs_kernel.domain.rounding import (
    ZERO,
    clamp,
    money_sum,
    percentage_of,
    round_money,
    round_quantity,
)
from wbs_kernel.exceptions import LineItemNotFoundError
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger, log_diagnostics

logger = get_logger("engines.aggregator")

FINANCIAL_FIELDS: tuple[str, ...] = (
    "contract_total",
    "previous_total",
    "current_total",
    "accumulated_total",
    "balance_total",
)

QUANTITY_FIELDS: tuple[str, ...] = (
    "contract_quantity",
    "previous_quantity",
    "current_quantity",
    "accumulated_quantity",
    "balance_quantity",
)


@dataclass(frozen=True)
class ProcessedNode:
    """
    A line item with all derived values.

    Contract:
        Items carry their own prices, quantities and totals. Categories
        carry sums over their descendant items; their unit prices are
        always ``None`` and their quantities are ``None`` when descendant
        units differ (``mixed_units``).
    """

    item: LineItem
    parent_id: str | None
    depth: int
    wbs_code: str
    child_ids: tuple[str, ...]
    unit: str | None
    unit_price_ex_markup: Decimal | None
    unit_price_with_markup: Decimal | None
    contract_quantity: Decimal | None
    previous_quantity: Decimal | None
    current_quantity: Decimal | None
    accumulated_quantity: Decimal | None
    balance_quantity: Decimal | None
    contract_total: Decimal
    previous_total: Decimal
    current_total: Decimal
    accumulated_total: Decimal
    balance_total: Decimal
    current_percentage: Decimal
    accumulated_percentage: Decimal
    mixed_units: bool = False
    descendant_item_count: int = 0

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def kind(self) -> LineItemKind:
        return self.item.kind

    @property
    def is_category(self) -> bool:
        return self.item.is_category

    @property
    def has_children(self) -> bool:
        return bool(self.child_ids)

    @property
    def has_quantity_rollup(self) -> bool:
        return self.contract_quantity is not None

    def financials(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in FINANCIAL_FIELDS}


@dataclass(frozen=True)
class ProcessedForest:
    """
    Aggregated WBS, same arena layout as ``WbsTree``.

    Contract:
        ``nodes`` iterates in pre-order; ``root_ids`` in sibling order.
    Guarantees:
        - ``diagnostics`` contains the builder's repairs followed by the
          aggregator's clamps.
    """

    nodes: Mapping[str, ProcessedNode]
    root_ids: tuple[str, ...]
    bdi: Decimal
    settings: EngineSettings
    diagnostics: tuple[Diagnostic, ...] = ()

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.nodes

    def __iter__(self) -> Iterator[ProcessedNode]:
        return iter(self.nodes.values())

    def get(self, item_id: str) -> ProcessedNode:
        try:
            return self.nodes[item_id]
        except KeyError:
            raise LineItemNotFoundError(item_id) from None

    def children(self, parent_id: str | None) -> tuple[ProcessedNode, ...]:
        ids = self.root_ids if parent_id is None else self.get(parent_id).child_ids
        return tuple(self.nodes[i] for i in ids)

    def roots(self) -> tuple[ProcessedNode, ...]:
        return self.children(None)

    def ancestors(self, item_id: str) -> tuple[str, ...]:
        chain: list[str] = []
        current = self.get(item_id).parent_id
        while current is not None:
            chain.append(current)
            current = self.nodes[current].parent_id
        return tuple(chain)

    def priced_items(self) -> tuple[ProcessedNode, ...]:
        return tuple(node for node in self.nodes.values() if not node.is_category)

    def totals(self) -> dict[str, Decimal]:
        """Grand totals: each financial field summed over the roots."""
        roots = self.roots()
        return {
            name: money_sum((getattr(r, name) for r in roots), self.settings.money_places)
            for name in FINANCIAL_FIELDS
        }


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def overrun_is_clamped(settings: EngineSettings) -> bool:
    """Whether a negative balance (over-execution) is floored at zero."""
    return settings.clamp_overrun_balance


def apply_balance_policy(balance: Decimal, settings: EngineSettings) -> Decimal:
    if balance < ZERO and overrun_is_clamped(settings):
        return ZERO
    return balance


# ---------------------------------------------------------------------------
# Item and category derivation
# ---------------------------------------------------------------------------


def _non_negative(
    value: Decimal,
    field_name: str,
    item_id: str,
    diagnostics: list[Diagnostic],
) -> Decimal:
    if value >= ZERO:
        return value
    diagnostics.append(Diagnostic(
        code=DiagnosticCode.NEGATIVE_VALUE_CLAMPED,
        item_id=item_id,
        message=f"{field_name} {value} clamped to 0",
    ))
    return ZERO


def _process_item(
    node: TreeNode,
    bdi: Decimal,
    settings: EngineSettings,
    diagnostics: list[Diagnostic],
) -> ProcessedNode:
    item = node.item
    mp, qp, pp = settings.money_places, settings.quantity_places, settings.percentage_places

    contract_q = round_quantity(
        _non_negative(item.contract_quantity, "contract_quantity", item.id, diagnostics), qp
    )
    previous_q = round_quantity(
        _non_negative(item.previous_quantity, "previous_quantity", item.id, diagnostics), qp
    )

    ex_markup, with_markup = resolve_unit_prices(item, bdi, mp)
    if ex_markup < ZERO or with_markup < ZERO:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.NEGATIVE_VALUE_CLAMPED,
            item_id=item.id,
            message=f"Unit price {ex_markup}/{with_markup} clamped to 0",
        ))
        ex_markup = with_markup = round_money(ZERO, mp)

    remaining = max(ZERO, contract_q - previous_q)
    requested = round_quantity(item.current_quantity, qp)
    current_q = clamp(requested, ZERO, remaining)
    if current_q != requested:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.QUANTITY_CLAMPED,
            item_id=item.id,
            message=f"Current quantity {requested} clamped to {current_q}",
            invariant=WbsInvariant.CURRENT_QUANTITY_BOUNDED,
        ))

    contract_total = round_money(contract_q * with_markup, mp)
    current_total = round_money(current_q * with_markup, mp)
    if item.previous_total is not None:
        previous_total = round_money(item.previous_total, mp)
    else:
        previous_total = round_money(previous_q * with_markup, mp)

    accumulated_q = round_quantity(previous_q + current_q, qp)
    accumulated_total = round_money(previous_total + current_total, mp)

    return ProcessedNode(
        item=item,
        parent_id=node.parent_id,
        depth=node.depth,
        wbs_code=node.wbs_code,
        child_ids=node.child_ids,
        unit=item.unit.strip(),
        unit_price_ex_markup=ex_markup,
        unit_price_with_markup=with_markup,
        contract_quantity=contract_q,
        previous_quantity=previous_q,
        current_quantity=current_q,
        accumulated_quantity=accumulated_q,
        balance_quantity=apply_balance_policy(contract_q - accumulated_q, settings),
        contract_total=contract_total,
        previous_total=previous_total,
        current_total=current_total,
        accumulated_total=accumulated_total,
        balance_total=apply_balance_policy(
            round_money(contract_total - accumulated_total, mp), settings
        ),
        current_percentage=percentage_of(current_q, contract_q, pp),
        accumulated_percentage=percentage_of(accumulated_q, contract_q, pp),
        descendant_item_count=0,
    )


def _process_category(
    node: TreeNode,
    children: list[ProcessedNode],
    units: frozenset[str],
    settings: EngineSettings,
) -> ProcessedNode:
    mp, pp = settings.money_places, settings.percentage_places
    sums: dict[str, Decimal] = {
        name: money_sum((getattr(c, name) for c in children), mp)
        for name in FINANCIAL_FIELDS
    }

    mixed = len(units) > 1
    quantities: dict[str, Decimal | None]
    if mixed:
        quantities = {name: None for name in QUANTITY_FIELDS}
    else:
        # Single (or no) unit below: every child has a quantity rollup.
        quantities = {
            name: round_quantity(
                sum((getattr(c, name) for c in children), ZERO), settings.quantity_places
            )
            for name in QUANTITY_FIELDS
        }

    return ProcessedNode(
        item=node.item,
        parent_id=node.parent_id,
        depth=node.depth,
        wbs_code=node.wbs_code,
        child_ids=node.child_ids,
        unit=next(iter(units)) if len(units) == 1 else None,
        unit_price_ex_markup=None,
        unit_price_with_markup=None,
        **quantities,
        **sums,
        current_percentage=percentage_of(sums["current_total"], sums["contract_total"], pp),
        accumulated_percentage=percentage_of(
            sums["accumulated_total"], sums["contract_total"], pp
        ),
        mixed_units=mixed,
        descendant_item_count=sum(
            c.descendant_item_count + (0 if c.is_category else 1) for c in children
        ),
    )


@traced_engine("aggregator", "1.0", fingerprint_fields=("bdi",))
def aggregate(
    tree: WbsTree,
    bdi: Any = None,
    settings: EngineSettings | None = None,
) -> ProcessedForest:
    """
    Compute all derived fields bottom-up.

    Pure function - the tree is not modified.

    Args:
        tree: Output of ``build_tree``.
        bdi: Project BDI percentage (Decimal, int or numeric str).
            None falls back to ``settings.default_bdi``.
        settings: Engine settings; packaged defaults when omitted.

    Returns:
        ProcessedForest in the same pre-order as ``tree``.
    """
    t0 = time.monotonic()
    settings = settings or DEFAULT_SETTINGS
    bdi_value = coerce_bdi(settings.default_bdi if bdi is None else bdi)
    diagnostics: list[Diagnostic] = []

    processed: dict[str, ProcessedNode] = {}
    units_below: dict[str, frozenset[str]] = {}

    # Reverse pre-order visits every child before its parent.
    for node in reversed(list(tree.nodes.values())):
        if node.item.is_category:
            children = [processed[child_id] for child_id in node.child_ids]
            units: set[str] = set()
            for child in children:
                units |= units_below[child.id]
            units_below[node.id] = frozenset(units)
            processed[node.id] = _process_category(node, children, units_below[node.id], settings)
        else:
            result = _process_item(node, bdi_value, settings, diagnostics)
            units_below[node.id] = frozenset({result.unit or ""})
            processed[node.id] = result

    log_diagnostics(logger, "aggregation_value_clamped", diagnostics)

    nodes = {item_id: processed[item_id] for item_id in tree.nodes}
    logger.debug("aggregation_completed", extra={
        "node_count": len(nodes),
        "bdi": str(bdi_value),
        "diagnostic_count": len(diagnostics),
        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
    })

    return ProcessedForest(
        nodes=nodes,
        root_ids=tree.root_ids,
        bdi=bdi_value,
        settings=settings,
        diagnostics=tree.diagnostics + tuple(diagnostics),
    )
