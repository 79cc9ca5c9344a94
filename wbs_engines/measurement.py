"""
Module: wbs_engines.measurement
Responsibility:
    Single-item edits of contract and measurement values, bulk repricing
    against the project BDI, and closing a measurement period.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Each edit returns a new ``LineItem`` (inside an ``EditResult``) and the
    diagnostics for every clamp applied; nothing is mutated.

Invariants enforced:
    - CURRENT_QUANTITY_BOUNDED: ``0 <= current <= contract - previous``.
    - CURRENT_PERCENTAGE_BOUNDED: ``0 <= current% <= 100 - previous%``.
    - The price after markup derived from a typed total is truncated, never
      rounded up, so the derived total never exceeds what the user typed.
      The price before markup is then derived from it the same way the
      aggregator does, so stored and processed prices agree.
    - SINGLE_PRICE_AUTHORITY: repricing resets the authority to the
      price before markup.

Failure modes:
    - InvalidLineItemError when a measurement edit targets a category, or
      a value cannot be coerced to Decimal.
    - InvalidMarkupError for an unusable BDI.
    - ValueError for a non-positive measurement number.
    - Division by a zero quantity is reported as DIVISION_UNDEFINED and the
      item is returned unchanged.

Usage:
    from wbs_engines.measurement import set_current_percentage

    result = set_current_percentage(item, Decimal("50"))
    result.item.current_quantity
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from wbs_config.schema import DEFAULT_SETTINGS, EngineSettings
from wbs_engines._edit_types import EditResult
from wbs_engines.aggregator import aggregate
from wbs_engines.flattener import FlatRow, flatten_all
from wbs_engines.markup import apply_markup, apply_price_edit, coerce_bdi, remove_markup
from wbs_engines.summary import NO_OVERRIDES, ProjectOverrides, ProjectSummary, summarize
from wbs_engines.tracer import traced_engine
from wbs_engines.tree_builder import build_tree
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import ItemPatch, LineItem, PriceAuthority, diff_items
from wbs_kernel.domain.rounding import (
    HUNDRED,
    MONEY_PLACES,
    PERCENTAGE_PLACES,
    QUANTITY_PLACES,
    ZERO,
    clamp,
    percentage_of,
    round_money,
    round_percentage,
    round_quantity,
    safe_ratio,
    to_decimal,
    truncate,
)
from wbs_kernel.exceptions import InvalidLineItemError
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger, log_diagnostics

logger = get_logger("engines.measurement")

__all__ = [
    "MeasurementSnapshot",
    "PeriodCloseResult",
    "RecalculationResult",
    "apply_price_edit",
    "close_measurement_period",
    "recalculate_all",
    "set_contract_quantity",
    "set_contract_total",
    "set_current_percentage",
    "set_current_quantity",
    "set_current_total",
    "set_previous_measurement",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_priced(item: LineItem) -> None:
    if item.is_category:
        raise InvalidLineItemError(
            "kind", item.kind.value, "measurement values apply to priced items only"
        )


def _log_clamps(diagnostics: list[Diagnostic]) -> None:
    log_diagnostics(logger, "measurement_value_clamped", diagnostics)


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


def _bounded_current(
    item: LineItem,
    requested: Decimal,
    places: int,
    diagnostics: list[Diagnostic],
) -> Decimal:
    """Clamp a current quantity into ``[0, contract - previous]``."""
    requested = round_quantity(requested, places)
    bounded = clamp(requested, ZERO, item.remaining_quantity)
    if bounded != requested:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.QUANTITY_CLAMPED,
            item_id=item.id,
            message=f"Current quantity {requested} clamped to {bounded}",
            invariant=WbsInvariant.CURRENT_QUANTITY_BOUNDED,
        ))
    return bounded


def _with_current_quantity(item: LineItem, quantity: Decimal) -> LineItem:
    return item.with_changes(
        current_quantity=quantity,
        current_percentage=percentage_of(quantity, item.contract_quantity),
    )


# ---------------------------------------------------------------------------
# Single-item edits
# ---------------------------------------------------------------------------


def set_current_quantity(
    item: LineItem,
    quantity: Any,
    places: int = QUANTITY_PLACES,
) -> EditResult:
    """Record the quantity measured this period, clamped to what remains."""
    _require_priced(item)
    diagnostics: list[Diagnostic] = []
    bounded = _bounded_current(item, to_decimal(quantity, "current_quantity"), places, diagnostics)
    _log_clamps(diagnostics)
    return EditResult(
        original=item,
        item=_with_current_quantity(item, bounded),
        diagnostics=tuple(diagnostics),
    )


def set_current_percentage(
    item: LineItem,
    percentage: Any,
    places: int = QUANTITY_PLACES,
) -> EditResult:
    """
    Record this period's progress as a percentage of the contract quantity.

    The percentage is clamped to ``[0, 100 - previous%]`` and the quantity
    is derived as ``round(pct / 100 * contract)``. With a zero contract
    quantity both become zero.
    """
    _require_priced(item)
    diagnostics: list[Diagnostic] = []
    requested = round_percentage(to_decimal(percentage, "current_percentage"))
    contract = item.contract_quantity

    if contract <= ZERO:
        if requested != ZERO:
            diagnostics.append(Diagnostic(
                code=DiagnosticCode.PERCENTAGE_CLAMPED,
                item_id=item.id,
                message=f"Current percentage {requested} clamped to 0 (no contract quantity)",
                invariant=WbsInvariant.CURRENT_PERCENTAGE_BOUNDED,
            ))
        _log_clamps(diagnostics)
        updated = item.with_changes(current_quantity=ZERO, current_percentage=ZERO)
        return EditResult(original=item, item=updated, diagnostics=tuple(diagnostics))

    previous_pct = safe_ratio(item.previous_quantity, contract) * HUNDRED
    ceiling = max(ZERO, HUNDRED - previous_pct)
    # Truncate so a clamped value never rounds above the ceiling.
    bounded_pct = truncate(clamp(requested, ZERO, ceiling), PERCENTAGE_PLACES)
    if bounded_pct != requested:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.PERCENTAGE_CLAMPED,
            item_id=item.id,
            message=f"Current percentage {requested} clamped to {bounded_pct}",
            invariant=WbsInvariant.CURRENT_PERCENTAGE_BOUNDED,
        ))

    quantity = round_quantity(bounded_pct / HUNDRED * contract, places)
    # Rounding may step a hair over the remaining quantity.
    quantity = min(quantity, item.remaining_quantity)

    _log_clamps(diagnostics)
    updated = item.with_changes(current_quantity=quantity, current_percentage=bounded_pct)
    return EditResult(original=item, item=updated, diagnostics=tuple(diagnostics))


def set_contract_quantity(
    item: LineItem,
    quantity: Any,
    places: int = QUANTITY_PLACES,
) -> EditResult:
    """Change the contracted quantity and re-bound the current measurement."""
    _require_priced(item)
    diagnostics: list[Diagnostic] = []
    contract = round_quantity(
        _non_negative(to_decimal(quantity, "contract_quantity"), "contract_quantity",
                      item.id, diagnostics),
        places,
    )
    resized = item.with_changes(contract_quantity=contract)
    bounded = _bounded_current(resized, resized.current_quantity, places, diagnostics)
    _log_clamps(diagnostics)
    return EditResult(
        original=item,
        item=_with_current_quantity(resized, bounded),
        diagnostics=tuple(diagnostics),
    )


def set_previous_measurement(
    item: LineItem,
    quantity: Any,
    total: Any = None,
    places: int = QUANTITY_PLACES,
) -> EditResult:
    """
    Set the quantity (and optionally the money) measured in earlier periods.

    A ``total`` of None lets the aggregator derive the previous total from
    the quantity and the unit price.
    """
    _require_priced(item)
    diagnostics: list[Diagnostic] = []
    previous = round_quantity(
        _non_negative(to_decimal(quantity, "previous_quantity"), "previous_quantity",
                      item.id, diagnostics),
        places,
    )
    previous_total = None
    if total is not None:
        previous_total = round_money(
            _non_negative(to_decimal(total, "previous_total"), "previous_total",
                          item.id, diagnostics)
        )
    updated = item.with_changes(previous_quantity=previous, previous_total=previous_total)
    bounded = _bounded_current(updated, updated.current_quantity, places, diagnostics)
    _log_clamps(diagnostics)
    return EditResult(
        original=item,
        item=_with_current_quantity(updated, bounded),
        diagnostics=tuple(diagnostics),
    )


def _price_from_total(
    item: LineItem,
    total: Any,
    divisor: Decimal,
    divisor_name: str,
    bdi_percent: Any,
    places: int,
) -> EditResult:
    _require_priced(item)
    bdi = coerce_bdi(bdi_percent)
    diagnostics: list[Diagnostic] = []
    total_value = _non_negative(to_decimal(total, "total"), "total", item.id, diagnostics)

    if divisor == ZERO:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.DIVISION_UNDEFINED,
            item_id=item.id,
            message=f"Cannot derive a unit price: {divisor_name} is zero",
        ))
        _log_clamps(diagnostics)
        return EditResult(original=item, item=item, diagnostics=tuple(diagnostics))

    with_markup = truncate(total_value / divisor, places)
    # The price before markup is derived exactly as the aggregator derives it.
    ex_markup = remove_markup(with_markup, bdi, places)
    updated = item.with_changes(
        unit_price_with_markup=with_markup,
        unit_price_ex_markup=ex_markup,
        price_authority=PriceAuthority.WITH_MARKUP,
    )
    _log_clamps(diagnostics)
    logger.debug("unit_price_derived_from_total", extra={
        "item_id": item.id,
        "divisor_field": divisor_name,
        "total": str(total_value),
        "unit_price_with_markup": str(with_markup),
        "unit_price_ex_markup": str(ex_markup),
    })
    return EditResult(original=item, item=updated, diagnostics=tuple(diagnostics))


def set_contract_total(
    item: LineItem,
    total: Any,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> EditResult:
    """Derive both unit prices from a typed contract total (truncated)."""
    return _price_from_total(
        item, total, item.contract_quantity, "contract_quantity", bdi_percent, places
    )


def set_current_total(
    item: LineItem,
    total: Any,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> EditResult:
    """Derive both unit prices from a typed period total (truncated)."""
    return _price_from_total(
        item, total, item.current_quantity, "current_quantity", bdi_percent, places
    )


# ---------------------------------------------------------------------------
# Bulk repricing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecalculationResult:
    """
    Outcome of repricing every item against the project BDI.

    Guarantees:
        - ``overrides`` is always empty; manual footer totals are cleared.
        - ``patches`` list only items whose stored fields changed.
    """

    items: tuple[LineItem, ...]
    patches: tuple[ItemPatch, ...]
    overrides: ProjectOverrides


@traced_engine("measurement.recalculate", "1.0", fingerprint_fields=("items", "bdi_percent"))
def recalculate_all(
    items: Sequence[LineItem],
    bdi_percent: Any,
    overrides: ProjectOverrides | None = None,
    settings: EngineSettings | None = None,
) -> RecalculationResult:
    """
    Re-derive every price after markup from the price before markup.

    Explicit and destructive: prices typed after markup are discarded,
    stored previous totals are recomputed from the previous quantity, and
    the project overrides are cleared.
    """
    settings = settings or DEFAULT_SETTINGS
    bdi = coerce_bdi(bdi_percent)
    mp = settings.money_places

    repriced: list[LineItem] = []
    for item in items:
        if item.is_category:
            repriced.append(item)
            continue
        ex_markup = round_money(item.unit_price_ex_markup, mp)
        with_markup = apply_markup(ex_markup, bdi, mp)
        repriced.append(item.with_changes(
            unit_price_ex_markup=ex_markup,
            unit_price_with_markup=with_markup,
            price_authority=PriceAuthority.EX_MARKUP,
            previous_total=round_money(item.previous_quantity * with_markup, mp),
        ))

    patches = diff_items(items, repriced)
    cleared = (overrides or NO_OVERRIDES).cleared()
    logger.info("prices_recalculated", extra={
        "bdi": str(bdi),
        "item_count": len(repriced),
        "patch_count": len(patches),
        "overrides_cleared": overrides is not None and not overrides.is_empty,
    })
    return RecalculationResult(items=tuple(repriced), patches=patches, overrides=cleared)


# ---------------------------------------------------------------------------
# Period close
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MeasurementSnapshot:
    """Frozen record of one closed measurement period."""

    measurement_number: int
    reference_date: date
    rows: tuple[FlatRow, ...]
    summary: ProjectSummary


@dataclass(frozen=True)
class PeriodCloseResult:
    """
    Snapshot of the closing period plus the items opened for the next one.

    Guarantees:
        - ``items`` carry zero current values and the closed period rolled
          into their previous quantity and total.
        - ``next_measurement_number`` is ``measurement_number + 1``.
    """

    snapshot: MeasurementSnapshot
    items: tuple[LineItem, ...]
    patches: tuple[ItemPatch, ...]
    next_measurement_number: int


@traced_engine(
    "measurement.close_period", "1.0",
    fingerprint_fields=("items", "bdi_percent", "measurement_number"),
)
def close_measurement_period(
    items: Sequence[LineItem],
    bdi_percent: Any,
    measurement_number: int,
    reference_date: date,
    settings: EngineSettings | None = None,
) -> PeriodCloseResult:
    """
    Close the current measurement period.

    Takes a snapshot of the fully flattened, aggregated WBS and its totals,
    then rolls each item's (clamped) current measurement into its previous
    quantity and total and zeroes the current fields.

    Args:
        items: Flat line items of the project.
        bdi_percent: Project BDI.
        measurement_number: Number of the period being closed (>= 1).
        reference_date: Date recorded on the snapshot.
        settings: Engine settings; packaged defaults when omitted.
    """
    if isinstance(measurement_number, bool) or not isinstance(measurement_number, int):
        raise ValueError(f"measurement_number must be an integer, got {measurement_number!r}")
    if measurement_number < 1:
        raise ValueError(f"measurement_number must be positive, got {measurement_number}")

    forest = aggregate(build_tree(items), bdi_percent, settings)
    snapshot = MeasurementSnapshot(
        measurement_number=measurement_number,
        reference_date=reference_date,
        rows=flatten_all(forest),
        summary=summarize(forest),
    )

    rolled: list[LineItem] = []
    for item in items:
        node = forest.nodes.get(item.id)
        # Duplicated ids are not in the forest; only the first one is rolled.
        if item.is_category or node is None or node.item is not item:
            rolled.append(item)
            continue
        rolled.append(item.with_changes(
            previous_quantity=node.accumulated_quantity,
            previous_total=node.accumulated_total,
            current_quantity=ZERO,
            current_percentage=ZERO,
        ))

    patches = diff_items(items, rolled)
    logger.info("measurement_period_closed", extra={
        "measurement_number": measurement_number,
        "reference_date": reference_date.isoformat(),
        "period_total": str(snapshot.summary.current_total),
        "accumulated_total": str(snapshot.summary.accumulated_total),
        "patch_count": len(patches),
    })
    return PeriodCloseResult(
        snapshot=snapshot,
        items=tuple(rolled),
        patches=patches,
        next_measurement_number=measurement_number + 1,
    )
