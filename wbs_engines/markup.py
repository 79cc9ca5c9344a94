"""
Module: wbs_engines.markup
Responsibility:
    BDI (overhead and profit) markup between unit prices before and after
    markup, in both directions, plus applying a user's price edit.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Each direction rounds half away from zero to money precision, so
      ``remove_markup(apply_markup(p, b), b)`` lands within one cent of
      ``p`` for any BDI in [0, 100].
    - Single price authority: an edit event fixes one price and derives
      the other, and records which one is authoritative.

Failure modes:
    - InvalidMarkupError when the BDI is not a finite number above -100.

Usage:
    from wbs_engines.markup import apply_markup, remove_markup

    apply_markup(Decimal("100"), Decimal("20"))   # Decimal("120.00")
    remove_markup(Decimal("120"), Decimal("20"))  # Decimal("100.00")
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from wbs_engines._edit_types import EditResult
from wbs_kernel.domain.diagnostics import Diagnostic, DiagnosticCode
from wbs_kernel.domain.line_item import (
    EditedExMarkup,
    EditedWithMarkup,
    LineItem,
    PriceAuthority,
    PriceEdit,
)
from wbs_kernel.domain.rounding import HUNDRED, MONEY_PLACES, ONE, ZERO, round_money
from wbs_kernel.exceptions import InvalidMarkupError
from wbs_kernel.invariants import WbsInvariant
from wbs_kernel.logging_config import get_logger

logger = get_logger("engines.markup")


def coerce_bdi(bdi_percent: Any) -> Decimal:
    """Validate a BDI percentage and return it as Decimal."""
    if isinstance(bdi_percent, (bool, float)) or bdi_percent is None:
        raise InvalidMarkupError(bdi_percent)
    try:
        value = bdi_percent if isinstance(bdi_percent, Decimal) else Decimal(str(bdi_percent))
    except InvalidOperation as exc:
        raise InvalidMarkupError(bdi_percent) from exc
    if not value.is_finite() or value <= -HUNDRED:
        raise InvalidMarkupError(bdi_percent)
    return value


def markup_factor(bdi_percent: Any) -> Decimal:
    """``1 + bdi/100``."""
    return ONE + coerce_bdi(bdi_percent) / HUNDRED


def apply_markup(
    price_ex_markup: Decimal,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> Decimal:
    """Unit price after BDI, rounded half away from zero."""
    return round_money(price_ex_markup * markup_factor(bdi_percent), places)


def remove_markup(
    price_with_markup: Decimal,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> Decimal:
    """Unit price before BDI, rounded half away from zero."""
    return round_money(price_with_markup / markup_factor(bdi_percent), places)


def resolve_unit_prices(
    item: LineItem,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> tuple[Decimal, Decimal]:
    """
    Return ``(ex_markup, with_markup)`` for an item.

    The price named by ``item.price_authority`` is taken as typed (rounded
    to money precision) and the other is derived from it.
    """
    if item.price_authority is PriceAuthority.WITH_MARKUP:
        with_markup = round_money(item.unit_price_with_markup, places)
        return remove_markup(with_markup, bdi_percent, places), with_markup
    ex_markup = round_money(item.unit_price_ex_markup, places)
    return ex_markup, apply_markup(ex_markup, bdi_percent, places)


def apply_price_edit(
    item: LineItem,
    edit: PriceEdit,
    bdi_percent: Any,
    places: int = MONEY_PLACES,
) -> EditResult:
    """
    Apply a typed unit-price edit and derive the opposite price.

    Negative prices are clamped to zero and reported.
    """
    if not isinstance(edit, (EditedExMarkup, EditedWithMarkup)):
        raise TypeError(f"Unsupported price edit: {type(edit).__name__}")
    diagnostics: list[Diagnostic] = []
    value = edit.value
    if value < ZERO:
        diagnostics.append(Diagnostic(
            code=DiagnosticCode.NEGATIVE_VALUE_CLAMPED,
            item_id=item.id,
            message=f"Unit price {value} clamped to 0",
        ))
        logger.warning("price_edit_negative_clamped", extra={
            "item_id": item.id,
            "requested": str(value),
        })
        value = ZERO

    match edit:
        case EditedExMarkup():
            ex_markup = round_money(value, places)
            updated = item.with_changes(
                unit_price_ex_markup=ex_markup,
                unit_price_with_markup=apply_markup(ex_markup, bdi_percent, places),
                price_authority=PriceAuthority.EX_MARKUP,
            )
        case EditedWithMarkup():
            with_markup = round_money(value, places)
            updated = item.with_changes(
                unit_price_ex_markup=remove_markup(with_markup, bdi_percent, places),
                unit_price_with_markup=with_markup,
                price_authority=PriceAuthority.WITH_MARKUP,
            )

    logger.debug("price_edit_applied", extra={
        "item_id": item.id,
        "authority": updated.price_authority.value,
        "unit_price_ex_markup": str(updated.unit_price_ex_markup),
        "unit_price_with_markup": str(updated.unit_price_with_markup),
        "invariant": WbsInvariant.SINGLE_PRICE_AUTHORITY.value,
    })
    return EditResult(original=item, item=updated, diagnostics=tuple(diagnostics))
