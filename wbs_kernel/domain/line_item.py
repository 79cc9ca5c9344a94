"""
Line items -- the flat, persisted records the WBS engines consume.

Responsibility:
    Define the ``LineItem`` record (a tagged union of category and priced
    item distinguished by ``kind``), the tagged price-edit events, and the
    ``ItemPatch`` shape handed back to the persistence collaborator.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All numeric fields are finite Decimals (coerced at construction).
    - ``id`` is a non-empty string; ``parent_id`` is a string or None.
    - Derived values (totals, accumulated, balance) are never stored here;
      they are recomputed on every read by the aggregator.

Failure modes:
    - InvalidLineItemError for malformed ids, kinds, orders or numbers.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from wbs_kernel.domain.rounding import ZERO, to_decimal
from wbs_kernel.exceptions import InvalidLineItemError


class LineItemKind(str, Enum):
    """Category (aggregation node) or item (priced leaf)."""

    CATEGORY = "category"
    ITEM = "item"


class PriceAuthority(str, Enum):
    """Which unit price the user edited last; the other one is derived."""

    EX_MARKUP = "ex_markup"
    WITH_MARKUP = "with_markup"


NUMERIC_FIELDS: tuple[str, ...] = (
    "contract_quantity",
    "unit_price_ex_markup",
    "unit_price_with_markup",
    "previous_quantity",
    "current_quantity",
    "current_percentage",
)


@dataclass(frozen=True)
class LineItem:
    """
    One row of the budget, category or priced item.

    Contract:
        Immutable record keyed by ``id`` and linked to its parent through
        ``parent_id``. Engines never mutate a LineItem; they return new
        ones via ``with_changes``.
    Guarantees:
        - Numeric fields are Decimal.
        - ``kind`` and ``price_authority`` are enum members.
    Non-goals:
        - Does not validate hierarchy (parent existence, cycles); the tree
          builder repairs and reports those.
        - Does not enforce measurement bounds; see
          ``wbs_engines.measurement``.
    """

    id: str
    parent_id: str | None = None
    kind: LineItemKind = LineItemKind.ITEM
    order: int = 0
    name: str = ""
    unit: str = ""
    code: str = ""
    source: str = ""
    wbs: str = ""
    contract_quantity: Decimal = ZERO
    unit_price_ex_markup: Decimal = ZERO
    unit_price_with_markup: Decimal = ZERO
    previous_quantity: Decimal = ZERO
    previous_total: Decimal | None = None
    current_quantity: Decimal = ZERO
    current_percentage: Decimal = ZERO
    price_authority: PriceAuthority = PriceAuthority.EX_MARKUP

    def __post_init__(self) -> None:
        if self.id is None or str(self.id).strip() == "":
            raise InvalidLineItemError("id", self.id, "must be a non-empty identifier")
        object.__setattr__(self, "id", str(self.id))
        if self.parent_id is not None:
            object.__setattr__(self, "parent_id", str(self.parent_id))

        try:
            object.__setattr__(self, "kind", LineItemKind(self.kind))
        except ValueError as exc:
            raise InvalidLineItemError("kind", self.kind, "expected 'category' or 'item'") from exc
        try:
            object.__setattr__(self, "price_authority", PriceAuthority(self.price_authority))
        except ValueError as exc:
            raise InvalidLineItemError(
                "price_authority", self.price_authority, "unknown price authority"
            ) from exc

        if isinstance(self.order, bool) or not isinstance(self.order, int):
            raise InvalidLineItemError("order", self.order, "must be an integer")

        for name in NUMERIC_FIELDS:
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))
        if self.previous_total is not None:
            object.__setattr__(
                self, "previous_total", to_decimal(self.previous_total, "previous_total")
            )

    @classmethod
    def category(
        cls,
        id: str,
        name: str,
        parent_id: str | None = None,
        order: int = 0,
        **extra: Any,
    ) -> LineItem:
        """Factory for an aggregation node."""
        return cls(
            id=id,
            parent_id=parent_id,
            kind=LineItemKind.CATEGORY,
            order=order,
            name=name,
            **extra,
        )

    @classmethod
    def priced(
        cls,
        id: str,
        name: str,
        unit: str,
        contract_quantity: Decimal | str | int,
        unit_price_ex_markup: Decimal | str | int = ZERO,
        parent_id: str | None = None,
        order: int = 0,
        **extra: Any,
    ) -> LineItem:
        """Factory for a priced leaf."""
        return cls(
            id=id,
            parent_id=parent_id,
            kind=LineItemKind.ITEM,
            order=order,
            name=name,
            unit=unit,
            contract_quantity=contract_quantity,
            unit_price_ex_markup=unit_price_ex_markup,
            **extra,
        )

    @property
    def is_category(self) -> bool:
        return self.kind is LineItemKind.CATEGORY

    @property
    def is_item(self) -> bool:
        return self.kind is LineItemKind.ITEM

    @property
    def remaining_quantity(self) -> Decimal:
        """Contracted quantity not yet measured in previous periods (>= 0)."""
        return max(ZERO, self.contract_quantity - self.previous_quantity)

    def with_changes(self, **changes: Any) -> LineItem:
        """Return a copy with ``changes`` applied (re-validated)."""
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Price edit events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EditedExMarkup:
    """The user typed the unit price before BDI."""

    value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_decimal(self.value, "unit_price_ex_markup"))


@dataclass(frozen=True)
class EditedWithMarkup:
    """The user typed the unit price after BDI."""

    value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_decimal(self.value, "unit_price_with_markup"))


PriceEdit = EditedExMarkup | EditedWithMarkup


# ---------------------------------------------------------------------------
# Patches for selective persistence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemPatch:
    """
    Changed fields of one line item.

    Contract:
        Only fields whose values differ from the previous snapshot are
        listed; an item whose own fields did not change never gets a patch.
    """

    item_id: str
    changes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.changes))


_PATCHABLE_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(LineItem) if f.name != "id")


def patch_between(before: LineItem, after: LineItem) -> ItemPatch | None:
    """Patch turning ``before`` into ``after``, or None when identical."""
    changes = {
        name: getattr(after, name)
        for name in _PATCHABLE_FIELDS
        if getattr(before, name) != getattr(after, name)
    }
    if not changes:
        return None
    return ItemPatch(item_id=after.id, changes=changes)


def diff_items(
    before: Iterable[LineItem],
    after: Iterable[LineItem],
) -> tuple[ItemPatch, ...]:
    """
    Patches for every item present in both lists whose fields changed.

    Items added or removed are not patches; callers create or delete
    those explicitly. Output follows the order of ``after``.
    """
    previous = {item.id: item for item in before}
    patches: list[ItemPatch] = []
    for item in after:
        old = previous.get(item.id)
        if old is None:
            continue
        patch = patch_between(old, item)
        if patch is not None:
            patches.append(patch)
    return tuple(patches)
