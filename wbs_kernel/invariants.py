"""
WBS structural and numeric invariants.

These hold for every tree the engines hand back, whatever the input looked
like. Violations found in input data are repaired and reported through
``Diagnostic`` records that name the invariant they restored.
"""

from enum import Enum, unique


@unique
class WbsInvariant(str, Enum):
    """Guarantees that hold after every build, aggregation and mutation."""

    NO_CYCLES = "no_cycles"
    """No line item is its own ancestor. Enforced by the tree builder
    (cycle members are demoted to roots) and by the reorder engine
    (proposed edges are checked before mutation)."""

    PARENT_IS_CATEGORY = "parent_is_category"
    """Every non-root parent resolves to an existing category. Dangling or
    item-kind parents are demoted to roots by the tree builder."""

    SIBLING_ORDER = "sibling_order"
    """``order`` is strictly increasing among siblings in display order.
    Ties in input are broken by input sequence; the reorder engine
    renumbers the target group from zero."""

    CURRENT_QUANTITY_BOUNDED = "current_quantity_bounded"
    """0 <= current_quantity <= contract_quantity - previous_quantity."""

    CURRENT_PERCENTAGE_BOUNDED = "current_percentage_bounded"
    """0 <= current_percentage <= 100 - previous percentage when the
    contract quantity is positive, else both are zero."""

    SINGLE_PRICE_AUTHORITY = "single_price_authority"
    """Exactly one of the two unit prices is authoritative per edit; the
    other is derived through the BDI markup."""


ALL_WBS_INVARIANTS: frozenset[WbsInvariant] = frozenset(WbsInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "wbs_engines",
    "wbs_config",
)
