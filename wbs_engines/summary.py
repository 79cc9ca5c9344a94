"""
Module: wbs_engines.summary
Responsibility:
    Project-level figures: grand totals, physical-financial progress and
    the manual contract/current total overrides shown in the footer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Overrides are display adjustments. They replace the *effective*
      totals only; the computed totals and every line item are untouched.
    - Progress against a zero contract is zero.

Usage:
    from wbs_engines.summary import ProjectOverrides, summarize

    summary = summarize(forest, ProjectOverrides(contract_total_override=Decimal("1000")))
    summary.effective_contract_total
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from wbs_engines.aggregator import ProcessedForest
from wbs_engines.tracer import traced_engine
from wbs_kernel.domain.rounding import percentage_of, round_money, to_decimal
from wbs_kernel.logging_config import get_logger

logger = get_logger("engines.summary")


@dataclass(frozen=True)
class ProjectOverrides:
    """Manual footer totals typed by the user; ``None`` means not set."""

    contract_total_override: Decimal | None = None
    current_total_override: Decimal | None = None

    def __post_init__(self) -> None:
        for name in ("contract_total_override", "current_total_override"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_decimal(value, name))

    @property
    def is_empty(self) -> bool:
        return self.contract_total_override is None and self.current_total_override is None

    def cleared(self) -> ProjectOverrides:
        return ProjectOverrides()


NO_OVERRIDES = ProjectOverrides()


@dataclass(frozen=True)
class ProjectSummary:
    """
    Footer figures for one project.

    Guarantees:
        - ``*_total`` fields are the computed grand totals.
        - ``effective_*`` fields apply the overrides when present.
    """

    contract_total: Decimal
    previous_total: Decimal
    current_total: Decimal
    accumulated_total: Decimal
    balance_total: Decimal
    progress_percentage: Decimal
    effective_contract_total: Decimal
    effective_current_total: Decimal
    category_count: int
    item_count: int
    diagnostic_count: int
    overrides: ProjectOverrides = NO_OVERRIDES

    @property
    def has_overrides(self) -> bool:
        return not self.overrides.is_empty


@traced_engine("summary", "1.0", fingerprint_fields=("overrides",))
def summarize(
    forest: ProcessedForest,
    overrides: ProjectOverrides | None = None,
) -> ProjectSummary:
    """Grand totals and progress over all roots of ``forest``."""
    overrides = overrides or NO_OVERRIDES
    settings = forest.settings
    totals = forest.totals()

    effective_contract = (
        round_money(overrides.contract_total_override, settings.money_places)
        if overrides.contract_total_override is not None
        else totals["contract_total"]
    )
    effective_current = (
        round_money(overrides.current_total_override, settings.money_places)
        if overrides.current_total_override is not None
        else totals["current_total"]
    )

    item_count = len(forest.priced_items())
    summary = ProjectSummary(
        **totals,
        progress_percentage=percentage_of(
            totals["accumulated_total"], totals["contract_total"], settings.percentage_places
        ),
        effective_contract_total=effective_contract,
        effective_current_total=effective_current,
        category_count=len(forest) - item_count,
        item_count=item_count,
        diagnostic_count=len(forest.diagnostics),
        overrides=overrides,
    )

    logger.debug("project_summarized", extra={
        "contract_total": str(summary.contract_total),
        "accumulated_total": str(summary.accumulated_total),
        "progress_percentage": str(summary.progress_percentage),
        "has_overrides": summary.has_overrides,
    })
    return summary
