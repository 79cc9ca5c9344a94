"""
Engine settings schema.

YAML fragments are parsed into these frozen types by the loader; engines
receive an ``EngineSettings`` instance and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from wbs_kernel.domain.rounding import MONEY_PLACES, PERCENTAGE_PLACES, QUANTITY_PLACES
from wbs_kernel.exceptions import InvalidSettingsError

_MAX_PLACES = 6


@dataclass(frozen=True)
class EngineSettings:
    """
    Numeric and policy knobs shared by all WBS engines.

    Contract:
        Validated on construction; an invalid instance cannot exist.
    Guarantees:
        - Decimal place counts are within 0..6.
        - ``default_bdi`` is > -100.
    """

    money_places: int = MONEY_PLACES
    quantity_places: int = QUANTITY_PLACES
    percentage_places: int = PERCENTAGE_PLACES
    # Over-execution policy: floor balance at zero (True) or keep the
    # negative overrun (False).
    clamp_overrun_balance: bool = True
    default_bdi: Decimal = Decimal("0")
    filter_case_sensitive: bool = False
    config_id: str = "default"

    def __post_init__(self) -> None:
        for name in ("money_places", "quantity_places", "percentage_places"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidSettingsError(name, value, "must be an integer")
            if not 0 <= value <= _MAX_PLACES:
                raise InvalidSettingsError(name, value, f"must be between 0 and {_MAX_PLACES}")
        for name in ("clamp_overrun_balance", "filter_case_sensitive"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidSettingsError(name, getattr(self, name), "must be a boolean")
        if not isinstance(self.default_bdi, Decimal):
            raise InvalidSettingsError("default_bdi", self.default_bdi, "must be a Decimal")
        if not self.default_bdi.is_finite() or self.default_bdi <= Decimal("-100"):
            raise InvalidSettingsError("default_bdi", self.default_bdi, "must be finite and > -100")


DEFAULT_SETTINGS = EngineSettings()
