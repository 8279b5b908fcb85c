"""Commission rate configuration port.

Rates are platform settings managed elsewhere (admin settings). The engine
takes a snapshot of them once per order so a later settings change never
alters an order that already exists.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class RateTable:
    """Immutable snapshot of commission percentages."""

    default_rate: float
    category_rates: Mapping[str, float] = field(default_factory=dict)
    vendor_rates: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "category_rates", MappingProxyType(dict(self.category_rates)))
        object.__setattr__(self, "vendor_rates", MappingProxyType(dict(self.vendor_rates)))

    def rate_for(self, category_id: str | None, vendor_id: str | None) -> float:
        """Category override, then vendor override, then the platform default."""
        if category_id and category_id in self.category_rates:
            return self.category_rates[category_id]
        if vendor_id and vendor_id in self.vendor_rates:
            return self.vendor_rates[vendor_id]
        return self.default_rate


class CommissionRateSource(ABC):
    """Abstract commission configuration lookup."""

    @abstractmethod
    def get_rate(self, category_id: str | None, vendor_id: str | None) -> float:
        """Return the commission percentage for a category/vendor pair."""
        ...

    @abstractmethod
    def snapshot(self) -> RateTable:
        """Return a frozen copy of the current configuration."""
        ...
