"""In-memory commission configuration for development and testing."""

from marketplace.commission.port import CommissionRateSource, RateTable


class InMemoryRateSource(CommissionRateSource):
    def __init__(self, default_rate: float = 10.0) -> None:
        self.default_rate = default_rate
        self.category_rates: dict[str, float] = {}
        self.vendor_rates: dict[str, float] = {}

    def set_category_rate(self, category_id: str, rate: float) -> None:
        self.category_rates[category_id] = rate

    def set_vendor_rate(self, vendor_id: str, rate: float) -> None:
        self.vendor_rates[vendor_id] = rate

    def get_rate(self, category_id: str | None, vendor_id: str | None) -> float:
        return self.snapshot().rate_for(category_id, vendor_id)

    def snapshot(self) -> RateTable:
        return RateTable(
            default_rate=self.default_rate,
            category_rates=self.category_rates,
            vendor_rates=self.vendor_rates,
        )
