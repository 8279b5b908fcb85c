"""Product catalog port.

Products, categories and their moderation live in a separate service. The
engine only reads the authoritative price, owning vendor, category and
purchasability of a product when an order is placed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductSnapshot:
    """Authoritative product details at the moment of lookup."""

    product_id: str
    vendor_id: str
    title: str
    price: float
    category_id: str | None = None
    approved: bool = True
    published: bool = True

    @property
    def purchasable(self) -> bool:
        return self.approved and self.published


class ProductCatalog(ABC):
    """Abstract read-only product lookup."""

    @abstractmethod
    def get_product(self, product_id: str) -> ProductSnapshot | None:
        """Return the product, or None when it does not exist."""
        ...
