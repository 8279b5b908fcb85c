"""In-memory product catalog for development and testing."""

from marketplace.catalog.port import ProductCatalog, ProductSnapshot


class InMemoryCatalog(ProductCatalog):
    def __init__(self) -> None:
        self.products: dict[str, ProductSnapshot] = {}

    def add_product(
        self,
        product_id: str,
        vendor_id: str,
        price: float,
        title: str = "",
        category_id: str | None = None,
        approved: bool = True,
        published: bool = True,
    ) -> ProductSnapshot:
        product = ProductSnapshot(
            product_id=product_id,
            vendor_id=vendor_id,
            title=title or product_id,
            price=price,
            category_id=category_id,
            approved=approved,
            published=published,
        )
        self.products[product_id] = product
        return product

    def get_product(self, product_id: str) -> ProductSnapshot | None:
        return self.products.get(product_id)
