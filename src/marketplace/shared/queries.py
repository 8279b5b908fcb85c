"""Query helpers over Protean's DAO."""

PAGE_SIZE = 100


def fetch_all(queryset) -> list:
    """Every entity ``queryset`` matches, read page by page.

    Protean caps an unbounded ``.all()`` at the aggregate's default limit;
    ledgers and sweeps must see every row.
    """
    items = []
    offset = 0
    while True:
        page = queryset.offset(offset).limit(PAGE_SIZE).all().items
        items.extend(page)
        if len(page) < PAGE_SIZE:
            return items
        offset += PAGE_SIZE
