"""Product catalog factory.

Provides get_catalog() / set_catalog() to swap the catalog collaborator.
"""

_current_catalog = None


def get_catalog():
    """Return the current catalog. Defaults to an empty InMemoryCatalog."""
    global _current_catalog
    if _current_catalog is None:
        from marketplace.catalog.fake_adapter import InMemoryCatalog

        _current_catalog = InMemoryCatalog()
    return _current_catalog


def set_catalog(catalog) -> None:
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    global _current_catalog
    _current_catalog = None
