"""Commission rate source factory.

Provides get_rate_source() / set_rate_source() to swap the configuration
collaborator. The default source uses the platform default rate from
settings.
"""

from marketplace.config import get_settings

_current_source = None


def get_rate_source():
    global _current_source
    if _current_source is None:
        from marketplace.commission.fake_adapter import InMemoryRateSource

        _current_source = InMemoryRateSource(default_rate=get_settings().default_commission_rate)
    return _current_source


def set_rate_source(source) -> None:
    global _current_source
    _current_source = source


def reset_rate_source() -> None:
    global _current_source
    _current_source = None
