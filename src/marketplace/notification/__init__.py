"""Notification dispatcher registry.

Uses RecordingDispatcher by default; a real SMS/email bridge can be
installed with set_dispatcher() at startup.
"""

_dispatcher = None


def get_dispatcher():
    global _dispatcher
    if _dispatcher is None:
        from marketplace.notification.fake_dispatcher import RecordingDispatcher

        _dispatcher = RecordingDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def reset_dispatcher() -> None:
    """Reset to a fresh default dispatcher (useful for testing)."""
    global _dispatcher
    _dispatcher = None
