"""Synchronous command dispatch with optimistic-lock retries.

Aggregates are written with Protean's ``_version`` check: a unit of work
whose aggregate changed underneath it fails to commit with
ExpectedVersionError and rolls back. ``process`` re-runs such a command so it
decides again against the fresh state; the re-run either succeeds, observes a
terminal state and no-ops, or raises the domain's own error.

Within one process, commands run one at a time. The version check only sees
writers that committed before the read, and the memory provider commits a
whole snapshot of the store, so two threads interleaving their units of work
would otherwise overwrite each other. Writers in other processes are still
caught by the version check.
"""

import threading

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from marketplace.errors import OrderStateConflict

logger = structlog.get_logger(__name__)

MAX_CONFLICT_RETRIES = 25

# Re-entrant: event handlers may dispatch follow-up commands on the same thread
_write_lock = threading.RLock()


def process(command, retries: int = MAX_CONFLICT_RETRIES):
    """Process ``command`` synchronously and return the handler's result.

    ``retries=1`` reports the first lost race as OrderStateConflict instead
    of re-running the command.
    """
    name = command.__class__.__name__
    for attempt in range(1, retries + 1):
        try:
            with _write_lock:
                return current_domain.process(command, asynchronous=False)
        except ExpectedVersionError as exc:
            logger.info("Command lost a concurrent update", command=name, attempt=attempt, error=str(exc))
            last_error = exc

    raise OrderStateConflict(
        f"{name} kept losing to concurrent updates",
        command=name,
        attempts=retries,
    ) from last_error
