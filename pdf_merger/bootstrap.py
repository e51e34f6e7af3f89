"""Runtime bootstrap for the optional periodic sweeper."""

from __future__ import annotations

import logging
import threading

from pdf_merger.services import sweeper as sweeper_module

logger = logging.getLogger(__name__)

_bootstrap_lock = threading.Lock()
_bootstrap_started = False


def bootstrap_runtime(sweeper: sweeper_module.RetentionSweeper, interval_seconds: int) -> None:
    """Start the periodic sweeper once per process, if an interval is configured.

    Without an interval the sweeper only runs lazily at the start of each merge.
    """
    global _bootstrap_started
    if interval_seconds <= 0:
        return
    with _bootstrap_lock:
        if _bootstrap_started:
            return

        threading.Thread(
            target=sweeper_module.sweep_forever,
            args=(sweeper, interval_seconds),
            daemon=True,
            name="retention-sweeper",
        ).start()
        _bootstrap_started = True


def is_bootstrapped() -> bool:
    """Expose runtime bootstrap state for diagnostics/tests."""
    return _bootstrap_started
