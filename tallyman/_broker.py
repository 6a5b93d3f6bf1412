"""Broker configuration for the dramatiq worker.

Actors call :func:`ensure_broker_configured` when they run rather than at
import time, so importing :mod:`tallyman.worker` never mutates global broker
state.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

ALLOW_STUB_BROKER_ENV_VAR = "TALLYMAN_ALLOW_STUB_BROKER"

_BROKER_LOCK = threading.Lock()
_broker_configured = False


def _is_running_tests() -> bool:
    return "pytest" in sys.modules or any(
        key in os.environ
        for key in ["PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS"]
    )


def _should_use_stub_broker() -> bool:
    """Return whether a StubBroker may stand in for a real broker.

    True when ``TALLYMAN_ALLOW_STUB_BROKER`` is truthy or under pytest.
    """
    allow_stub = os.environ.get(ALLOW_STUB_BROKER_ENV_VAR, "")
    return allow_stub.lower() in {"1", "true", "yes"} or _is_running_tests()


def ensure_broker_configured() -> None:
    """Ensure a dramatiq broker is configured before actor execution.

    Thread-safe and idempotent across dramatiq worker threads.

    Raises
    ------
    RuntimeError
        If no broker is configured and a stub broker is not allowed.

    """
    global _broker_configured

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:  # pragma: no cover - exercised in tests and CLI usage
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # No broker backend installed, or none configured yet.
            current_broker = None

        if current_broker is None:
            if _should_use_stub_broker():
                dramatiq.set_broker(StubBroker())
            else:  # pragma: no cover - guard for prod misconfigurations
                message = (
                    "No dramatiq broker configured. "
                    f"Set {ALLOW_STUB_BROKER_ENV_VAR}=1 for "
                    "local/test runs or configure a real broker."
                )
                raise RuntimeError(message)

        _broker_configured = True
