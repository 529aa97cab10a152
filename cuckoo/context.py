"""Utilities for tracing the stages of a pipeline invocation."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


stage: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "stage", default=()
)


def current_stage() -> str:
    """Return the label of the stage currently running."""
    return " > ".join(stage.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log entry, exit and duration of a named pipeline stage."""
    stack = stage.get()
    token = stage.set(stack + (name,))
    label = current_stage()
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    except Exception:
        _LOGGER.debug("[Trace] ! %s failed", label)
        raise
    finally:
        t2 = perf_counter()
        stage.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))
