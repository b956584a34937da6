"""
Cycle ID management for log correlation.
Every collection cycle gets an ID that is attached to all log records
emitted while the cycle runs, including records from vault tasks on
worker threads.
"""
import uuid
import logging
import contextvars
from typing import Optional, Callable, Any
from contextvars import ContextVar

_cycle_id_var: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)

_component_var: ContextVar[Optional[str]] = ContextVar("component", default=None)


def generate_cycle_id() -> str:
    """
    Generate a new cycle ID.

    Returns:
        Short hex string (first 12 characters of a UUID4)
    """
    return uuid.uuid4().hex[:12]


def set_cycle_id(cycle_id: Optional[str]) -> None:
    """Set the cycle ID for the current context."""
    _cycle_id_var.set(cycle_id)


def get_cycle_id() -> Optional[str]:
    """Get the cycle ID from the current context, or None outside a cycle."""
    return _cycle_id_var.get()


def set_component(component: str) -> None:
    """
    Set the component name for the current context.

    Args:
        component: Component name (e.g., "exporter", "scheduler", "collector")
    """
    _component_var.set(component)


def get_component() -> Optional[str]:
    return _component_var.get()


def run_in_context(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Bind *func* to a copy of the caller's context.

    ``ThreadPoolExecutor`` does not propagate context variables to its
    worker threads, so vault tasks are wrapped with this before submit.
    """
    ctx = contextvars.copy_context()

    def _runner(*args, **kwargs):
        return ctx.run(func, *args, **kwargs)

    return _runner


class CycleFilter(logging.Filter):
    """
    Logging filter that injects cycle_id and component into log records.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = get_cycle_id() or ""
        record.component = get_component() or ""
        return True


class CycleContext:
    """
    Context manager scoping a cycle ID.
    Restores the previous cycle ID on exit.

    Usage:
        with CycleContext() as ctx:
            logger.info("collection started")   # carries ctx.cycle_id
    """

    def __init__(self, cycle_id: Optional[str] = None):
        self.cycle_id = cycle_id or generate_cycle_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "CycleContext":
        self._token = _cycle_id_var.set(self.cycle_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _cycle_id_var.reset(self._token)
            self._token = None
