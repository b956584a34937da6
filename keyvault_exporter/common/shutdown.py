"""
Graceful shutdown manager with ordered cleanup callbacks.
Centralizes signal handling for the exporter process.
"""
import signal
import threading
import time
from typing import Callable, List, Tuple, Optional
from enum import Enum

from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


class ShutdownState(Enum):
    """Shutdown manager states"""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownManager:
    """
    Shutdown coordinator with prioritized cleanup.

    Priority levels (lower = executed first):
        0-9:   Stop triggering new collection cycles
        10-19: Wait for the in-flight cycle
        20-29: Stop the HTTP server
        30-39: Close Azure credentials and clients

    Usage:
        shutdown = ShutdownManager(timeout=30)
        shutdown.register(scheduler.stop, priority=10, name="scheduler")
        shutdown.register(server.stop, priority=20, name="http-server")
        shutdown.install_signal_handlers()
        shutdown.wait_for_shutdown()
    """

    def __init__(self, timeout: float = 30):
        """
        Args:
            timeout: Maximum seconds to spend running callbacks
        """
        self.timeout = timeout
        self.state = ShutdownState.RUNNING
        self._callbacks: List[Tuple[int, str, Callable[[], None]]] = []
        self._state_lock = threading.Lock()
        self._shutdown_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self.state == ShutdownState.RUNNING

    def register(
        self,
        callback: Callable[[], None],
        priority: int = 20,
        name: str = "unnamed"
    ) -> None:
        """
        Register a cleanup callback.

        Args:
            callback: Function to call during shutdown (no args)
            priority: Execution priority (lower = earlier)
            name: Descriptive name for logging
        """
        self._callbacks.append((priority, name, callback))
        self._callbacks.sort(key=lambda x: x[0])
        logger.debug(f"Registered shutdown callback: {name} (priority={priority})")

    def install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        logger.info("Signal handlers installed (SIGINT, SIGTERM)")

    def _signal_handler(self, signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating shutdown")
        # Callbacks may block (joining threads); keep the handler itself short
        self._shutdown_event.set()

    def initiate_shutdown(self) -> None:
        """
        Run all callbacks in priority order.
        Thread-safe; a second call while shutting down is ignored.
        """
        with self._state_lock:
            if self.state != ShutdownState.RUNNING:
                logger.warning("Shutdown already in progress, ignoring")
                return
            self.state = ShutdownState.SHUTTING_DOWN

        self._shutdown_event.set()
        logger.info(f"Shutdown initiated, executing {len(self._callbacks)} callbacks")

        self._execute_callbacks()

        with self._state_lock:
            self.state = ShutdownState.STOPPED
        logger.info("Shutdown complete")

    def _execute_callbacks(self) -> None:
        start_time = time.monotonic()

        for priority, name, callback in self._callbacks:
            if time.monotonic() - start_time >= self.timeout:
                logger.error(
                    f"Shutdown timeout ({self.timeout}s) exceeded, "
                    f"skipping remaining callbacks"
                )
                break

            try:
                callback()
                logger.info(f"Shutdown callback completed: {name} (priority={priority})")
            except Exception as e:
                logger.error(f"Shutdown callback failed: {name} - {e}")

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Block until a signal or another thread requests shutdown.

        Returns:
            True if shutdown was requested, False on timeout
        """
        return self._shutdown_event.wait(timeout=timeout)

    def request_shutdown(self) -> None:
        """Wake up ``wait_for_shutdown`` without running callbacks."""
        self._shutdown_event.set()

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "callbacks_registered": len(self._callbacks),
            "callback_names": [name for _, name, _ in self._callbacks],
            "timeout": self.timeout
        }
