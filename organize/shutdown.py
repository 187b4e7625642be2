"""Ctrl+C handling for long image upload runs.

The first SIGINT/SIGTERM marks the run as stopping: uploads already in
flight finish, queued ones are dropped and the manifest is saved as usual.
A second signal runs the registered cleanup callbacks and exits.
"""

import signal
import sys
import threading
from typing import Callable, Dict, List, Optional

from organize.logging_config import get_logger

__all__ = ["ShutdownHandler", "get_shutdown_handler"]

logger = get_logger("shutdown")

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Stop flag shared between the signal handler and upload workers.

    Works as a context manager around the upload:

        with get_shutdown_handler() as stopper:
            stopper.register_cleanup(manifest.save)
            uploader.upload_all(jobs)
    """

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._on_force_exit: List[Callable[[], None]] = []
        self._previous: Dict[int, object] = {}

    def __enter__(self) -> "ShutdownHandler":
        return self.install()

    def __exit__(self, *exc_info) -> None:
        self.uninstall()

    def install(self) -> "ShutdownHandler":
        # signal.signal only works from the main thread
        if self._previous or threading.current_thread() is not threading.main_thread():
            return self
        for signum in _SIGNALS:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._on_first_signal)
        return self

    def uninstall(self) -> None:
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()
        self._on_force_exit.clear()

    def _on_first_signal(self, signum: int, frame) -> None:
        logger.warning(
            f"Received {signal.Signals(signum).name}; finishing in-flight uploads "
            f"and saving the manifest. Send again to quit immediately."
        )
        self._stop.set()
        signal.signal(signum, self._on_second_signal)

    def _on_second_signal(self, signum: int, frame) -> None:
        logger.warning("Quitting without waiting for in-flight uploads")
        self.run_cleanup()
        sys.exit(1)

    @property
    def shutdown_requested(self) -> bool:
        return self._stop.is_set()

    def request_shutdown(self) -> None:
        self._stop.set()

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        """Run callback if the user forces the process to quit."""
        self._on_force_exit.append(callback)

    def run_cleanup(self) -> None:
        while self._on_force_exit:
            callback = self._on_force_exit.pop(0)
            try:
                callback()
            except Exception as e:
                logger.error(f"Cleanup before exit failed: {e}")


_handler: Optional[ShutdownHandler] = None


def get_shutdown_handler() -> ShutdownHandler:
    """Process-wide handler used by the upload CLI."""
    global _handler
    if _handler is None:
        _handler = ShutdownHandler()
    return _handler
