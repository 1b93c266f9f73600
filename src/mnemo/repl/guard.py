"""Process-wide error traps and signal handling for an interactive session."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionGuard:
    """Installs the session's safety net once and restores the previous state on dispose.

    While installed:
    - uncaught exceptions (main thread, other threads, event loop callbacks)
      are logged and reported through `on_recover` instead of killing the session
    - SIGINT/SIGTERM call `on_interrupt` for a graceful shutdown
    """

    def __init__(
        self,
        on_interrupt: Callable[[], None],
        on_recover: Callable[[str], None] | None = None,
    ) -> None:
        self._on_interrupt = on_interrupt
        self._on_recover = on_recover
        self.installed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._prev_excepthook: Any = None
        self._prev_threading_excepthook: Any = None
        self._prev_loop_handler: Any = None
        self._signals: list[signal.Signals] = []

    def install(self, loop: asyncio.AbstractEventLoop) -> bool:
        """Install all handlers. Returns False if they were already installed."""
        if self.installed:
            return False

        self._loop = loop
        self._prev_excepthook = sys.excepthook
        sys.excepthook = self._excepthook
        self._prev_threading_excepthook = threading.excepthook
        threading.excepthook = self._threading_excepthook
        self._prev_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._loop_exception)

        for sig in _SIGNALS:
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not supported on this platform or outside the main thread
                logger.debug("Cannot install handler for %s: %s", sig.name, e)
                continue
            self._signals.append(sig)

        self.installed = True
        return True

    def dispose(self) -> None:
        if not self.installed:
            return

        sys.excepthook = self._prev_excepthook
        threading.excepthook = self._prev_threading_excepthook
        if self._loop is not None and not self._loop.is_closed():
            self._loop.set_exception_handler(self._prev_loop_handler)
            for sig in self._signals:
                self._loop.remove_signal_handler(sig)
        self._signals.clear()
        self._loop = None
        self.installed = False

    # ── Handlers ─────────────────────────────────────────────

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._on_interrupt()

    def _excepthook(self, exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            self._prev_excepthook(exc_type, exc, tb)
            return
        logger.error("Uncaught exception", exc_info=(exc_type, exc, tb))
        self._recovered(f"Uncaught exception: {exc}")

    def _threading_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        name = args.thread.name if args.thread else "unknown"
        logger.error(
            "Uncaught exception in thread %s",
            name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        self._recovered(f"Uncaught exception in thread {name}: {args.exc_value}")

    def _loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled error")
        logger.error("Unhandled async error: %s", message, exc_info=exc)
        self._recovered(f"{message}: {exc}" if exc else message)

    def _recovered(self, message: str) -> None:
        if self._on_recover is None:
            return
        try:
            self._on_recover(message)
        except Exception as e:
            logger.debug("Recovery callback failed: %s", e)
