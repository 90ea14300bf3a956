"""Crash capture and graceful shutdown for the monitored process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
import threading
from collections.abc import Callable
from types import TracebackType

from argos.core.sink import ErrorSink

logger = logging.getLogger("argos.lifecycle")

ShutdownCallback = Callable[[str], object]


class CrashGuard:
    """Routes uncaught failures to the sink and shuts the process down.

    Uncaught exceptions (main thread, worker threads) are persisted as
    critical errors and trigger a shutdown that runs the registered callbacks
    under a hard timeout; if they hang, the process is killed anyway.
    Unhandled exceptions in asyncio tasks are recorded but not fatal.

    If the critical-log write itself fails, the status file simply stops
    updating and the verifier still sees the process as gone.
    """

    def __init__(
        self,
        sink: ErrorSink,
        timeout: float = 10.0,
        exit_func: Callable[[int], object] = os._exit,
    ) -> None:
        self.sink = sink
        self.timeout = timeout
        self._exit = exit_func
        self._callbacks: list[ShutdownCallback] = []
        self._shutting_down = threading.Event()
        self._previous_excepthook = None
        self._previous_threading_hook = None
        self._previous_signals: dict[int, object] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_signals: list[int] = []

    def add_shutdown_callback(self, callback: ShutdownCallback) -> None:
        """Register ``callback(reason)`` to run during shutdown, in order."""
        self._callbacks.append(callback)

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Hook ``sys.excepthook``, ``threading.excepthook``, signals and ``loop``."""
        self._previous_excepthook = sys.excepthook
        self._previous_threading_hook = threading.excepthook
        sys.excepthook = self._handle_uncaught
        threading.excepthook = self._handle_thread_exception

        for signum in (signal.SIGTERM, signal.SIGINT):
            if loop is not None:
                try:
                    loop.add_signal_handler(signum, self._handle_signal, signum)
                    self._loop_signals.append(signum)
                    continue
                except (NotImplementedError, RuntimeError):
                    pass
            if threading.current_thread() is threading.main_thread():
                self._previous_signals[signum] = signal.signal(
                    signum, lambda s, _f: self._handle_signal(s)
                )

        if loop is not None:
            loop.set_exception_handler(self._handle_loop_exception)
            self._loop = loop

    def uninstall(self) -> None:
        """Restore every hook :meth:`install` replaced."""
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None
        if self._previous_threading_hook is not None:
            threading.excepthook = self._previous_threading_hook
            self._previous_threading_hook = None
        for signum, handler in self._previous_signals.items():
            if handler is not None:
                signal.signal(signum, handler)
        self._previous_signals.clear()

        loop, self._loop = self._loop, None
        if loop is not None and not loop.is_closed():
            loop.set_exception_handler(None)
            for signum in self._loop_signals:
                loop.remove_signal_handler(signum)
        self._loop_signals.clear()

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _handle_uncaught(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            self.shutdown("SIGINT received", exit_code=0)
            return
        if exc.__traceback__ is None and tb is not None:
            exc = exc.with_traceback(tb)
        logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
        self.sink.report_critical("UNCAUGHT_EXCEPTION", exc)
        self.shutdown(f"Uncaught exception: {exc}")

    def _handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None:
            return
        self._handle_uncaught(args.exc_type, args.exc_value, args.exc_traceback)

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")
        logger.error("Unhandled task exception: %s", message)
        self.sink.report_critical("UNHANDLED_TASK_EXCEPTION", exc or message)

    def _handle_signal(self, signum: int) -> None:
        name = signal.Signals(signum).name
        logger.info("%s received, shutting down", name)
        self.shutdown(f"{name} received", exit_code=0)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self, reason: str, exit_code: int = 1) -> None:
        """Run shutdown callbacks, then exit. Forced exit after ``timeout``."""
        if self._shutting_down.is_set():
            return
        self._shutting_down.set()
        logger.info("Attempting graceful shutdown: %s", reason)

        watchdog = threading.Timer(self.timeout, self._force_exit)
        watchdog.daemon = True
        watchdog.start()
        try:
            for callback in self._callbacks:
                try:
                    callback(reason)
                except Exception:
                    logger.exception("Shutdown callback %r failed", callback)
        finally:
            watchdog.cancel()
        _flush_logs()
        self._exit(exit_code)

    def _force_exit(self) -> None:
        logger.error("Graceful shutdown timed out after %.1fs, forcing exit", self.timeout)
        _flush_logs()
        self._exit(1)


def _flush_logs() -> None:
    for handler in logging.getLogger("argos").handlers:
        with contextlib.suppress(OSError, ValueError):
            handler.flush()
