"""Run programs with help flags and cache the parsed result."""

import os
import shlex
import subprocess
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from error_handler import handle_help_parse_error, handle_help_probe_error
from help_parser import parse_help
from logging_config import get_logger, log_exception, log_performance
from models import ParsedHelp

logger = get_logger(__name__)

HELP_FLAGS = ("--help", "-h", "help")
# Shorter output is usually an error message, not help text
MIN_HELP_LENGTH = 50


@dataclass
class CacheEntry:
    result: ParsedHelp
    timestamp: float


class HelpExecutor(QObject):
    """Fetches help text for programs with caching, de-duplication and debouncing.

    ``get_help`` returns a ``concurrent.futures.Future``. Probes run on a small
    worker pool; cache and in-flight bookkeeping is shared with the workers
    and guarded by a lock. Debounced callbacks are delivered on the thread
    that owns this object.
    """

    _deliver = Signal(object, object)  # callback, ParsedHelp

    def __init__(
        self,
        timeout: float = 5.0,
        debounce_ms: int = 300,
        cache_max_age: float = 300.0,
        cache_max_size: int = 50,
        max_workers: int = 4,
        parent=None,
    ):
        super().__init__(parent)
        self.timeout = timeout
        self.debounce_ms = debounce_ms
        self.cache_max_age = cache_max_age
        self.cache_max_size = cache_max_size

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._pending: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="help-probe")
        self._debounce_timers: dict[str, QTimer] = {}
        self._disposed = False

        self._deliver.connect(self._on_deliver)

    def get_help(self, command: str) -> Future:
        """Future resolving to the parsed help for ``command``."""
        command = command.strip()
        with self._lock:
            entry = self._cache.get(command)
            if entry is not None and time.monotonic() - entry.timestamp < self.cache_max_age:
                done: Future = Future()
                done.set_result(entry.result)
                return done

            pending = self._pending.get(command)
            if pending is not None:
                return pending

            future = self._pool.submit(self._fetch, command)
            self._pending[command] = future
            return future

    def get_debounced_help(self, command: str, callback: Callable[[ParsedHelp], None], key: str = "default"):
        """Fetch help once input on ``key`` has been quiet for ``debounce_ms``.

        A newer call on the same key cancels the previous one before arming.
        """
        existing = self._debounce_timers.pop(key, None)
        if existing is not None:
            existing.stop()
            existing.deleteLater()

        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.timeout.connect(lambda: self._fire_debounced(key, timer, command, callback))
        self._debounce_timers[key] = timer
        timer.start(self.debounce_ms)

    def _fire_debounced(self, key: str, timer: QTimer, command: str, callback):
        if self._debounce_timers.get(key) is timer:
            del self._debounce_timers[key]
        timer.deleteLater()
        if self._disposed:
            return

        def _done(future: Future):
            try:
                result = future.result()
            except Exception as e:
                logger.warning(f"Help lookup for '{command}' failed: {e}")
                result = ParsedHelp(command=command, parse_errors=["Failed to get help"])
            self._deliver.emit(callback, result)

        try:
            self.get_help(command).add_done_callback(_done)
        except RuntimeError as e:
            # Pool already shut down
            logger.debug(f"Help lookup for '{command}' skipped: {e}")

    @Slot(object, object)
    def _on_deliver(self, callback, result):
        if not self._disposed:
            callback(result)

    def _fetch(self, command: str) -> ParsedHelp:
        """Worker: probe, cache, and clear the in-flight entry in one step."""
        try:
            result = self._execute_help(command)
        except Exception:
            log_exception(logger, f"Unexpected failure reading help for '{command}'", command=command)
            result = ParsedHelp(command=command, parse_errors=["Failed to get help"])
        with self._lock:
            self._update_cache(command, result)
            self._pending.pop(command, None)
        return result

    def _execute_help(self, command: str) -> ParsedHelp:
        start = time.monotonic()
        for flag in HELP_FLAGS:
            output = self._run_probe(command, flag)
            if output and len(output) > MIN_HELP_LENGTH:
                result = parse_help(command, output)
                if result.parse_errors:
                    handle_help_parse_error(command, result.parse_errors)
                log_performance(logger, "help_probe", time.monotonic() - start, command=command, flag=flag)
                return result
        return ParsedHelp(command=command, parse_errors=["Command does not support --help"])

    def _run_probe(self, command: str, flag: str) -> str | None:
        """Run one help invocation; None when it fails or times out."""
        try:
            argv = shlex.split(command) + [flag]
        except ValueError as e:
            handle_help_probe_error(e, command, flag)
            return None
        if not argv[:-1]:
            return None

        env = {**os.environ, "LANG": "C", "LC_ALL": "C"}
        try:
            cp = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                env=env,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the probe before raising
            handle_help_probe_error(e, command, flag)
            return None
        except OSError as e:
            handle_help_probe_error(e, command, flag)
            return None
        # Some programs print help to stderr or exit non-zero
        return cp.stdout or cp.stderr

    def _update_cache(self, command: str, result: ParsedHelp):
        self._cache.pop(command, None)
        while self._cache and len(self._cache) >= self.cache_max_size:
            self._cache.popitem(last=False)
        self._cache[command] = CacheEntry(result, time.monotonic())

    def cached(self, command: str) -> ParsedHelp | None:
        """Fresh cached result, without probing."""
        with self._lock:
            entry = self._cache.get(command)
            if entry is None or time.monotonic() - entry.timestamp >= self.cache_max_age:
                return None
            return entry.result

    def preload_common_commands(self, commands: list[str]):
        """Warm the cache in the background."""
        for command in commands:
            if command and command.strip():
                self.get_help(command)

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    def dispose(self):
        self._disposed = True
        for timer in self._debounce_timers.values():
            timer.stop()
            timer.deleteLater()
        self._debounce_timers.clear()
        self.clear_cache()
        self._pool.shutdown(wait=False, cancel_futures=True)
