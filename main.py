#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Agent Panel core.
Runs the session multiplexer behind a JSON-lines bridge on stdin/stdout.
"""

import argparse
import signal
import sys
import time
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from config import get_help_options, load_config
from config_watcher import ConfigWatcher
from error_handler import get_error_handler, install_excepthook
from help_executor import HelpExecutor
from logging_config import configure_qt_logging, get_logger, setup_logging
from multiplexer import SessionMultiplexer
from routing import RoutingSurface, StdioBridge

logger = get_logger(__name__)

# Python runs signal handlers only between bytecodes, so the idle Qt loop
# has to hand control back this often
SIGNAL_WAKE_INTERVAL_MS = 200


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run several interactive CLI sessions behind one panel.")
    parser.add_argument("--config", type=Path, help="settings file (defaults to the platform config dir)")
    parser.add_argument("--folder", action="append", default=[], type=Path,
                        help="workspace folder; repeat for multi-root workspaces")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--no-log-file", action="store_true", help="log to stderr only")
    return parser.parse_args(argv)


def install_signal_handlers(app: QCoreApplication) -> QTimer:
    """Quit ``app`` on SIGINT/SIGTERM; keep the returned timer alive while it runs."""
    def shutdown(signum, _frame):
        logger.info(f"Received signal {signum}, shutting down")
        app.quit()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    wake_timer = QTimer()
    wake_timer.timeout.connect(lambda: None)
    wake_timer.start(SIGNAL_WAKE_INTERVAL_MS)
    return wake_timer


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)

    def apply_overrides(settings: dict) -> dict:
        if args.folder:
            settings["workspace_folders"] = [str(p) for p in args.folder]
        return settings

    apply_overrides(cfg)
    setup_logging(level=args.log_level or cfg.get("log_level", "INFO"),
                  log_to_file=not args.no_log_file, log_to_console=True)
    install_excepthook()
    startup_start_time = time.time()

    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName("Agent Panel")
    app.setOrganizationName("Agent Panel")
    configure_qt_logging()

    multiplexer = SessionMultiplexer(cfg)
    help_executor = HelpExecutor(**get_help_options(cfg))
    help_executor.preload_common_commands(cfg.get("preload_commands", []))
    surface = RoutingSurface(multiplexer, help_executor)
    get_error_handler().set_notification_callback(surface.report_error)

    watcher = ConfigWatcher(args.config)
    watcher.config_changed.connect(lambda settings: multiplexer.update_config(apply_overrides(settings)))

    bridge = StdioBridge(surface)
    bridge.finished.connect(app.quit)
    wake_timer = install_signal_handlers(app)

    bridge.start()
    logger.info(f"Panel core ready in {(time.time() - startup_start_time) * 1000:.1f}ms")
    exit_code = app.exec()

    wake_timer.stop()
    get_error_handler().set_notification_callback(None)
    multiplexer.dispose()
    help_executor.dispose()
    logger.info(f"Panel core exiting with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
