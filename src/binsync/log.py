"""Logging setup and crash reports."""

from __future__ import annotations

import logging
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Callable, TextIO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


def configure_logging(verbose: bool = False, stream: TextIO | None = None) -> logging.Logger:
    """Install a single stderr handler on the ``binsync`` logger, replacing any earlier one."""

    root = logging.getLogger("binsync")
    # The previous stream may already be closed, so it is dropped without a flush.
    for handler in [handler for handler in root.handlers if getattr(handler, "_binsync_console", False)]:
        root.removeHandler(handler)
    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    console._binsync_console = True  # type: ignore[attr-defined]
    root.addHandler(console)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return root


def write_crash_report(exc: BaseException, log_dir: Path, *, now: datetime | None = None) -> Path | None:
    """Write the traceback of ``exc`` to ``crash-<timestamp>.log`` in ``log_dir``."""

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    path = log_dir / f"crash-{stamp}.log"
    text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"{(now or datetime.now()).isoformat()}\n{text}\n")
    except OSError as error:
        logger.error("Could not write crash report to '%s': %s", path, error)
        return None
    return path


def notify(notifier: Notifier | None, message: str) -> None:
    """Call ``notifier`` without ever letting it raise."""

    if notifier is None:
        return
    try:
        notifier(message)
    except Exception:  # noqa: BLE001
        logger.debug("Notifier failed for message %r", message, exc_info=True)


def install_exception_hooks(log_dir: Path | Callable[[], Path], notifier: Notifier | None = None) -> None:
    """Route uncaught exceptions from any thread to a crash report.

    ``log_dir`` may be a callable, read each time a report is written.
    """

    def handle(
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logger.error("Unhandled %s", exc_type.__name__, exc_info=(exc_type, exc, tb))
        report = write_crash_report(exc, log_dir() if callable(log_dir) else log_dir)
        where = f" Details were written to {report}." if report else ""
        notify(notifier, f"Unexpected error: {exc}.{where}")

    def handle_thread(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None:
            return
        handle(args.exc_type, args.exc_value, args.exc_traceback)

    sys.excepthook = handle
    threading.excepthook = handle_thread
