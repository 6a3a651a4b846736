# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Logging setup and the run log.

Every module logs through structlog. A backup or restore run additionally
keeps a human-readable log file (backup.log inside the backup root,
restore_<timestamp>.log for restores). The file is fed by a processor that
appends each event while a run log is bound through structlog contextvars.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, MutableMapping

import structlog

RUN_LOG_KEY = "run_log"


class RunLogTee:
    """
    Processor that appends events to the bound run log file.

    Lines look like "[2025-10-14 12:00:00] volume_copied volume=x".
    """

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        run_log = event_dict.pop(RUN_LOG_KEY, None)
        if run_log:
            append_run_log(Path(run_log), format_run_log_line(event_dict, method_name))
        return event_dict


def format_run_log_line(event_dict: MutableMapping[str, Any], level: str = "info") -> str:
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    context = " ".join(
        f"{key}={value}"
        for key, value in event_dict.items()
        if key not in ("event", "timestamp", "level")
    )
    prefix = "" if level in ("info", "debug") else f"{level.upper()}: "
    line = f"[{stamp}] {prefix}{event_dict.get('event', '')}"
    return f"{line} {context}" if context else line


def append_run_log(path: Path, line: str) -> None:
    """Append one line to a run log; a vanished log is not an error."""
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except FileNotFoundError:
        pass


def bind_run_log(path: Path) -> None:
    """Start copying log events into path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    structlog.contextvars.bind_contextvars(**{RUN_LOG_KEY: str(path)})


def unbind_run_log() -> None:
    structlog.contextvars.unbind_contextvars(RUN_LOG_KEY)


def configure_logging(verbose: bool = False, json: bool = False) -> None:
    """
    Configure structlog for command-line use.

    Args:
        verbose: Show debug events
        json: Render JSON lines instead of the console format
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            RunLogTee(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
