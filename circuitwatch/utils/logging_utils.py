"""Unified logging setup for circuitwatch."""
from __future__ import annotations

import contextvars
import json
import logging
import os
import sys

from circuitwatch.utils.env_flags import is_truthy_env

DEFAULT_FORMAT = '%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - [cycle=%(cycle)s] %(message)s'
MINIMAL_CONSOLE_FORMAT = '%(asctime)s %(levelname)s %(message)s'

SUPPRESSED_LOGGERS = [
    'urllib3', 'requests', 'kiteconnect.connection', 'kiteconnect',
]

_cycle_var: contextvars.ContextVar[int | None] = contextvars.ContextVar('cw_cycle', default=None)


def set_cycle(cycle: int | None) -> None:
    """Tag subsequent log records on this thread/context with the cycle number."""
    _cycle_var.set(cycle)


class _CycleFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'cycle'):
            record.cycle = _cycle_var.get() if _cycle_var.get() is not None else '-'
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': record.created,
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'cycle': getattr(record, 'cycle', None),
            'msg': record.getMessage(),
        }
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str = 'INFO', log_file: str | None = None, fmt: str | None = None) -> logging.Logger:
    """Configure root logging.

    Console uses the minimal format unless CW_VERBOSE_CONSOLE=1 (full format)
    or CW_JSON_LOGS=1 (one JSON object per line). The optional file handler
    always uses the full format for post-mortem analysis.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()

    if fmt is not None:
        console_fmt = fmt
    elif is_truthy_env('CW_VERBOSE_CONSOLE'):
        console_fmt = DEFAULT_FORMAT
    else:
        console_fmt = MINIMAL_CONSOLE_FORMAT

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.addFilter(_CycleFilter())
    if is_truthy_env('CW_JSON_LOGS'):
        console.setFormatter(_JsonFormatter())
    else:
        console.setFormatter(logging.Formatter(console_fmt))
    root.addHandler(console)

    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding='utf-8')
        fh.setLevel(log_level)
        fh.addFilter(_CycleFilter())
        fh.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        root.addHandler(fh)

    for name in SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


__all__ = ["setup_logging", "set_cycle", "DEFAULT_FORMAT"]
