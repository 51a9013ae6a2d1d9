"""Structured logging for the dashboard backend.

Every log line is an event name plus key/value fields. Output is JSON lines
when stdout is not a terminal (containers, log shippers) and a coloured,
human-readable line when running locally.
"""
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


LEVELS: Dict[str, int] = {'DEBUG': 0, 'INFO': 1, 'WARN': 2, 'ERROR': 3}

_COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARN': '\033[33m',
    'ERROR': '\033[31m',
}
_RESET = '\033[0m'


class StructuredLogger:
    """Structured logger that outputs JSON in production, readable text in dev."""

    def __init__(self, level: str = 'INFO', *, component: str = '', tty: Optional[bool] = None):
        """Initialize logger.

        Args:
            level: Minimum log level (DEBUG, INFO, WARN, ERROR)
            component: Optional name added to every entry as ``component``
            tty: Force human-readable (True) or JSON (False) output
        """
        self.level = level.upper()
        self.component = component
        self._is_tty = sys.stdout.isatty() if tty is None else tty

    def child(self, component: str) -> 'StructuredLogger':
        """Return a logger sharing this level that tags entries with ``component``."""
        return StructuredLogger(self.level, component=component, tty=self._is_tty)

    def _should_log(self, level: str) -> bool:
        return LEVELS.get(level, 1) >= LEVELS.get(self.level, 1)

    def _stream(self, level: str) -> TextIO:
        return sys.stderr if level in ('WARN', 'ERROR') else sys.stdout

    def _log(self, level: str, event: str, **fields: Any) -> None:
        if not self._should_log(level):
            return

        entry: Dict[str, Any] = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': level,
            'msg': event,
        }
        if self.component:
            entry['component'] = self.component
        entry.update(fields)

        out = self._stream(level)
        if self._is_tty:
            parts = [f"{_COLORS.get(level, '')}[{level}]{_RESET} {event}"]
            kv_parts = []
            for k, v in fields.items():
                if isinstance(v, (dict, list)):
                    v = json.dumps(v, default=str)[:100]
                kv_parts.append(f"{k}={v}")
            if kv_parts:
                parts.append("| " + " ".join(kv_parts))
            print(" ".join(parts), file=out)
        else:
            print(json.dumps(entry, default=str), file=out)

    def debug(self, event: str, **fields: Any) -> None:
        self._log('DEBUG', event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log('INFO', event, **fields)

    def warn(self, event: str, **fields: Any) -> None:
        self._log('WARN', event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._log('ERROR', event, **fields)


# Log level can be set via LOG_LEVEL environment variable
logger = StructuredLogger(level=os.getenv('LOG_LEVEL', 'INFO'))
