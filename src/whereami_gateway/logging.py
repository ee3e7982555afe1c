"""
Logging setup for whereami gateway processes (CLI, embedding applications).

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed once by the process entry point through ``setup_logging``.

Defaults:
- INFO/DEBUG records on stdout, WARNING and above on stderr
- Level INFO (overridable via env)
- Optional JSON format and optional rotating log file via env

Env options (optional):
- WHEREAMI_LOG_LEVEL=DEBUG|INFO|WARNING|ERROR (default INFO)
- WHEREAMI_LOG_JSON=1 (JSON formatting)
- WHEREAMI_LOG_FILE=/path/to/file.log (RotatingFileHandler)
- WHEREAMI_LOG_DIR=/path/to/dir (uses <service>.log when WHEREAMI_LOG_FILE unset)
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import List, Optional

_INITIALIZED = False
_HANDLERS: List[logging.Handler] = []
_TRUTHY = ('1', 'true', 'yes', 'on')

__all__ = [
    "setup_logging",
    "reset_logging",
    "get_logger",
]


class _ServiceFilter(logging.Filter):
    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, 'service', None):
            record.service = self.service
        return True


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'name': record.name,
            'service': getattr(record, 'service', ''),
            'message': record.getMessage(),
        }
        if record.exc_info:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class _LevelRangeFilter(logging.Filter):
    def __init__(self, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL):
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


def _get_level(default: str = 'INFO') -> int:
    level = os.getenv('WHEREAMI_LOG_LEVEL', default).upper()
    return getattr(logging, level, logging.INFO)


def _use_json(json_format: Optional[bool]) -> bool:
    if json_format is not None:
        return str(json_format).lower() in _TRUTHY
    return os.getenv('WHEREAMI_LOG_JSON', '').lower() in _TRUTHY


def setup_logging(
    service: str = "whereami",
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> None:
    """Configure process logging once. Safe to call multiple times.

    Args:
        service: label injected into every record (``[service]`` field)
        level: optional level override (DEBUG/INFO/...) else from env
        json_format: optional flag to force JSON format, else from env
    """
    global _INITIALIZED
    if _INITIALIZED:
        return

    root = logging.getLogger()
    root.setLevel(_get_level(level) if level else _get_level())

    if _use_json(json_format):
        formatter: logging.Formatter = _JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s [%(service)s] %(message)s')

    service_filter = _ServiceFilter(service)

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.addFilter(_LevelRangeFilter(max_level=logging.INFO))
    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.addFilter(_LevelRangeFilter(min_level=logging.WARNING))
    handlers: List[logging.Handler] = [stdout_handler, stderr_handler]

    log_path = os.getenv('WHEREAMI_LOG_FILE')
    if not log_path:
        log_dir = os.getenv('WHEREAMI_LOG_DIR')
        if log_dir:
            log_path = str(Path(log_dir) / f'{service}.log')

    if log_path:
        try:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                log_path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding='utf-8'))
        except OSError as exc:
            root.warning("Could not open log file %s (%s), using console only", log_path, exc)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(service_filter)
        root.addHandler(handler)
        _HANDLERS.append(handler)

    _INITIALIZED = True


def reset_logging() -> None:
    """Remove the handlers installed by ``setup_logging`` (used by tests and re-config)."""
    global _INITIALIZED
    root = logging.getLogger()
    while _HANDLERS:
        handler = _HANDLERS.pop()
        root.removeHandler(handler)
        handler.close()
    _INITIALIZED = False


def get_logger(name: Optional[str] = None, **context) -> logging.LoggerAdapter:
    base = logging.getLogger(name or __name__)
    if 'service' not in context:
        context['service'] = ''
    return logging.LoggerAdapter(base, context)
