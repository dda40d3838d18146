"""
Environment-aware logging setup.

- development: human-readable lines with colours
- staging/production: one JSON object per line for log aggregation
"""

import os
import sys
import json
import logging
from typing import Optional
from datetime import datetime

JSON_ENVIRONMENTS = ('production', 'prod', 'staging')


class ColoredFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'ENDC': '\033[0m',        # End color
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, '')
        end_color = self.COLORS['ENDC']

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        colored_level = f"{level_color}{record.levelname:8s}{end_color}"
        module_name = record.name if record.name != '__main__' else 'main'

        line = f"[{timestamp}] {colored_level} [{module_name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    def __init__(self, environment: str):
        super().__init__()
        self.environment = environment

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'module': record.name,
            'message': record.getMessage(),
            'environment': self.environment,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Structured fields passed as logger.info(..., extra={'extra': {...}})
        if hasattr(record, 'extra') and isinstance(record.extra, dict):
            log_entry.update(record.extra)

        return json.dumps(log_entry, default=str)


def get_environment() -> str:
    return os.getenv('ENVIRONMENT', 'development').lower()


def init(level: str = 'INFO', environment: Optional[str] = None) -> logging.Handler:
    """Configure the root logger once for the whole service."""
    environment = (environment or get_environment()).lower()
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if environment in JSON_ENVIRONMENTS:
        handler.setFormatter(JsonFormatter(environment))
    else:
        handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(max(numeric_level, logging.WARNING))
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
