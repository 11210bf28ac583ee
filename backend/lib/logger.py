"""
Console Logging for the Backend

- Color-coded levels (only when stdout is a terminal)
- Icons per backend area (agent, speech, curriculum, progress)
- Request/response helpers with timing
- Structured key/value payloads printed under the message
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """One line per record: time, icon, level, logger name, message."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Matched against the last component of the logger name
    SECTION_ICONS = {
        'agent': '🤖',
        'speech': '🎙️',
        'curriculum': '📚',
        'progress': '🎓',
        'auth': '🔐',
        'main': '🌐',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        area = record.name.split('.')[-1]
        icon = self.SECTION_ICONS.get(area, self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, timestamp_color = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = timestamp_color = ''

        formatted = (
            f"{timestamp_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )

        data = getattr(record, 'data', None)
        if data:
            formatted += "\n" + format_data(data)

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def format_data(data: Dict[str, Any], indent: int = 2) -> str:
    """Render a flat-ish dict as indented key: value lines."""
    lines = []
    for key, value in data.items():
        if isinstance(value, dict):
            lines.append(f"{' ' * indent}{key}:")
            lines.append(format_data(value, indent + 2))
        elif isinstance(value, (list, tuple)) and len(value) > 5:
            preview = ", ".join(str(item) for item in value[:3])
            lines.append(f"{' ' * indent}{key}: [{preview}, ... ({len(value)} items total)]")
        else:
            lines.append(f"{' ' * indent}{key}: {value}")
    return "\n".join(lines)


def _truncate(value: Optional[str], limit: int = 20) -> Optional[str]:
    if value and len(value) > limit:
        return value[:limit] + "..."
    return value


class StructuredLogger:
    """Thin wrapper adding payloads, sections and request/response lines."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        separator = "=" * 80
        self.logger.info(f"\n{separator}\n📋 {title.upper()}\n{separator}", extra={"data": data})

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(message, extra={"data": data})

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra={"data": data})

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra={"data": data})

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        error_info = f" Error: {type(error).__name__}: {error}" if error else ""
        self.logger.error(f"{message}{error_info}", exc_info=error, extra={"data": data})

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(f"✅ {message}", extra={"data": data})

    def request(self, method: str, path: str, user_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        request_data = {"user_id": _truncate(user_id)}
        if data:
            request_data.update(data)
        self.logger.info(f"📥 REQUEST: {method} {path}", extra={"data": request_data})

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        response_data = {"duration_ms": f"{duration * 1000:.2f}" if duration is not None else None}
        if data:
            response_data.update(data)
        self.logger.info(f"📤 RESPONSE: {status} {path}", extra={"data": response_data})


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Provider SDKs log every HTTP call at INFO
    for noisy in ('asyncio', 'httpx', 'httpcore', 'urllib3', 'hpack'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name, logging.getLogger(name))
