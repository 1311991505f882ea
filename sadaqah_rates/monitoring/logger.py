import json
import logging
import sys
import traceback
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any


class CustomJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_data'):
            log_entry['data'] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, cls=CustomJSONEncoder)


class AppLogger:
    """
    Centralized logging configuration for the rates engine.

    Console output for humans, rotating JSON files for everything else. Provider
    calls and circuit breaker transitions go to their own file under `api/`.
    """
    def __init__(self,
                 log_directory: str = "logs",
                 console_level: str = "INFO",
                 file_level: str = "DEBUG",
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5):
        self.log_directory = Path(log_directory)
        self.console_level = getattr(logging, console_level.upper())
        self.file_level = getattr(logging, file_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count

        self.log_directory.mkdir(parents=True, exist_ok=True)
        self._setup_logging()

    def _setup_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(logging.DEBUG)

        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        self._setup_console_handler(root_logger)
        root_logger.addHandler(self._rotating_handler("system", "app.log", self.file_level))
        root_logger.addHandler(self._rotating_handler("errors", "errors.log", logging.WARNING))
        self._setup_api_log_handler()

    def _setup_console_handler(self, logger: logging.Logger) -> None:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.console_level)
        console_format = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
        console_handler.setFormatter(logging.Formatter(console_format, datefmt='%H:%M:%S'))
        logger.addHandler(console_handler)

    def _rotating_handler(self, subdirectory: str, filename: str, level: int) -> RotatingFileHandler:
        log_dir = self.log_directory / subdirectory
        log_dir.mkdir(exist_ok=True)

        handler = RotatingFileHandler(
            log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter())
        return handler

    def _setup_api_log_handler(self) -> None:
        api_logger = logging.getLogger(API_LOGGER_NAME)
        api_logger.handlers.clear()
        api_logger.propagate = False
        api_logger.addHandler(self._rotating_handler("api", "api_calls.log", logging.DEBUG))

        # Also add console handler for immediate feedback
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.console_level)
        console_format = '%(asctime)s | API | %(levelname)-8s | %(message)s'
        console_handler.setFormatter(logging.Formatter(console_format, datefmt='%H:%M:%S'))
        api_logger.addHandler(console_handler)


API_LOGGER_NAME = 'sadaqah_rates.api'


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EventType(Enum):
    API_CALL = "api_call"
    CIRCUIT_BREAKER = "circuit_breaker"
    CACHE_OPERATION = "cache_operation"
    RATE_AGGREGATION = "rate_aggregation"
    DATABASE_OPERATION = "database_operation"
    SERVICE_LIFECYCLE = "service_lifecycle"
    HEALTH_CHECK = "health_check"


@dataclass
class LogEvent:
    event_type: EventType
    level: LogLevel
    message: str
    timestamp: datetime
    duration_ms: float | None = None
    api_context: dict[str, Any] | None = None
    performance_context: dict[str, Any] | None = None
    rate_context: dict[str, Any] | None = None
    error_context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['event_type'] = self.event_type.value
        data['level'] = self.level.value
        return data


class ProductionLogger:
    def __init__(self):
        self.system_logger = logging.getLogger('sadaqah_rates')
        self.api_logger = logging.getLogger(API_LOGGER_NAME)

    def log_event(self, event: LogEvent):
        logger = self.api_logger if event.event_type in [EventType.API_CALL, EventType.CIRCUIT_BREAKER] else self.system_logger

        extra = {"extra_data": event.to_dict()}

        level_map = {
            LogLevel.DEBUG: logger.debug,
            LogLevel.INFO: logger.info,
            LogLevel.WARNING: logger.warning,
            LogLevel.ERROR: logger.error,
            LogLevel.CRITICAL: logger.critical,
        }

        log_func = level_map.get(event.level, logger.info)
        log_func(event.message, extra=extra)

    def log_api_call(self, provider_name: str, endpoint: str, success: bool, response_time_ms: float,
                     requested_codes: list[str] | None = None, resolved_count: int = 0,
                     error_message: str | None = None):
        event = LogEvent(
            event_type=EventType.API_CALL,
            level=LogLevel.INFO if success else LogLevel.ERROR,
            message=f"API call to {provider_name}/{endpoint}: {'SUCCESS' if success else 'FAILED'}",
            timestamp=datetime.now(),
            duration_ms=response_time_ms,
            api_context={
                "provider": provider_name,
                "endpoint": endpoint,
                "success": success,
                "response_time_ms": response_time_ms,
                "requested_codes": requested_codes or [],
                "resolved_count": resolved_count,
            },
            error_context={"error_message": error_message} if error_message else None
        )
        self.log_event(event)

    def log_circuit_breaker_event(self, provider_name: str, old_state: str,
                                  new_state: str, failure_count: int, reason: str):
        event = LogEvent(
            event_type=EventType.CIRCUIT_BREAKER,
            level=LogLevel.WARNING if new_state == "OPEN" else LogLevel.INFO,
            message=f"Circuit breaker {provider_name}: {old_state} -> {new_state} ({reason})",
            timestamp=datetime.now(),
            api_context={
                "provider": provider_name,
                "old_state": old_state,
                "new_state": new_state,
                "failure_count": failure_count,
                "reason": reason
            }
        )
        self.log_event(event)

    def log_cache_operation(self, operation: str, cache_key: str, hit: bool,
                            duration_ms: float, data_age_seconds: float | None = None,
                            level: LogLevel = LogLevel.DEBUG, error_message: str | None = None):
        message = f"Cache {operation} for {cache_key}: {'HIT' if hit else 'MISS'}"
        if error_message:
            message += f" - ERROR: {error_message}"

        event = LogEvent(
            event_type=EventType.CACHE_OPERATION,
            level=level,
            message=message,
            timestamp=datetime.now(),
            duration_ms=duration_ms,
            performance_context={
                "operation": operation,
                "cache_key": cache_key,
                "hit": hit,
                "duration_ms": duration_ms,
                "data_age_seconds": data_age_seconds
            },
            error_context={"error_message": error_message} if error_message else None
        )
        self.log_event(event)

    def log_rate_aggregation(self, requested: list[str], success: bool,
                             from_cache: list[str], newly_fetched: list[str],
                             not_found: list[str], stale_fallback: list[str],
                             total_duration_ms: float, errors: list[str] | None = None):
        level = LogLevel.INFO
        if not success:
            level = LogLevel.ERROR
        elif not_found or stale_fallback:
            level = LogLevel.WARNING

        event = LogEvent(
            event_type=EventType.RATE_AGGREGATION,
            level=level,
            message=(
                f"Rate aggregation for {len(requested)} codes: "
                f"{len(from_cache)} cached, {len(newly_fetched)} fetched, {len(not_found)} not found"
            ),
            timestamp=datetime.now(),
            duration_ms=total_duration_ms,
            rate_context={
                "requested": requested,
                "success": success,
                "from_cache": from_cache,
                "newly_fetched": newly_fetched,
                "not_found": not_found,
                "stale_fallback": stale_fallback,
            },
            performance_context={"total_duration_ms": total_duration_ms},
            error_context={"errors": errors} if errors else None
        )
        self.log_event(event)

    def log_database_operation(self, operation: str, success: bool,
                               error_message: str | None = None, **context: Any):
        event = LogEvent(
            event_type=EventType.DATABASE_OPERATION,
            level=LogLevel.DEBUG if success else LogLevel.ERROR,
            message=f"Database {operation}: {'OK' if success else 'FAILED'}",
            timestamp=datetime.now(),
            performance_context=context or None,
            error_context={"error_message": error_message} if error_message else None
        )
        self.log_event(event)

    def log_health_check(self, component: str, status: str, details: dict[str, Any] | None = None):
        self.log_event(LogEvent(
            event_type=EventType.HEALTH_CHECK,
            level=LogLevel.INFO if status == "healthy" else LogLevel.WARNING,
            message=f"Health check {component}: {status}",
            timestamp=datetime.now(),
            performance_context=details
        ))

    def log_service_lifecycle(self, message: str, **context: Any):
        self.log_event(LogEvent(
            event_type=EventType.SERVICE_LIFECYCLE,
            level=LogLevel.INFO,
            message=message,
            timestamp=datetime.now(),
            performance_context=context or None
        ))


# Global logger instances
app_logger: AppLogger | None = None
production_logger: ProductionLogger | None = None


def setup_logging(log_directory: str = "logs", console_level: str = "INFO") -> AppLogger:
    """Install handlers once per process"""
    global app_logger
    if app_logger is None:
        app_logger = AppLogger(log_directory=log_directory, console_level=console_level)
    return app_logger


def get_production_logger() -> ProductionLogger:
    """Structured event logger. Handlers are installed by `setup_logging`."""
    global production_logger
    if production_logger is None:
        production_logger = ProductionLogger()
    return production_logger
