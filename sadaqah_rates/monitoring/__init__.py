from .logger import EventType, LogEvent, LogLevel, ProductionLogger, get_production_logger, setup_logging

__all__ = [
    "EventType",
    "LogEvent",
    "LogLevel",
    "ProductionLogger",
    "get_production_logger",
    "setup_logging",
]
