"""
Unified Logger System.

JSON-only structured logging for Azure Functions with Application Insights.

Design Principles:
    - Strong typing with dataclasses (stdlib only)
    - Enum safety for categories
    - Component-specific loggers
    - Assessment correlation carried as customDimensions

Exports:
    ComponentType: Enum for component types
    LogLevel: Enum for log levels
    LogContext: Logging context dataclass
    ContextLoggerAdapter: Component logger plus assessment context
    ComponentConfig: Per-component logging settings
    JSONFormatter: Application Insights friendly formatter
    LoggerFactory: Factory for creating loggers
    log_exceptions: Exception logging decorator

Dependencies:
    Standard library only (logging, enum, dataclasses, json)
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass
import logging
import sys
import os
import json
import traceback
from functools import wraps


# ============================================================================
# COMPONENT TYPES - Aligned with layer architecture
# ============================================================================

class ComponentType(Enum):
    """
    Component types aligned with the layers of the function app.

    Each layer has specific logging needs and levels.
    """
    SERVICE = "service"        # Orchestrator, reconciler, watchdog
    REPOSITORY = "repository"  # PostgreSQL / in-memory stores
    TRIGGER = "trigger"        # HTTP, timer and queue entry points
    CLIENT = "client"          # Outbound API clients (metrics API, audit runner)
    FACTORY = "factory"        # Object wiring


# ============================================================================
# LOG LEVELS - Standard Python levels with enum safety
# ============================================================================

class LogLevel(Enum):
    """
    Standard Python log levels as enum for type safety.
    """
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        """Convert to Python logging level constant."""
        return getattr(logging, self.value)

    @classmethod
    def from_string(cls, level: str) -> 'LogLevel':
        """Create from string, case-insensitive."""
        return cls[level.upper()]


# ============================================================================
# LOG CONTEXT - Correlation and tracking
# ============================================================================

@dataclass
class LogContext:
    """
    Context for log correlation across an assessment run.

    Every field is optional; only populated fields reach customDimensions.
    """
    assessment_id: Optional[str] = None
    customer_id: Optional[str] = None
    module_code: Optional[str] = None
    worker_id: Optional[str] = None
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            k: v for k, v in {
                'assessment_id': self.assessment_id,
                'customer_id': self.customer_id,
                'module_code': self.module_code,
                'worker_id': self.worker_id,
                'correlation_id': self.correlation_id,
                'request_id': self.request_id,
            }.items() if v is not None
        }


# ============================================================================
# COMPONENT CONFIGURATION - Per-component settings
# ============================================================================

@dataclass
class ComponentConfig:
    """
    Configuration for component-specific logging.
    """
    component_type: ComponentType
    log_level: LogLevel = LogLevel.INFO
    max_message_length: int = 1000


# ============================================================================
# JSON FORMATTER - Structured logging for Azure Functions
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in Azure Functions.
    Outputs logs in a format that Application Insights can automatically parse.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'custom_dimensions'):
            log_obj['customDimensions'] = record.custom_dimensions

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_obj, default=str)


# ============================================================================
# LOGGER FACTORY - Creates component-specific loggers
# ============================================================================

class LoggerFactory:
    """
    Factory for creating component-specific loggers.

    Example:
        logger = LoggerFactory.create_logger(
            ComponentType.SERVICE,
            "AssessmentOrchestrator"
        )
        logger.info("[ORCHESTRATOR] Claimed job")
    """

    _default_level = LogLevel.DEBUG if os.getenv('DEBUG_LOGGING', '').lower() == 'true' else LogLevel.INFO

    DEFAULT_CONFIGS = {
        ComponentType.SERVICE: ComponentConfig(
            component_type=ComponentType.SERVICE,
            log_level=_default_level
        ),
        ComponentType.REPOSITORY: ComponentConfig(
            component_type=ComponentType.REPOSITORY,
            log_level=_default_level
        ),
        ComponentType.TRIGGER: ComponentConfig(
            component_type=ComponentType.TRIGGER,
            log_level=_default_level
        ),
        ComponentType.CLIENT: ComponentConfig(
            component_type=ComponentType.CLIENT,
            log_level=_default_level
        ),
        ComponentType.FACTORY: ComponentConfig(
            component_type=ComponentType.FACTORY,
            log_level=_default_level
        ),
    }

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        config: Optional[ComponentConfig] = None
    ) -> logging.Logger:
        """
        Create a logger for a specific component.

        One logging.Logger exists per component name; per-assessment
        correlation goes through create_with_context instead.

        Args:
            component_type: Type of component
            name: Component name (e.g., "FindingReconciler")
            config: Optional custom configuration

        Returns:
            Configured Python logger
        """
        if config is None:
            config = cls.DEFAULT_CONFIGS.get(
                component_type,
                ComponentConfig(component_type=component_type)
            )

        logger = logging.getLogger(f"{component_type.value}.{name}")

        if isinstance(config.log_level, str):
            log_level = LogLevel.from_string(config.log_level).to_python_level()
        else:
            log_level = config.log_level.to_python_level()
        logger.setLevel(log_level)

        # One JSON handler per logger, however many times create_logger runs
        has_json_handler = any(
            isinstance(h.formatter, JSONFormatter) for h in logger.handlers
        )
        if not has_json_handler:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(log_level)
            handler.setFormatter(JSONFormatter())
            logger.addHandler(handler)

        logger.propagate = True

        if not hasattr(logger, '_context_wrapped'):
            original_log = logger._log

            def log_with_context(level, msg, args, exc_info=None, extra=None, stack_info=False, stacklevel=1):
                """Wrapper to inject component identity as custom dimensions."""
                if extra is None:
                    extra = {}

                custom_dims = {
                    'component_type': component_type.value,
                    'component_name': name,
                }
                if 'custom_dimensions' in extra:
                    custom_dims.update(extra['custom_dimensions'])

                extra['custom_dimensions'] = custom_dims

                original_log(level, msg, args, exc_info=exc_info, extra=extra,
                             stack_info=stack_info, stacklevel=stacklevel + 1)

            logger._log = log_with_context
            logger._context_wrapped = True

        return logger

    @classmethod
    def create_with_context(
        cls,
        component_type: ComponentType,
        name: str,
        assessment_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        module_code: Optional[str] = None,
        worker_id: Optional[str] = None
    ) -> 'ContextLoggerAdapter':
        """
        Wrap the component logger with assessment context.

        The adapter is cheap and short-lived: each call carries its own
        context, so two modules of the same assessment never share one.
        """
        context = LogContext(
            assessment_id=assessment_id,
            customer_id=customer_id,
            module_code=module_code,
            worker_id=worker_id
        )
        return ContextLoggerAdapter(cls.create_logger(component_type, name), context)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Adds a LogContext to every record's custom dimensions.

    Dimensions passed explicitly through extra['custom_dimensions'] win
    over the context.
    """

    def __init__(self, logger: logging.Logger, context: LogContext):
        super().__init__(logger, {})
        self.context = context

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        custom_dims = self.context.to_dict()
        custom_dims.update(extra.get('custom_dimensions', {}))
        extra['custom_dimensions'] = custom_dims
        kwargs['extra'] = extra
        return msg, kwargs


# ============================================================================
# EXCEPTION DECORATOR - Automatic exception logging with context
# ============================================================================

def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[logging.Logger] = None):
    """
    Decorator to automatically log exceptions with full context.

    Can be used in three ways:
    1. With existing logger: @log_exceptions(logger=my_logger)
    2. With component info: @log_exceptions(ComponentType.TRIGGER, "AssessmentWorker")
    3. Simple: @log_exceptions() - uses function module and name

    The exception is always re-raised.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if logger:
                log = logger
            elif component_type and component_name:
                log = LoggerFactory.create_logger(component_type, component_name)
            else:
                log = LoggerFactory.create_logger(
                    ComponentType.SERVICE,
                    func.__module__ or "unknown"
                )

            try:
                return func(*args, **kwargs)
            except Exception as e:
                log.error(
                    f"Exception in {func.__name__}",
                    exc_info=True,
                    extra={
                        'custom_dimensions': {
                            'function_name': func.__name__,
                            'function_module': func.__module__,
                            'exception_type': type(e).__name__,
                            'exception_message': str(e),
                            'function_args': str(args)[:500],
                            'function_kwargs': str(kwargs)[:500],
                            'traceback': traceback.format_exc()
                        }
                    }
                )
                raise
        return wrapper
    return decorator
