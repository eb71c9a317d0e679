"""
Logging configuration for the RBAC service.

This module provides centralized logging configuration with support for
structured logging, different log levels, and multiple output formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any, Optional


def get_logging_config(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> Dict[str, Any]:
    """
    Get logging configuration dictionary.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging

    Returns:
        Logging configuration dictionary
    """
    log_level = log_level.upper()

    formatters = {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        },
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(module)s %(lineno)d %(message)s"
        }
    }

    formatter_name = "json" if log_format == "json" else "detailed"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter_name,
            "stream": sys.stdout
        }
    }

    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": formatter_name,
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8"
        }

    handler_names = list(handlers.keys())
    loggers = {
        "": {  # Root logger
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "uvicorn.error": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "fastapi": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "quicklink_rbac": {
            "level": log_level,
            "handlers": handler_names,
            "propagate": False
        },
        "quicklink_rbac.audit": {  # Audit trail is always kept at INFO
            "level": "INFO",
            "handlers": handler_names,
            "propagate": False
        }
    }

    if enable_access_log:
        loggers["uvicorn.access"] = {
            "level": "INFO",
            "handlers": handler_names,
            "propagate": False
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": loggers
    }


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
    enable_access_log: bool = True
) -> None:
    """
    Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'text')
        log_file: Optional log file path
        enable_access_log: Whether to enable HTTP access logging
    """
    config = get_logging_config(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        enable_access_log=enable_access_log
    )

    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class StructuredLogger:
    """
    Structured logger for consistent log message formatting.

    This class provides methods for logging structured data with
    consistent field names and formats.
    """

    def __init__(self, name: str):
        """Initialize structured logger.

        Args:
            name: Logger name
        """
        self.logger = get_logger(name)

    def log_access_decision(
        self,
        principal_id: str,
        resource: str,
        action: str,
        granted: bool,
        rule: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        """Log an enforcement decision.

        Args:
            principal_id: Acting principal
            resource: Module name or document path
            action: Requested action
            granted: Whether access was granted
            rule: Id of the deciding rule, if any
            reason: Human readable reason
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "access_decision",
            "principal_id": principal_id,
            "resource": resource,
            "action": action,
            "granted": granted,
        }

        if rule:
            log_data["rule"] = rule
        if reason:
            log_data["reason"] = reason

        log_data.update(kwargs)

        if granted:
            self.logger.info("Access granted", extra=log_data)
        else:
            self.logger.warning("Access denied", extra=log_data)

    def log_mutation(
        self,
        actor_id: str,
        operation: str,
        target: str,
        success: bool,
        error: Optional[str] = None,
        **kwargs
    ):
        """Log a role or principal mutation attempt.

        Args:
            actor_id: Principal performing the mutation
            operation: Operation name (e.g. ``role.create``)
            target: Document path of the target
            success: Whether the mutation committed
            error: Error kind if it failed
            **kwargs: Additional fields to log
        """
        log_data = {
            "event": "mutation",
            "actor_id": actor_id,
            "operation": operation,
            "target": target,
            "success": success,
        }

        if error:
            log_data["error"] = error

        log_data.update(kwargs)

        if success:
            self.logger.info("Mutation committed", extra=log_data)
        else:
            self.logger.warning("Mutation rejected", extra=log_data)

    def info(self, message: str, **kwargs):
        """Log info message with structured data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with structured data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with structured data."""
        self.logger.error(message, extra=kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message with structured data."""
        self.logger.debug(message, extra=kwargs)


# Global structured logger instance for the application
app_logger = StructuredLogger("quicklink_rbac")
