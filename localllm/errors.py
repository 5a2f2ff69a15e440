"""
localllm error handling and logging utilities.

This module provides the exception taxonomy used across the inference
session, the component loggers, and helpers for configuring log output.
"""

import logging
import os
import sys
from typing import Any, Dict, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Create the main logger
logger = logging.getLogger("localllm")

# Component-specific loggers
backend_logger = logging.getLogger("localllm.backend")
session_logger = logging.getLogger("localllm.session")
generate_logger = logging.getLogger("localllm.generate")
service_logger = logging.getLogger("localllm.service")


class LocalLLMError(Exception):
    """Base exception class for localllm errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, recoverable: bool = False):
        """Initialize error with message and optional details.

        Args:
            message: Error description
            details: Additional context about the error
            recoverable: Whether the caller can keep using the session
        """
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class BackendNotReadyError(LocalLLMError):
    """Raised when a model operation is attempted before backend init."""
    pass


class ModelLoadError(LocalLLMError):
    """Exception raised for errors during model loading."""
    pass


class ModelDownloadError(ModelLoadError):
    """Exception raised when model files cannot be fetched."""
    pass


class ContextCreationError(LocalLLMError):
    """Exception raised when the execution context cannot be allocated."""
    pass


class TokenizationError(LocalLLMError):
    """Exception raised when the prompt cannot be tokenized."""
    pass


class DecodeError(LocalLLMError):
    """Exception raised when the context fails to decode a batch."""
    pass


class PromptDecodeError(DecodeError):
    """Decode failure while feeding the prompt. Fatal to the call."""
    pass


class GenerationDecodeError(DecodeError):
    """Decode failure while re-feeding a sampled token. Truncates output."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, recoverable: bool = True):
        super().__init__(message, details=details, recoverable=recoverable)


class InvalidStateError(LocalLLMError):
    """Operation attempted before load or after unload."""
    pass


class GenerationError(LocalLLMError):
    """Exception raised when a generation produced no usable output."""
    pass


class ConfigurationError(LocalLLMError):
    """Exception raised for configuration errors."""
    pass


class ValidationError(LocalLLMError):
    """Exception raised for validation failures."""
    pass


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    component_config: Optional[Dict[str, Dict[str, Any]]] = None,
) -> None:
    """Configure logging for localllm.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, logs to console only)
        component_config: Component-specific logging configuration
    """
    level = getattr(logging, log_level.upper())

    # Configure localllm root logger
    root = logging.getLogger("localllm")
    root.setLevel(level)

    # Prevent propagation to avoid duplicate logs
    root.propagate = False
    root.handlers = []

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    component_loggers = {
        "localllm.backend": backend_logger,
        "localllm.session": session_logger,
        "localllm.generate": generate_logger,
        "localllm.service": service_logger,
    }

    # Component loggers propagate to the localllm root; only their level differs
    for logger_name, logger_instance in component_loggers.items():
        logger_instance.handlers = []
        logger_instance.propagate = True

        component_level = level
        if component_config and logger_name in component_config:
            component_level_name = component_config[logger_name].get("level", log_level)
            component_level = getattr(logging, component_level_name.upper())

        logger_instance.setLevel(component_level)
        logger_instance.debug(
            f"Logger {logger_name} configured with level {logging.getLevelName(component_level)}"
        )


def log_exception(
    e: Exception, logger_instance: logging.Logger = logger, log_traceback: bool = True
) -> None:
    """Log exception details with appropriate formatting.

    Args:
        e: Exception instance
        logger_instance: Logger to use
        log_traceback: Whether to log full traceback
    """
    logger_instance.error(f"{type(e).__name__}: {str(e)}")
    if isinstance(e, LocalLLMError) and e.details:
        for key, value in e.details.items():
            logger_instance.error(f"  {key}: {value}")

    if log_traceback:
        logger_instance.debug("Traceback:", exc_info=e)


def report_memory_usage(
    operation_name: str,
    logger_instance: logging.Logger = logger,
    warning_threshold_mb: int = 8000,
) -> float:
    """Report process memory after an operation.

    Args:
        operation_name: Name of the operation being monitored
        logger_instance: Logger to use
        warning_threshold_mb: Log a warning if memory usage exceeds this threshold

    Returns:
        Current memory usage in MB
    """
    try:
        import psutil
    except ImportError as e:
        logger_instance.debug(f"Couldn't report memory usage: {str(e)}")
        return 0.0

    process = psutil.Process()
    memory_mb = process.memory_info().rss / (1024 * 1024)

    if not hasattr(report_memory_usage, "last_memory"):
        memory_change = 0.0
    else:
        memory_change = memory_mb - report_memory_usage.last_memory
    report_memory_usage.last_memory = memory_mb

    message = f"Memory usage after {operation_name}: {memory_mb:.2f} MB (delta: {memory_change:+.2f} MB)"
    if memory_mb >= warning_threshold_mb:
        system_memory = psutil.virtual_memory()
        logger_instance.warning(message)
        logger_instance.warning(f"  System memory: {system_memory.percent:.1f}% used")
    else:
        logger_instance.info(message)

    return memory_mb
