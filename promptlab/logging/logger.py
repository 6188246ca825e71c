"""
Logging infrastructure for promptlab.

Provides structured logging with:
- Component-bound loggers (analytics, experiments, optimization)
- Per-component log files with rotation and retention
- A dedicated error log
"""

import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

COMPONENTS = ("analytics", "experiments", "optimization", "events")

# Records emitted through the plain loguru logger still format cleanly
logger.configure(extra={"component": "system"})


class PromptLabLogger:
    """
    Logger setup for promptlab with component-specific sinks.

    Features:
    - Structured logging with a bound component name
    - One log file per engine component
    - Log rotation and retention
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        rotation: str = "100 MB",
        retention: str = "1 month",
        level: str = "INFO",
        format_string: Optional[str] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
    ):
        """
        Initialize the promptlab logger.

        Args:
            log_dir: Directory for log files
            rotation: When to rotate log files
            retention: How long to keep old logs
            level: Default log level
            format_string: Custom format string
            enable_file_logging: Whether to log to files
            enable_console_logging: Whether to log to console
        """
        self.log_dir = log_dir or Path("logs")
        self.rotation = rotation
        self.retention = retention
        self.level = level

        self.format_string = format_string or (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[component]}</cyan> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

        # Remove default handler
        logger.remove()

        if enable_console_logging:
            logger.add(
                sys.stderr,
                format=self.format_string,
                level=level,
                colorize=True,
            )

        if enable_file_logging:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._add_file_handlers()

        self.logger = logger.bind(component="system")

    def _add_file_handlers(self) -> None:
        """Add the main, per-component and error log files."""
        logger.add(
            self.log_dir / "promptlab.log",
            format=self.format_string,
            level=self.level,
            rotation=self.rotation,
            retention=self.retention,
            compression="zip",
        )

        for component in COMPONENTS:
            logger.add(
                self.log_dir / f"{component}.log",
                format=self.format_string,
                level="DEBUG",
                rotation=self.rotation,
                retention=self.retention,
                compression="zip",
                filter=lambda record, name=component: record["extra"].get("component")
                == name,
            )

        # Error log (ERROR and above only)
        logger.add(
            self.log_dir / "errors.log",
            format=self.format_string,
            level="ERROR",
            rotation=self.rotation,
            retention=self.retention,
            compression="zip",
        )

    def get_logger(self, component: str) -> Any:
        """Get a logger bound to a specific component."""
        return logger.bind(component=component)


def get_component_logger(component: str = "system") -> Any:
    """
    Get a component-specific logger.

    Args:
        component: Component name

    Returns:
        Logger instance

    Example:
        >>> log = get_component_logger("experiments")
        >>> log.info("Experiment started")
    """
    return logger.bind(component=component)


# Global logger instance
_promptlab_logger: Optional[PromptLabLogger] = None


def initialize_logging(
    log_dir: Optional[Path] = None, level: str = "INFO", **kwargs: Any
) -> PromptLabLogger:
    """
    Initialize the promptlab logging system.

    This should be called once at application startup.

    Args:
        log_dir: Directory for log files
        level: Default log level
        **kwargs: Additional configuration for PromptLabLogger

    Returns:
        Configured PromptLabLogger instance
    """
    global _promptlab_logger
    _promptlab_logger = PromptLabLogger(log_dir=log_dir, level=level, **kwargs)
    return _promptlab_logger


def initialize_logging_from_config(log_config: Any) -> PromptLabLogger:
    """Initialize logging from a ``LogConfig`` instance."""
    return initialize_logging(
        log_dir=Path(log_config.log_dir),
        level=log_config.level,
        rotation=log_config.rotation,
        retention=log_config.retention,
        enable_file_logging=log_config.enable_file_logging,
        enable_console_logging=log_config.enable_console_logging,
    )


def get_logger_instance() -> Optional[PromptLabLogger]:
    """Get the global logger instance."""
    return _promptlab_logger
