"""
Logging infrastructure for promptlab.
"""

from .logger import (
    PromptLabLogger,
    get_component_logger,
    get_logger_instance,
    initialize_logging,
    initialize_logging_from_config,
)

__all__ = [
    "PromptLabLogger",
    "get_component_logger",
    "get_logger_instance",
    "initialize_logging",
    "initialize_logging_from_config",
]
