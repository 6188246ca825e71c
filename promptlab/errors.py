"""
Exception hierarchy for promptlab.

Validation errors are raised before any state is mutated. Not-found errors
are kept distinct so callers can tell a bad request from a missing entity.
"""

from typing import Optional


class PromptLabError(Exception):
    """Base class for all promptlab errors."""


class ValidationError(PromptLabError):
    """Raised when input fails validation (weights, controls, metric names)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(PromptLabError):
    """Raised when a test, variant or template id is unknown."""

    def __init__(self, message: str, entity: str, identifier: str):
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class InvalidTransitionError(PromptLabError):
    """Raised when an experiment status transition is not allowed."""

    def __init__(self, experiment_id: str, current: str, target: str):
        super().__init__(
            f"Experiment {experiment_id} cannot move from '{current}' to '{target}'"
        )
        self.experiment_id = experiment_id
        self.current = current
        self.target = target


class StorageError(PromptLabError):
    """Raised by experiment store adapters when persistence fails."""

    def __init__(self, message: str, operation: str, key: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.key = key


class AutomationError(PromptLabError):
    """Raised by automation handlers when a recommendation cannot be applied."""

    def __init__(self, message: str, recommendation_id: Optional[str] = None):
        super().__init__(message)
        self.recommendation_id = recommendation_id
