"""
Custom exceptions for the automation engine.

Per-candidate errors (NotFoundError, ValidationError, AlreadyProcessedError)
are folded into a job's result by the batch runner. DependencyUnavailable
aborts one tenant's run and is recorded by the fan-out driver.
ChannelDeliveryError never leaves the notification dispatcher.
"""

from typing import Optional


class AutomationError(Exception):
    """Base class for automation engine errors."""


class NotFoundError(AutomationError):
    """Raised when a referenced entity no longer exists."""

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} {entity_id} not found" if entity_id else f"{entity} not found"
        super().__init__(message)


class ValidationError(AutomationError):
    """Raised when input facts or configuration are malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}" if field else message)


class AlreadyProcessedError(AutomationError):
    """Raised when a side effect turns out to exist already at write time."""

    def __init__(self, entity: str, entity_id: str, reason: str = "side effect already applied"):
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity} {entity_id}: {reason}")


class ChannelDeliveryError(AutomationError):
    """Raised by a channel sender when a notification could not be delivered."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} delivery failed: {reason}")


class DependencyUnavailable(AutomationError):
    """Raised when the record store or settings service cannot be reached."""

    def __init__(self, dependency: str, reason: str):
        self.dependency = dependency
        self.reason = reason
        super().__init__(f"{dependency} unavailable: {reason}")


# Errors that mean "skip this candidate" rather than "this candidate failed"
SKIPPABLE_ERRORS = (NotFoundError, ValidationError, AlreadyProcessedError)
