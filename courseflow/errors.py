"""Error types raised by courseflow."""

from __future__ import annotations


class CourseflowError(Exception):
    """Base class for all courseflow errors."""


class ConfigurationError(CourseflowError):
    """Unsupported language, framework or service, or missing credentials."""


class IntegrationError(CourseflowError):
    """An external service call failed or returned a non-success status.

    The provider's raw response body is kept verbatim in ``payload``.
    """

    def __init__(self, service: str, message: str, payload: str = "") -> None:
        self.service = service
        self.payload = payload
        detail = f"{message}: {payload}" if payload else message
        super().__init__(f"[{service}] {detail}")


class DataConsistencyError(CourseflowError):
    """An expected correlated entity was not found upstream or locally."""


class EntityNotFoundError(CourseflowError):
    """A directly requested user or course does not exist."""


class PollTimeoutError(CourseflowError, TimeoutError):
    """A bounded poll ran out of attempts without satisfying its predicate."""

    def __init__(self, description: str, attempts: int) -> None:
        self.description = description
        self.attempts = attempts
        super().__init__(f"{description} was not reached after {attempts} attempts")


class PayloadParseError(CourseflowError):
    """An inbound webhook body is not valid JSON."""
