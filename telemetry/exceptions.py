"""
Exceptions raised by the telemetry collector.

Only configuration and lifecycle errors are ever raised to the host
application. Everything else is isolated per source or per endpoint and
reported through logging.
"""
from typing import Optional


class MetricsError(Exception):
    """Base class for all telemetry errors."""


class ConfigurationError(MetricsError):
    """Invalid configuration detected at construction or registration time."""


class DuplicateKeyError(ConfigurationError):
    """A metric source with the same key is already registered."""

    def __init__(self, key):
        super().__init__(f"{key} is already registered!")
        self.key = key


class MalformedPropertiesError(ConfigurationError):
    """A property value could not be parsed."""


class SourceProductionError(MetricsError):
    """A metric source failed to produce its value."""

    def __init__(self, key, cause: BaseException):
        super().__init__(f"Could not produce value for {key}: {cause}")
        self.key = key


class SerializationError(MetricsError):
    """A value could not be converted to its wire representation."""


class DeliveryError(MetricsError):
    """A serialized report could not be delivered to an endpoint."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionTimeout(DeliveryError):
    """Connecting to an endpoint timed out. Retried by the endpoint itself."""


class ShutdownTimeoutError(MetricsError):
    """Pending deliveries did not finish within the shutdown grace period."""


class LifecycleError(MetricsError):
    """An operation was called in a state that does not allow it."""


class AlreadyRunningError(LifecycleError):
    pass


class NotRunningError(LifecycleError):
    pass
