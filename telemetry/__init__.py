"""
Telemetry collector sampling metric sources and reporting them to remote collectors.
"""
from .config import MetricsProperties
from .context import HostContext
from .endpoint import Endpoint, HttpEndpoint
from .exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    ConnectionTimeout,
    DeliveryError,
    DuplicateKeyError,
    LifecycleError,
    MalformedPropertiesError,
    MetricsError,
    NotRunningError,
    SerializationError,
    ShutdownTimeoutError,
    SourceProductionError,
)
from .lite import MetricsLite
from .metrics import Metrics, MetricsHandle, State
from .report import Delivery, Report, Reporter
from .sample import Sample, SampleEvent, Sampler
from .server_id import ServerIdResolver
from .source import (
    FunctionSource,
    MetricKey,
    MetricSource,
    SourceRegistry,
    ValueKind,
    array_source,
    object_source,
    scalar_source,
)
from .task import Scheduler, ThreadScheduler, TrackedTask

__version__ = "0.1.0"

__all__ = [
    'AlreadyRunningError',
    'ConfigurationError',
    'ConnectionTimeout',
    'Delivery',
    'DeliveryError',
    'DuplicateKeyError',
    'Endpoint',
    'FunctionSource',
    'HostContext',
    'HttpEndpoint',
    'LifecycleError',
    'MalformedPropertiesError',
    'MetricKey',
    'MetricSource',
    'Metrics',
    'MetricsError',
    'MetricsHandle',
    'MetricsLite',
    'MetricsProperties',
    'NotRunningError',
    'Report',
    'Reporter',
    'Sample',
    'SampleEvent',
    'Sampler',
    'Scheduler',
    'SerializationError',
    'ServerIdResolver',
    'ShutdownTimeoutError',
    'SourceProductionError',
    'SourceRegistry',
    'State',
    'ThreadScheduler',
    'TrackedTask',
    'ValueKind',
    'array_source',
    'object_source',
    'scalar_source',
]
