"""
Lifecycle of a metrics instance: periodic sampling, periodic reporting and
a final flush on stop.
"""
import enum
import logging
import threading
import time
import uuid
from concurrent.futures import Executor, TimeoutError as FuturesTimeoutError
from typing import Callable, List, Optional, Sequence, Tuple

from . import config
from .config import MetricsProperties
from .context import HostContext
from .endpoint import Endpoint, HttpEndpoint
from .exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    LifecycleError,
    NotRunningError,
    ShutdownTimeoutError,
)
from .report import Delivery, Reporter
from .sample import SampleEvent, Sampler
from .server_id import ServerIdResolver, resolve_server_id
from .source import SourceRegistry
from .task import Scheduler, ThreadScheduler, TrackedTask

logger = logging.getLogger(__name__)


class State(enum.Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'


class Metrics:
    """
    Owns the sampling and reporting cadence of one metrics instance.

    Samples are taken every sample_interval and buffered; every
    report_interval the buffer is drained into a report delivered to all
    endpoints. Stopping delivers whatever is still buffered, waiting at most
    shutdown_timeout seconds.
    """

    def __init__(
        self,
        owner: str,
        server_id: uuid.UUID,
        registry: SourceRegistry,
        endpoints: Sequence[Endpoint],
        sample_interval: float = config.SAMPLE_INTERVAL,
        report_interval: float = config.REPORT_INTERVAL,
        scheduler: Optional[Scheduler] = None,
        context: Optional[HostContext] = None,
        shutdown_timeout: float = config.SHUTDOWN_TIMEOUT,
        executor_factory: Optional[Callable[[], Executor]] = None
    ):
        """
        Initialize the metrics instance.

        Args:
            owner (str): Name of the host application owning this instance
            server_id (UUID): Identifier reported with every sample
            registry (SourceRegistry): Sources sampled on every tick
            endpoints (list): Endpoints every report is delivered to
            sample_interval (float): Seconds between samples
            report_interval (float): Seconds between reports
            scheduler (Scheduler, optional): Host scheduler. Defaults to ThreadScheduler.
            context (HostContext, optional): Context passed to sources.
                Defaults to one built from owner and server_id.
            shutdown_timeout (float): Seconds to wait for the final delivery
            executor_factory (callable, optional): Creates the reporter's worker

        Raises:
            ConfigurationError: If no endpoints are given or an interval is not positive
        """
        if not endpoints:
            raise ConfigurationError("endpoints is empty!")
        if sample_interval <= 0 or report_interval <= 0:
            raise ConfigurationError("sample_interval and report_interval must be positive")

        self.owner = owner
        self.server_id = server_id
        self.registry = registry
        self.endpoints: Tuple[Endpoint, ...] = tuple(endpoints)
        self.sample_interval = sample_interval
        self.report_interval = report_interval
        self.scheduler = scheduler or ThreadScheduler(name='metrics')
        self.context = context or HostContext(server_id=server_id, app_name=owner)
        self.shutdown_timeout = shutdown_timeout
        self._executor_factory = executor_factory

        self._lock = threading.Lock()
        self._state = State.STOPPED
        self._listeners: List[Callable[[SampleEvent], None]] = []
        self._sampler: Optional[Sampler] = None
        self._reporter: Optional[Reporter] = None
        self._sample_task: Optional[TrackedTask] = None
        self._report_task: Optional[TrackedTask] = None

    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is State.RUNNING

    @property
    def sampler(self) -> Optional[Sampler]:
        return self._sampler

    @property
    def reporter(self) -> Optional[Reporter]:
        return self._reporter

    @property
    def tasks(self) -> Tuple[Optional[TrackedTask], Optional[TrackedTask]]:
        return self._sample_task, self._report_task

    def add_listener(self, listener: Callable[[SampleEvent], None]) -> None:
        """
        Register a listener inspecting or augmenting every sample before serialization.

        Args:
            listener (callable): Function taking a SampleEvent
        """
        with self._lock:
            self._listeners.append(listener)
            if self._sampler is not None:
                self._sampler.add_listener(listener)

    def start(self) -> None:
        """
        Start sampling and reporting.

        Raises:
            AlreadyRunningError: If the instance is not stopped
        """
        with self._lock:
            if self._state is not State.STOPPED:
                raise AlreadyRunningError(f"{self} is already running!")
            self._state = State.STARTING
            listeners = list(self._listeners)

        logger.info("Starting %s...", self)

        sampler = Sampler(self.context, self.registry)
        for listener in listeners:
            sampler.add_listener(listener)

        reporter = None
        sample_task = TrackedTask('metrics-sampler', sampler.run_tick)
        report_task = None
        try:
            executor = self._executor_factory() if self._executor_factory else None
            reporter = Reporter(sampler, self.endpoints, executor)
            report_task = TrackedTask('metrics-reporter', reporter.run_tick)

            sample_task.schedule(self.scheduler, self.sample_interval)
            report_task.schedule(self.scheduler, self.report_interval)
        except Exception:
            sample_task.cancel()
            if report_task is not None:
                report_task.cancel()
            if reporter is not None:
                reporter.shutdown(timeout=0)
            with self._lock:
                self._state = State.STOPPED
            raise

        with self._lock:
            self._sampler = sampler
            self._reporter = reporter
            self._sample_task = sample_task
            self._report_task = report_task
            self._state = State.RUNNING

    def stop(self) -> Optional[Delivery]:
        """
        Deliver queued samples and stop sampling and reporting.

        The buffer is drained while the ticks are still scheduled, then once
        more after they are cancelled, so a sample taken during the final
        delivery is reported too. Both deliveries share one shutdown_timeout.
        Delivery problems are logged and never prevent the instance from
        stopping.

        Returns:
            Delivery: Outcome of the final delivery, or None if nothing was
                queued or it did not finish within shutdown_timeout. When two
                reports were needed, a failed first outcome takes precedence
                over the second.

        Raises:
            NotRunningError: If the instance is not running
        """
        with self._lock:
            if self._state is not State.RUNNING:
                raise NotRunningError(f"{self} is not running!")
            self._state = State.STOPPING
            sampler, reporter = self._sampler, self._reporter
            tasks = (self._sample_task, self._report_task)

        logger.info("Stopping %s...", self)

        deadline = time.monotonic() + self.shutdown_timeout
        delivery = None
        try:
            delivery = self._flush(sampler, reporter, deadline, delivery)

            for task in tasks:
                if task is not None and task.is_running():
                    task.cancel()

            delivery = self._flush(sampler, reporter, deadline, delivery)
            reporter.shutdown(self.shutdown_timeout)
        finally:
            with self._lock:
                self._sampler = None
                self._reporter = None
                self._sample_task = None
                self._report_task = None
                self._state = State.STOPPED

        return delivery

    def _flush(self, sampler: Sampler, reporter: Reporter, deadline: float,
               previous: Optional[Delivery]) -> Optional[Delivery]:
        report = sampler.create_report()
        if report is None:
            return previous

        logger.info("%s is reporting %s queued samples...", self, len(report))
        delivery = self._deliver_final(reporter, report, max(0.0, deadline - time.monotonic()))
        if previous is not None and not previous.ok:
            return previous
        return delivery

    def _deliver_final(self, reporter: Reporter, report, timeout: float) -> Optional[Delivery]:
        try:
            return reporter.report(report).result(timeout=timeout)
        except FuturesTimeoutError:
            error = ShutdownTimeoutError(
                f"Report {report.id} was not delivered within {self.shutdown_timeout} seconds")
            logger.error("Could not report queued samples: %s", str(error))
        except Exception as e:
            logger.error("Could not report queued samples: %s", str(e))
        return None

    def __str__(self) -> str:
        return f"Metrics for {self.owner}"

    #
    # Factory methods
    #

    @classmethod
    def create(
        cls,
        owner: str,
        default_server_id: uuid.UUID,
        registry: SourceRegistry,
        properties: MetricsProperties,
        endpoints: Sequence[Endpoint],
        **kwargs
    ) -> 'Metrics':
        """
        Create an instance configured by properties.

        Args:
            owner (str): Name of the host application
            default_server_id (UUID): Server id used unless properties set one
            registry (SourceRegistry): Sources to sample
            properties (MetricsProperties): Intervals and optional server id
            endpoints (list): Endpoints reports are delivered to
            **kwargs: Additional Metrics arguments

        Returns:
            Metrics: The new, stopped instance

        Raises:
            MalformedPropertiesError: If a property cannot be parsed
        """
        server_id = properties.server_id or default_server_id
        return cls(
            owner,
            server_id,
            registry,
            endpoints,
            sample_interval=properties.sample_interval,
            report_interval=properties.report_interval,
            **kwargs
        )

    @classmethod
    def create_with_defaults(
        cls,
        owner: str,
        properties: Optional[MetricsProperties] = None,
        resolver: Optional[ServerIdResolver] = None,
        endpoint_url: Optional[str] = None,
        attached: Optional[Callable[[], Sequence[str]]] = None,
        **kwargs
    ) -> 'Metrics':
        """
        Create an instance with the built-in sources and the default collector.

        Args:
            owner (str): Name of the host application
            properties (MetricsProperties, optional): Defaults to the environment
            resolver (ServerIdResolver, optional): Defaults to config.SERVER_ID_FILE
            endpoint_url (str, optional): Defaults to config.SERVER_URL
            attached (callable, optional): Lists the components using the
                instance, reported as host:attached
            **kwargs: Additional Metrics arguments

        Returns:
            Metrics: The new, stopped instance
        """
        # Imported here to avoid circular imports
        from collectors import default_sources

        properties = properties or MetricsProperties.from_env()
        server_id = properties.server_id or resolve_server_id(resolver or ServerIdResolver())

        if attached is not None and 'context' not in kwargs:
            kwargs['context'] = HostContext(server_id=server_id, app_name=owner, attached=attached)

        registry = SourceRegistry(default_sources())
        endpoint = HttpEndpoint(endpoint_url)
        return cls.create(owner, server_id, registry, properties, [endpoint], **kwargs)


class MetricsHandle:
    """
    Reference-counted handle shared by the components using one instance.

    The instance is created and started when the first owner attaches and
    stopped when the last owner detaches.
    """

    def __init__(self, factory: Callable[['MetricsHandle'], Metrics]):
        """
        Initialize the handle.

        Args:
            factory (callable): Creates the instance, given this handle
        """
        self._factory = factory
        self._lock = threading.Lock()
        self._owners: Tuple[str, ...] = ()
        self._metrics: Optional[Metrics] = None

    @classmethod
    def with_defaults(cls, app_name: str, **kwargs) -> 'MetricsHandle':
        """
        Create a handle whose instance uses Metrics.create_with_defaults.

        The attached owners are reported through the host:attached source.

        Args:
            app_name (str): Name of the host application
            **kwargs: Additional create_with_defaults arguments

        Returns:
            MetricsHandle: The handle, with nothing attached yet
        """
        def factory(handle: 'MetricsHandle') -> Metrics:
            return Metrics.create_with_defaults(app_name, attached=handle.owners, **kwargs)

        return cls(factory)

    @property
    def metrics(self) -> Metrics:
        """
        Get the running instance.

        Raises:
            NotRunningError: If no owner is attached
        """
        metrics = self._metrics
        if metrics is None:
            raise NotRunningError("Metrics didn't start yet!")
        return metrics

    def owners(self) -> Tuple[str, ...]:
        # Read without the lock: sources call this while detach() holds it.
        return self._owners

    def is_attached(self, owner: str) -> bool:
        return owner in self._owners

    def attach(self, owner: str) -> None:
        """
        Attach an owner, starting the instance if it is the first one.

        Args:
            owner (str): Name of the attaching component

        Raises:
            LifecycleError: If the owner is already attached
        """
        with self._lock:
            if owner in self._owners:
                raise LifecycleError(f"Already started for {owner}")

            self._owners += (owner,)
            if self._metrics is not None:
                return

            try:
                metrics = self._factory(self)
                metrics.start()
            except Exception:
                self._owners = tuple(o for o in self._owners if o != owner)
                raise
            self._metrics = metrics

    def detach(self, owner: str) -> Optional[Delivery]:
        """
        Detach an owner, stopping the instance if it was the last one.

        Args:
            owner (str): Name of the detaching component

        Returns:
            Delivery: Outcome of the final delivery when the instance stopped

        Raises:
            LifecycleError: If the owner is not attached
        """
        with self._lock:
            if owner not in self._owners:
                raise LifecycleError(f"Not started for {owner}")
            return self._detach(owner)

    def detach_if_attached(self, owner: str) -> Optional[Delivery]:
        with self._lock:
            if owner not in self._owners:
                return None
            return self._detach(owner)

    def _detach(self, owner: str) -> Optional[Delivery]:
        self._owners = tuple(o for o in self._owners if o != owner)
        if self._owners:
            return None

        metrics, self._metrics = self._metrics, None
        return metrics.stop()
