"""
Lightweight single-cadence variant.

Every tick takes one sample and posts it directly; nothing is buffered
between ticks and nothing is flushed on stop.
"""
import json
import logging
import threading
import uuid
from typing import Callable, List, Optional

from . import config
from .context import HostContext
from .endpoint import Endpoint, HttpEndpoint
from .exceptions import AlreadyRunningError, MetricsError, NotRunningError
from .sample import Sample, SampleEvent, Sampler
from .server_id import ServerIdResolver, resolve_server_id
from .source import MetricKey, SourceRegistry
from .task import Scheduler, ThreadScheduler, TrackedTask

logger = logging.getLogger(__name__)


class MetricsLite:
    """Posts one sample per interval to a single endpoint."""

    def __init__(
        self,
        owner: str,
        resolver: Optional[ServerIdResolver] = None,
        endpoint: Optional[Endpoint] = None,
        interval: float = config.LITE_INTERVAL,
        registry: Optional[SourceRegistry] = None,
        scheduler: Optional[Scheduler] = None,
        context_factory: Optional[Callable[[uuid.UUID], HostContext]] = None
    ):
        """
        Initialize the lite instance.

        Args:
            owner (str): Name of the host application
            resolver (ServerIdResolver, optional): Defaults to config.SERVER_ID_FILE
            endpoint (Endpoint, optional): Defaults to the lite HTTP endpoint
            interval (float): Seconds between submissions
            registry (SourceRegistry, optional): Defaults to the built-in sources
            scheduler (Scheduler, optional): Defaults to ThreadScheduler
            context_factory (callable, optional): Builds the context from the server id
        """
        if registry is None:
            # Imported here to avoid circular imports
            from collectors import default_sources
            registry = SourceRegistry(default_sources())

        self.owner = owner
        self.resolver = resolver or ServerIdResolver()
        self.endpoint = endpoint or HttpEndpoint.lite()
        self.interval = interval
        self.registry = registry
        self.scheduler = scheduler or ThreadScheduler(name='metrics-lite')
        self.context_factory = context_factory or (lambda server_id: HostContext(server_id, owner))

        self._lock = threading.Lock()
        self._running = False
        self._task: Optional[TrackedTask] = None
        self._sampler: Optional[Sampler] = None
        self._cancel_event = threading.Event()
        self._listeners: List[Callable[[SampleEvent], None]] = []

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def add_listener(self, listener: Callable[[SampleEvent], None]) -> None:
        with self._lock:
            self._listeners.append(listener)
            if self._sampler is not None:
                self._sampler.add_listener(listener)

    def start(self) -> None:
        """
        Start submitting samples.

        Raises:
            AlreadyRunningError: If already running
        """
        with self._lock:
            if self._running:
                raise AlreadyRunningError(f"{self} is already running!")

            logger.info("Starting %s...", self)
            server_id = resolve_server_id(self.resolver)
            sampler = Sampler(self.context_factory(server_id), self.registry)
            for listener in self._listeners:
                sampler.add_listener(listener)

            self._cancel_event = threading.Event()
            task = TrackedTask('metrics-lite-submitter', lambda: self.submit(sampler))
            task.schedule(self.scheduler, self.interval)

            self._sampler = sampler
            self._task = task
            self._running = True

    def stop(self) -> None:
        """
        Stop submitting samples.

        Raises:
            NotRunningError: If not running
        """
        with self._lock:
            if not self._running:
                raise NotRunningError(f"{self} is not running!")

            logger.info("Stopping %s...", self)
            # Ends a submission stuck retrying so cancel() does not wait on it.
            self._cancel_event.set()
            try:
                if self._task is not None:
                    self._task.cancel()
            finally:
                self._task = None
                self._sampler = None
                self._running = False

    def submit(self, sampler: Sampler) -> Optional[Sample]:
        """
        Take one sample and post it to the endpoint.

        Args:
            sampler (Sampler): Sampler of the current run

        Returns:
            Sample: The submitted sample, or None if nothing was submitted
        """
        logger.debug("Collecting metric for %s...", self)

        def log_error(key: MetricKey, error: MetricsError) -> None:
            logger.error("Could not create data for %s: %s", key, str(error))

        sample = sampler.take_sample(log_error, persist=False)
        if not sample.payload:
            return None

        payload = json.dumps(sample.serialize(), ensure_ascii=False).encode('utf-8')
        logger.debug("Submitting sample %s for %s", sample.id, self)
        try:
            self.endpoint.consume(payload, self._cancel_event)
        except Exception as e:
            logger.error("Could not submit sample %s for %s: %s", sample.id, self, str(e))
            return None
        return sample

    def __str__(self) -> str:
        return f"Metrics Lite for {self.owner}"
