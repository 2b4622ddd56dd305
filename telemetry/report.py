"""
Reports and the reporter delivering them to endpoints.
"""
import json
import logging
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from . import config
from .endpoint import Endpoint
from .exceptions import ConfigurationError, ShutdownTimeoutError

logger = logging.getLogger(__name__)


class Report:
    """A non-empty batch of samples assembled for delivery."""

    __slots__ = ('_id', '_samples')

    def __init__(self, report_id: uuid.UUID, samples: Sequence):
        if report_id is None:
            raise ValueError("report_id is required")
        if not samples:
            raise ValueError("samples is empty!")
        self._id = report_id
        self._samples = tuple(samples)

    @property
    def id(self) -> uuid.UUID:
        return self._id

    @property
    def samples(self) -> Tuple:
        return self._samples

    def serialize(self) -> Dict[str, Any]:
        return {
            'id': str(self._id),
            'samples': [sample.serialize() for sample in self._samples],
        }

    def to_json(self) -> bytes:
        """
        Serialize the report into the UTF-8 JSON document sent to endpoints.

        Returns:
            bytes: The encoded document
        """
        return json.dumps(self.serialize(), ensure_ascii=False).encode('utf-8')

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Report):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __len__(self) -> int:
        return len(self._samples)

    def __repr__(self) -> str:
        return f"Report(id={self._id}, samples={len(self._samples)})"


class Delivery(NamedTuple):
    """Outcome of delivering one report to every endpoint."""
    report_id: uuid.UUID
    delivered: Tuple[Endpoint, ...]
    failed: Tuple[Tuple[Endpoint, BaseException], ...]

    @property
    def ok(self) -> bool:
        return not self.failed


class Reporter:
    """
    Delivers reports to endpoints on a dedicated worker.

    Each endpoint is attempted independently; one endpoint failing never
    prevents delivery to the others and never fails the report task.
    """

    def __init__(self, sampler, endpoints: Sequence[Endpoint], executor: Optional[Executor] = None):
        """
        Initialize the reporter.

        Args:
            sampler (Sampler): Sampler drained on every reporting tick
            endpoints (list): Endpoints every report is delivered to
            executor (Executor, optional): Worker running deliveries.
                Defaults to a single-thread pool.

        Raises:
            ConfigurationError: If no endpoints are given
        """
        if not endpoints:
            raise ConfigurationError("endpoints is empty!")

        self.sampler = sampler
        self.endpoints: Tuple[Endpoint, ...] = tuple(endpoints)
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix='metrics-reporter')
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._pending: Set[Future] = set()
        self._shutdown = False

    def report(self, report: Report) -> 'Future[Delivery]':
        """
        Submit a report for delivery.

        Args:
            report (Report): The report to deliver

        Returns:
            Future: Resolves to the Delivery outcome

        Raises:
            RuntimeError: If the reporter was shut down
        """
        if report is None:
            raise ValueError("report is required")

        payload = report.to_json()
        future = self._executor.submit(self._deliver, report.id, payload)

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    @property
    def is_shutdown(self) -> bool:
        with self._lock:
            return self._shutdown

    def run_tick(self) -> Optional['Future[Delivery]']:
        """
        Reporting tick: drain the sampler and submit the report, if any.

        Samples stay buffered when the reporter no longer accepts reports.
        """
        if self.is_shutdown:
            logger.debug("Reporter is shut down, leaving samples queued")
            return None

        report = self.sampler.create_report()
        if report is None:
            logger.debug("No samples queued, skipping report")
            return None

        try:
            return self.report(report)
        except RuntimeError as e:
            logger.error("Could not submit report %s: %s", report.id, str(e))
            self.sampler.requeue(report.samples)
            return None

    def shutdown(self, timeout: float = config.SHUTDOWN_TIMEOUT) -> bool:
        """
        Stop accepting reports and wait for in-flight deliveries.

        Args:
            timeout (float): Seconds to wait for pending deliveries

        Returns:
            bool: True if every pending delivery finished in time
        """
        with self._lock:
            self._shutdown = True
            pending = list(self._pending)

        self._executor.shutdown(wait=False)
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            error = ShutdownTimeoutError(
                f"{len(not_done)} deliveries did not finish within {timeout} seconds")
            logger.error("Could not shutdown metrics reporter: %s", str(error))
            self._cancel_event.set()
            for future in not_done:
                future.cancel()
            return False
        return True

    def _deliver(self, report_id: uuid.UUID, payload: bytes) -> Delivery:
        logger.debug("Submitting report %s to %s endpoints", report_id, len(self.endpoints))

        delivered: List[Endpoint] = []
        failed: List[Tuple[Endpoint, BaseException]] = []
        for endpoint in self.endpoints:
            try:
                endpoint.consume(payload, self._cancel_event)
                delivered.append(endpoint)
            except Exception as e:
                logger.error("Could not report %s to %r: %s", report_id, endpoint, str(e))
                failed.append((endpoint, e))

        return Delivery(report_id, tuple(delivered), tuple(failed))

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
