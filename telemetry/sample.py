"""
Samples and the sampler buffering them between reports.
"""
import logging
import threading
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytz

from .exceptions import MetricsError, SerializationError, SourceProductionError
from .report import Report
from .source import MetricKey, SourceRegistry, to_json_value

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[MetricKey, MetricsError], None]


class Sample:
    """One snapshot of every metric value that could be produced."""

    __slots__ = ('_id', '_server_id', '_taken_at', '_payload')

    def __init__(self, sample_id: uuid.UUID, server_id: uuid.UUID, taken_at: datetime,
                 payload: Dict[str, Dict[str, Any]]):
        if sample_id is None or server_id is None or taken_at is None or payload is None:
            raise ValueError("sample_id, server_id, taken_at and payload are required")
        self._id = sample_id
        self._server_id = server_id
        self._taken_at = taken_at
        self._payload = payload

    @property
    def id(self) -> uuid.UUID:
        return self._id

    @property
    def server_id(self) -> uuid.UUID:
        return self._server_id

    @property
    def taken_at(self) -> datetime:
        return self._taken_at

    @property
    def payload(self) -> Dict[str, Dict[str, Any]]:
        return self._payload

    def serialize(self) -> Dict[str, Any]:
        """
        Serialize the sample into its wire representation.

        Returns:
            dict: The sample with id, server_id, taken_at and payload keys
        """
        return {
            'id': str(self._id),
            'server_id': str(self._server_id),
            'taken_at': self._taken_at.isoformat(),
            'payload': self._payload,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sample):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return f"Sample(id={self._id}, taken_at={self._taken_at.isoformat()}, payload={self._payload})"


class SampleEvent:
    """
    Raw values collected during one sampling pass, before serialization.

    Listeners may inspect, replace, remove or add entries. Entries added for
    keys without a registered source are serialized generically.
    """

    def __init__(self, context, data: 'OrderedDict[MetricKey, Any]'):
        self.context = context
        self.data = data


class Sampler:
    """
    Takes samples from the registered sources and buffers them.

    The buffer is appended to by the sampling tick and drained by the
    reporting tick; both go through the same lock.
    """

    def __init__(self, context, registry: SourceRegistry):
        """
        Initialize the sampler.

        Args:
            context (HostContext): Context passed to every source
            registry (SourceRegistry): Sources to sample
        """
        self.context = context
        self.registry = registry
        self._lock = threading.Lock()
        self._samples: List[Sample] = []
        self._listeners: List[Callable[[SampleEvent], None]] = []

    def add_listener(self, listener: Callable[[SampleEvent], None]) -> None:
        """
        Register a listener called with every sampling pass before serialization.

        Args:
            listener (callable): Function taking a SampleEvent
        """
        self._listeners.append(listener)

    @property
    def samples(self) -> Tuple[Sample, ...]:
        with self._lock:
            return tuple(self._samples)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._samples)

    def offer(self, sample: Sample) -> None:
        if not isinstance(sample, Sample):
            raise TypeError(f"sample must be a Sample, got {type(sample).__name__}")
        with self._lock:
            self._samples.append(sample)

    def requeue(self, samples: Sequence[Sample]) -> None:
        """
        Put drained samples back in front of the buffer.

        Args:
            samples (list): Samples returned by flush() that were not reported
        """
        with self._lock:
            self._samples[:0] = samples

    def take_sample(self, error_handler: ErrorHandler, persist: bool) -> Sample:
        """
        Poll every registered source and assemble a sample.

        A failing source never aborts the pass; its error is passed to the
        error handler and its key is left out of the payload.

        Args:
            error_handler (callable): Called with (key, error) for every failure
            persist (bool): Whether to append the sample to the buffer

        Returns:
            Sample: The new sample
        """
        if error_handler is None:
            raise ValueError("error_handler is required")

        data = self._collect(error_handler)
        self._notify(data)
        payload = self._serialize(data, error_handler)

        sample = Sample(uuid.uuid4(), self.context.server_id, datetime.now(pytz.UTC), payload)
        if persist:
            self.offer(sample)
        return sample

    def flush(self) -> List[Sample]:
        """
        Atomically empty the buffer.

        Returns:
            list: The buffered samples in capture order
        """
        with self._lock:
            drained, self._samples = self._samples, []
        return drained

    def create_report(self) -> Optional[Report]:
        """
        Drain the buffer into a report.

        Returns:
            Report: The report, or None when nothing was buffered
        """
        samples = self.flush()
        if not samples:
            return None
        return Report(uuid.uuid4(), samples)

    def run_tick(self) -> None:
        """Sampling tick: take a persisted sample, logging every source error."""
        def log_error(key: MetricKey, error: MetricsError) -> None:
            logger.error("Could not take sample for %s: %s", key, str(error))

        self.take_sample(log_error, persist=True)

    def _collect(self, error_handler: ErrorHandler) -> 'OrderedDict[MetricKey, Any]':
        data: 'OrderedDict[MetricKey, Any]' = OrderedDict()
        for key, source in self.registry.items():
            try:
                value = source.produce(self.context)
            except Exception as e:
                error = SourceProductionError(key, e)
                error.__cause__ = e
                self._handle_error(error_handler, key, error)
                continue

            if value is not None:
                data[key] = value
        return data

    def _notify(self, data: 'OrderedDict[MetricKey, Any]') -> None:
        if not self._listeners:
            return

        event = SampleEvent(self.context, data)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error("Sample listener %r failed: %s", listener, str(e))

    def _serialize(self, data: 'OrderedDict[MetricKey, Any]',
                   error_handler: ErrorHandler) -> Dict[str, Dict[str, Any]]:
        payload: Dict[str, Dict[str, Any]] = {}
        for key, value in data.items():
            try:
                if not isinstance(key, MetricKey):
                    key = MetricKey.parse(key)
                source = self.registry.get(key)
                serialized = source.serialize(value) if source is not None else to_json_value(value)
            except SerializationError as e:
                self._handle_error(error_handler, key, e)
                continue
            except Exception as e:
                error = SerializationError(f"Could not serialize {key}: {e}")
                error.__cause__ = e
                self._handle_error(error_handler, key, error)
                continue

            if serialized is None:
                continue

            category = payload.get(key.namespace)
            if category is None:
                category = payload[key.namespace] = {}
            assert isinstance(category, dict)
            category[key.name] = serialized
        return payload

    @staticmethod
    def _handle_error(error_handler: ErrorHandler, key: MetricKey, error: MetricsError) -> None:
        try:
            error_handler(key, error)
        except Exception as e:
            logger.error("Error handler failed for %s: %s", key, str(e))
