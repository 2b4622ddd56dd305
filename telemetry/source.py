"""
Metric sources and the registry collecting them.

A metric source produces at most one value per sampling pass. Sources are
keyed by a namespaced key; the namespace becomes the payload category the
value is reported under.
"""
import dataclasses
import datetime
import enum
import logging
import math
import re
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional

from .exceptions import DuplicateKeyError, SerializationError

logger = logging.getLogger(__name__)

_KEY_PART = re.compile(r'^[a-z0-9._-]+$')


class MetricKey(NamedTuple):
    """Unique key of a metric source."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.name}"

    @classmethod
    def of(cls, namespace: str, name: str) -> 'MetricKey':
        """
        Create a validated key.

        Args:
            namespace (str): Category the value is reported under
            name (str): Entry name within the category

        Returns:
            MetricKey: The key

        Raises:
            ValueError: If either part is empty or contains invalid characters
        """
        for part in (namespace, name):
            if not isinstance(part, str) or not _KEY_PART.match(part):
                raise ValueError(f"Invalid key part: {part!r}")
        return cls(namespace, name)

    @classmethod
    def parse(cls, value: str) -> 'MetricKey':
        namespace, sep, name = value.partition(':')
        if not sep:
            raise ValueError(f"Key must be in namespace:name format: {value!r}")
        return cls.of(namespace, name)


class ValueKind(enum.Enum):
    """Shape of the value a source produces."""
    SCALAR = 'scalar'
    OBJECT = 'object'
    ARRAY = 'array'


def to_json_value(value: Any) -> Any:
    """
    Convert a Python value into a JSON-compatible structure.

    Args:
        value: The value to convert

    Returns:
        The converted value (None, bool, int, float, str, dict or list)

    Raises:
        SerializationError: If the value has no JSON representation
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(f"Non-finite number: {value!r}")
        return value
    if isinstance(value, enum.Enum):
        return to_json_value(value.value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_json_value(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(f"Object keys must be strings, got {key!r}")
            result[key] = to_json_value(item)
        return result
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_value(item) for item in value]

    raise SerializationError(f"Cannot serialize value of type {type(value).__name__}")


class MetricSource(ABC):
    """
    Abstract base class for all metric sources.

    Subclasses implement produce(). The declared kind decides how the value is
    serialized; a produced value of the wrong shape is a serialization error.
    """

    kind = ValueKind.SCALAR

    def __init__(self, key: MetricKey):
        if not isinstance(key, MetricKey):
            raise TypeError(f"key must be a MetricKey, got {type(key).__name__}")
        self._key = key

    @property
    def key(self) -> MetricKey:
        return self._key

    @property
    def name(self) -> str:
        """
        Get the name of the source.

        Returns:
            str: The key rendered as namespace:name
        """
        return str(self._key)

    @abstractmethod
    def produce(self, context) -> Optional[Any]:
        """
        Produce the current value.

        Args:
            context (HostContext): The host context

        Returns:
            The value, or None when there is nothing to report
        """

    def serialize(self, value: Any) -> Any:
        """
        Convert a produced value to its wire representation.

        Args:
            value: Value returned by produce()

        Returns:
            The JSON-compatible value

        Raises:
            SerializationError: If the value does not match the declared kind
        """
        if self.kind is ValueKind.SCALAR:
            if isinstance(value, enum.Enum):
                value = value.value
            if not isinstance(value, (bool, int, float, str)):
                raise SerializationError(
                    f"{self.name} is a scalar source but produced {type(value).__name__}")
            return to_json_value(value)

        serialized = to_json_value(value)
        if self.kind is ValueKind.OBJECT and not isinstance(serialized, dict):
            raise SerializationError(f"{self.name} is an object source but produced {type(value).__name__}")
        if self.kind is ValueKind.ARRAY and not isinstance(serialized, list):
            raise SerializationError(f"{self.name} is an array source but produced {type(value).__name__}")
        return serialized

    def create_serialized_record(self, context) -> Optional[Any]:
        value = self.produce(context)
        if value is None:
            return None
        return self.serialize(value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetricSource):
            return NotImplemented
        return self._key == other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name}, {self.kind.value})"


class FunctionSource(MetricSource):
    """Metric source backed by a plain callable taking the host context."""

    def __init__(self, key: MetricKey, factory: Callable[[Any], Optional[Any]],
                 kind: ValueKind = ValueKind.SCALAR):
        super().__init__(key)
        if not callable(factory):
            raise TypeError("factory must be callable")
        self.factory = factory
        self.kind = kind

    def produce(self, context) -> Optional[Any]:
        return self.factory(context)


def scalar_source(namespace: str, name: str, factory: Callable[[Any], Optional[Any]]) -> FunctionSource:
    return FunctionSource(MetricKey.of(namespace, name), factory, ValueKind.SCALAR)


def object_source(namespace: str, name: str, factory: Callable[[Any], Optional[Any]]) -> FunctionSource:
    return FunctionSource(MetricKey.of(namespace, name), factory, ValueKind.OBJECT)


def array_source(namespace: str, name: str, factory: Callable[[Any], Optional[Any]]) -> FunctionSource:
    return FunctionSource(MetricKey.of(namespace, name), factory, ValueKind.ARRAY)


class SourceRegistry(Mapping):
    """
    Registry of metric sources indexed by their unique key.

    Iteration follows registration order. Registration is the only mutation.
    """

    def __init__(self, sources: Optional[Iterable[MetricSource]] = None):
        self._sources: Dict[MetricKey, MetricSource] = OrderedDict()
        if sources is not None:
            self.register_all(sources)

    def register(self, source: MetricSource) -> None:
        """
        Register a metric source.

        Args:
            source (MetricSource): The source to register

        Raises:
            DuplicateKeyError: If a source with the same key is already registered
        """
        if not isinstance(source, MetricSource):
            raise TypeError(f"source must be a MetricSource, got {type(source).__name__}")

        key = source.key
        if key in self._sources:
            raise DuplicateKeyError(key)

        self._sources[key] = source
        logger.debug("Registered metric source: %s", key)

    def register_all(self, sources: Iterable[MetricSource]) -> None:
        for source in sources:
            self.register(source)

    def __getitem__(self, key: MetricKey) -> MetricSource:
        return self._sources[key]

    def __iter__(self) -> Iterator[MetricKey]:
        return iter(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def sources(self) -> List[MetricSource]:
        return list(self._sources.values())

    def __repr__(self) -> str:
        return f"SourceRegistry({[str(key) for key in self._sources]})"
