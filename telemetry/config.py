"""
Configuration settings for the telemetry collector.
"""
import json
import os
import uuid
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError, MalformedPropertiesError

# Collector configuration
SERVER_URL = os.getenv('METRICS_SERVER_URL', 'https://localhost:8443/')
CLIENT_NAME = 'Metrics'
LITE_CLIENT_NAME = 'MetricsLite'
PROTOCOL_REVISION = 0

# Scheduling configuration (seconds)
SAMPLE_INTERVAL = int(os.getenv('METRICS_SAMPLE_INTERVAL', '60'))
REPORT_INTERVAL = int(os.getenv('METRICS_REPORT_INTERVAL', '1200'))
LITE_INTERVAL = 60
SHUTDOWN_TIMEOUT = float(os.getenv('METRICS_SHUTDOWN_TIMEOUT', '10'))

# HTTP client configuration
REQUEST_TIMEOUT = float(os.getenv('METRICS_REQUEST_TIMEOUT', '30'))  # seconds

# Persisted server identifier
SERVER_ID_FILE = os.getenv('METRICS_SERVER_ID_FILE', 'telemetry-metrics.properties')

# Logging configuration
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def load_json_object(path: str) -> Dict[str, Any]:
    """
    Load a JSON configuration file holding one object.

    Args:
        path (str): Path to the JSON file

    Returns:
        dict: The parsed object

    Raises:
        ConfigurationError: If the file cannot be read
        MalformedPropertiesError: If the file is not a JSON object
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Could not read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise MalformedPropertiesError(f"Invalid config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPropertiesError(f"Config file {path} must contain a JSON object")
    return data


class MetricsProperties:
    """
    User-facing settings of a metrics instance.

    Unset values fall back to the module defaults, except the server id which
    stays unset so that the persisted identifier is used.
    """

    SAMPLE_INTERVAL_KEY = 'sample_interval'
    REPORT_INTERVAL_KEY = 'report_interval'
    SERVER_ID_KEY = 'server_id'

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        """
        Initialize the properties.

        Args:
            values (dict, optional): Raw property values indexed by key
        """
        self._values: Dict[str, Any] = dict(values or {})

    @property
    def sample_interval(self) -> float:
        return self._interval(self.SAMPLE_INTERVAL_KEY, SAMPLE_INTERVAL)

    @property
    def report_interval(self) -> float:
        return self._interval(self.REPORT_INTERVAL_KEY, REPORT_INTERVAL)

    @property
    def server_id(self) -> Optional[uuid.UUID]:
        value = self._values.get(self.SERVER_ID_KEY)
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value

        try:
            return uuid.UUID(str(value))
        except ValueError as e:
            raise MalformedPropertiesError(f"Invalid {self.SERVER_ID_KEY}: {value!r}") from e

    def set(self, key: str, value: Any) -> 'MetricsProperties':
        """
        Set a property, removing it when value is None.

        Args:
            key (str): Property key
            value: Property value

        Returns:
            MetricsProperties: This instance, for chaining
        """
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value
        return self

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def _interval(self, key: str, default: float) -> float:
        value = self._values.get(key)
        if value is None:
            return float(default)

        try:
            interval = float(value)
        except (TypeError, ValueError) as e:
            raise MalformedPropertiesError(f"Invalid {key}: {value!r}") from e

        if interval <= 0:
            raise MalformedPropertiesError(f"{key} must be positive, got {value!r}")
        return interval

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> 'MetricsProperties':
        known = (cls.SAMPLE_INTERVAL_KEY, cls.REPORT_INTERVAL_KEY, cls.SERVER_ID_KEY)
        return cls({key: values[key] for key in known if values.get(key) is not None})

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'MetricsProperties':
        """
        Build properties from METRICS_* environment variables.

        Args:
            environ (dict, optional): Environment to read. Defaults to os.environ.

        Returns:
            MetricsProperties: The parsed properties
        """
        environ = os.environ if environ is None else environ
        return cls.from_dict({
            cls.SAMPLE_INTERVAL_KEY: environ.get('METRICS_SAMPLE_INTERVAL'),
            cls.REPORT_INTERVAL_KEY: environ.get('METRICS_REPORT_INTERVAL'),
            cls.SERVER_ID_KEY: environ.get('METRICS_SERVER_ID'),
        })

    @classmethod
    def from_file(cls, path: str) -> 'MetricsProperties':
        """
        Load properties from a JSON file.

        Args:
            path (str): Path to the JSON file

        Returns:
            MetricsProperties: The parsed properties

        Raises:
            ConfigurationError: If the file cannot be read
            MalformedPropertiesError: If the file is not a JSON object
        """
        return cls.from_dict(load_json_object(path))

    def __repr__(self) -> str:
        return f"MetricsProperties({self._values!r})"
