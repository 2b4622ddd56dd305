"""
Endpoints consuming serialized reports.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

import requests
from retrying import retry

from . import config
from .exceptions import ConfigurationError, ConnectionTimeout, DeliveryError

logger = logging.getLogger(__name__)

CONTENT_TYPE = 'application/json; charset=utf-8'

FULL_EXPECTED_STATUS = (204,)
LITE_EXPECTED_STATUS = (200, 204)


def format_user_agent(client_name: str = config.CLIENT_NAME,
                      revision: int = config.PROTOCOL_REVISION) -> str:
    return f"{client_name}/{revision}"


def retry_if_connection_timeout(exception: Exception) -> bool:
    """Return True if we should retry (only when connecting timed out)."""
    return isinstance(exception, ConnectionTimeout)


class Endpoint(ABC):
    """A sink accepting serialized reports."""

    @abstractmethod
    def consume(self, payload: bytes, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Deliver a serialized report.

        Args:
            payload (bytes): UTF-8 encoded JSON document
            cancel_event (threading.Event, optional): Set when the delivery
                should give up instead of retrying

        Raises:
            DeliveryError: If the payload could not be delivered
        """


class HttpEndpoint(Endpoint):
    """Endpoint posting reports to a remote collector over HTTPS."""

    def __init__(
        self,
        url: Optional[str] = None,
        expected_status: Iterable[int] = FULL_EXPECTED_STATUS,
        user_agent: Optional[str] = None,
        request_timeout: Optional[float] = None,
        allow_insecure: bool = False
    ):
        """
        Initialize the endpoint.

        Args:
            url (str, optional): Collector URL. Defaults to config.SERVER_URL.
            expected_status (iterable): Status codes meaning success
            user_agent (str, optional): User-Agent header. Defaults to Metrics/<revision>.
            request_timeout (float, optional): Connect and read timeout in seconds.
                Defaults to config.REQUEST_TIMEOUT.
            allow_insecure (bool): Accept plain http URLs

        Raises:
            ConfigurationError: If the URL is not a secure http URL
        """
        self.url = url or config.SERVER_URL
        self.expected_status: Tuple[int, ...] = tuple(expected_status)
        self.user_agent = user_agent or format_user_agent()
        self.request_timeout = request_timeout or config.REQUEST_TIMEOUT

        scheme = urlparse(self.url).scheme
        allowed = ('https', 'http') if allow_insecure else ('https',)
        if scheme not in allowed:
            raise ConfigurationError(f"Endpoint URL must use {' or '.join(allowed)}: {self.url}")
        if not self.expected_status:
            raise ConfigurationError("At least one expected status code is required")

    @classmethod
    def lite(cls, url: Optional[str] = None, **kwargs) -> 'HttpEndpoint':
        kwargs.setdefault('user_agent', format_user_agent(config.LITE_CLIENT_NAME))
        return cls(url, expected_status=LITE_EXPECTED_STATUS, **kwargs)

    def consume(self, payload: bytes, cancel_event: Optional[threading.Event] = None) -> None:
        headers = {
            'User-Agent': self.user_agent,
            'Content-Type': CONTENT_TYPE,
        }

        def _cancelled(attempt_number, delay_since_first_attempt_ms):
            return cancel_event is not None and cancel_event.is_set()

        # No attempt limit and no wait: only cancellation ends the loop.
        @retry(
            retry_on_exception=retry_if_connection_timeout,
            stop_func=_cancelled,
            wait_fixed=0
        )
        def _send_request():
            try:
                return requests.post(
                    self.url,
                    data=payload,
                    headers=headers,
                    timeout=self.request_timeout
                )
            except requests.exceptions.ConnectTimeout as e:
                logger.debug("Connection to %s timed out, retrying", self.url)
                raise ConnectionTimeout(f"Connection to {self.url} timed out: {e}") from e

        try:
            response = _send_request()
        except ConnectionTimeout:
            raise
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Could not connect to {self.url}: {e}") from e

        try:
            if response.status_code not in self.expected_status:
                expected = ' or '.join(str(code) for code in self.expected_status)
                raise DeliveryError(
                    f"Request returned {response.status_code}, {expected} was expected.",
                    status_code=response.status_code
                )
            logger.debug("Delivered %s bytes to %s", len(payload), self.url)
        finally:
            response.close()

    def __repr__(self) -> str:
        return f"HttpEndpoint({self.url})"
