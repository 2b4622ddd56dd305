"""
Resolution of the persisted server identifier.

The identifier lives in a small properties file (``server_id=<uuid>``). It is
generated on first run and reused afterwards.
"""
import logging
import os
import threading
import uuid
from datetime import datetime
from typing import Dict, Optional

import pytz

from . import config

logger = logging.getLogger(__name__)

SERVER_ID_KEY = 'server_id'


def read_properties(path: str) -> Dict[str, str]:
    """
    Read a key=value properties file.

    Args:
        path (str): Path to the file

    Returns:
        dict: Parsed properties, blank and comment lines skipped
    """
    properties = {}
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.strip()
            if not line or line[0] in ('#', '!'):
                continue

            key, sep, value = line.partition('=')
            if not sep:
                key, sep, value = line.partition(':')
            properties[key.strip()] = value.strip()
    return properties


def write_properties(path: str, properties: Dict[str, str]) -> None:
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(f"#{datetime.now(pytz.UTC).isoformat()}\n")
        for key, value in properties.items():
            f.write(f"{key}={value}\n")
    os.replace(tmp_path, path)


class ServerIdResolver:
    """Resolves and caches the identifier of this server."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize the resolver.

        Args:
            path (str, optional): Path to the properties file. Defaults to config.SERVER_ID_FILE.
        """
        self.path = path or config.SERVER_ID_FILE
        self._server_id: Optional[uuid.UUID] = None
        self._lock = threading.Lock()

    def get_id(self) -> uuid.UUID:
        """
        Get the server identifier, reading or creating the file on first use.

        Returns:
            UUID: The server identifier

        Raises:
            OSError: If the file could not be read or written
        """
        with self._lock:
            if self._server_id is None:
                self._server_id = self._resolve()
            return self._server_id

    def _resolve(self) -> uuid.UUID:
        properties: Dict[str, str] = {}
        if os.path.exists(self.path):
            properties = read_properties(self.path)

            value = properties.get(SERVER_ID_KEY)
            if value:
                try:
                    return uuid.UUID(value)
                except ValueError:
                    logger.warning("Invalid server id %r in %s, generating a new one", value, self.path)

        server_id = uuid.uuid4()
        properties[SERVER_ID_KEY] = str(server_id)
        write_properties(self.path, properties)
        logger.info("Generated new server id %s in %s", server_id, self.path)
        return server_id


def resolve_server_id(resolver: ServerIdResolver) -> uuid.UUID:
    """
    Resolve the server id, falling back to a random one on I/O errors.

    Args:
        resolver (ServerIdResolver): The resolver to use

    Returns:
        UUID: The persisted or a temporary server id
    """
    try:
        return resolver.get_id()
    except OSError as e:
        server_id = uuid.uuid4()
        logger.error("Could not resolve server id from %s: %s", resolver.path, str(e))
        logger.warning("Using temporary server id: %s", server_id)
        return server_id
