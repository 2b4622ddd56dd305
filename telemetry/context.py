"""
Host context handed to metric sources on every sampling pass.
"""
import socket
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence


def _no_owners() -> Sequence[str]:
    return ()


@dataclass
class HostContext:
    """Values supplied by the host application that metric sources read."""
    server_id: uuid.UUID
    app_name: str
    app_version: Optional[str] = None
    server_name: str = field(default_factory=socket.gethostname)
    properties: Dict[str, str] = field(default_factory=dict)
    attached: Callable[[], Sequence[str]] = _no_owners

    def get_property(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Look up a host property.

        Args:
            key (str): Property name
            default (str, optional): Value returned when the property is unset

        Returns:
            str: The property value or the default
        """
        return self.properties.get(key, default)
