"""
Built-in metric sources.
"""
from typing import List

from telemetry.source import MetricSource

from .host_collector import host_sources
from .runtime_collector import runtime_sources
from .system_collector import system_sources


def default_sources() -> List[MetricSource]:
    """
    List every built-in source, in registration order.

    Returns:
        list: Host, runtime and system sources
    """
    return host_sources() + runtime_sources() + system_sources()


__all__ = [
    'default_sources',
    'host_sources',
    'runtime_sources',
    'system_sources',
]
