import logging
import platform
from typing import List, Optional

import psutil

from telemetry.source import MetricKey, MetricSource, array_source, object_source, scalar_source

logger = logging.getLogger(__name__)

NAMESPACE = 'system'


class PropertySource(MetricSource):
    """
    Source reading a host property, falling back to a local lookup.

    The host may override any OS property through its context, e.g. when the
    collector runs inside a container but should report the host's values.
    """

    def __init__(self, name: str, property_key: str, fallback):
        super().__init__(MetricKey.of(NAMESPACE, name))
        self.property_key = property_key
        self.fallback = fallback

    def produce(self, context) -> Optional[str]:
        value = context.get_property(self.property_key)
        if value is not None:
            return value
        return self.fallback() or None


def _load_average(context):
    if not hasattr(psutil, 'getloadavg'):
        return None

    one, five, fifteen = psutil.getloadavg()
    return {'1m': round(one, 2), '5m': round(five, 2), '15m': round(fifteen, 2)}


def _disks(context):
    disks = []
    for partition in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except OSError as e:
            logger.debug("Skipping %s: %s", partition.mountpoint, str(e))
            continue

        disks.append({
            'fstype': partition.fstype,
            'total': usage.total,
            'used_percent': usage.percent,
        })
    return disks or None


def system_sources() -> List[MetricSource]:
    """
    System-related sources, such as memory usage and OS version.

    Returns:
        list: The sources in registration order
    """
    return [
        PropertySource('os_arch', 'os.arch', platform.machine),
        PropertySource('os_name', 'os.name', platform.system),
        PropertySource('os_version', 'os.version', platform.release),

        scalar_source(NAMESPACE, 'available_processors', lambda context: psutil.cpu_count(logical=True)),
        scalar_source(NAMESPACE, 'free_memory', lambda context: psutil.virtual_memory().available),
        scalar_source(NAMESPACE, 'total_memory', lambda context: psutil.virtual_memory().total),
        scalar_source(NAMESPACE, 'boot_time', lambda context: int(psutil.boot_time())),

        object_source(NAMESPACE, 'load_average', _load_average),
        array_source(NAMESPACE, 'disks', _disks),
    ]
