from typing import List, Optional, Sequence

from telemetry.source import MetricKey, MetricSource, ValueKind, scalar_source

NAMESPACE = 'host'


class AttachedOwnersSource(MetricSource):
    """Names of the components currently attached to the metrics handle."""

    kind = ValueKind.ARRAY

    def __init__(self):
        super().__init__(MetricKey.of(NAMESPACE, 'attached'))

    def produce(self, context) -> Optional[Sequence[str]]:
        owners = list(context.attached())
        if not owners:
            return None
        return sorted(owners)


def host_sources() -> List[MetricSource]:
    """
    Host application sources, such as its name and version.

    Returns:
        list: The sources in registration order
    """
    return [
        scalar_source(NAMESPACE, 'server_name', lambda context: context.server_name),
        scalar_source(NAMESPACE, 'app_name', lambda context: context.app_name),
        scalar_source(NAMESPACE, 'app_version', lambda context: context.app_version),
        AttachedOwnersSource(),
    ]
