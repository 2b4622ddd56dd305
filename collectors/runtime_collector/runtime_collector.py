"""
Python runtime sources.
"""
import platform
import sys
from typing import List

from telemetry.source import MetricSource, scalar_source

NAMESPACE = 'runtime'


def _property_or(key: str, fallback):
    def produce(context):
        value = context.get_property(key)
        return value if value is not None else fallback()
    return produce


def runtime_sources() -> List[MetricSource]:
    return [
        scalar_source(NAMESPACE, 'implementation',
                      _property_or('runtime.implementation', platform.python_implementation)),
        scalar_source(NAMESPACE, 'version',
                      _property_or('runtime.version', platform.python_version)),
        scalar_source(NAMESPACE, 'compiler',
                      _property_or('runtime.compiler', platform.python_compiler)),
        scalar_source(NAMESPACE, 'build',
                      _property_or('runtime.build', lambda: platform.python_build()[0])),
        scalar_source(NAMESPACE, 'is_64bit', lambda context: sys.maxsize > 2 ** 32),
    ]
