from .host_collector import host_sources

__all__ = ['host_sources']
