from .system_collector import system_sources

__all__ = ['system_sources']
