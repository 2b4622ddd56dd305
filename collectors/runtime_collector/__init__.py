from .runtime_collector import runtime_sources

__all__ = ['runtime_sources']
