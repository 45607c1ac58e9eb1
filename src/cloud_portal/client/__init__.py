"""Client-side helpers for portal consumers."""

from .optimistic import OptimisticCache, OptimisticEntry

__all__ = ['OptimisticCache', 'OptimisticEntry']
