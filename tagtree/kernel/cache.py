"""
TagTree Kernel — Child Cache

Per-node cache of materialized children with an explicit state machine:

  STALE  -> COMPUTING -> FRESH       (read with no cache, or forced)
  FRESH  -> STALE                    (mark_stale after a mutation)
  COMPUTING + read  -> CacheCycleError

A read during COMPUTING can only come from a configuration cycle, so it
fails loudly instead of recursing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from tagtree.kernel.types import CacheCycleError, CacheState

logger = logging.getLogger(__name__)


class CachedChildren:
    """Mixin for nodes whose children are derived data."""

    def _init_cache(self) -> None:
        self.cache_state = CacheState.STALE
        self.cache_version = 0
        self._cached_children: list = []

    @property
    def is_stale(self) -> bool:
        return self.cache_state is CacheState.STALE

    def mark_stale(self) -> None:
        if self.cache_state is CacheState.FRESH:
            self.cache_state = CacheState.STALE

    def cached_children(self, force_update: bool, compute: Callable[[], list]) -> list:
        if self.cache_state is CacheState.COMPUTING:
            raise CacheCycleError(f"Children of {self!r} requested while being computed")
        if force_update or self.cache_state is CacheState.STALE:
            self.cache_state = CacheState.COMPUTING
            try:
                children = compute()
            except Exception:
                self.cache_state = CacheState.STALE
                raise
            self._cached_children = children
            self.cache_state = CacheState.FRESH
            self.cache_version += 1
            logger.debug("cache: recomputed %r (%d children)", self, len(children))
        return self._cached_children

    def current_children(self) -> list:
        """Cached children without recomputing, possibly stale."""
        return self._cached_children

    def drop_cache(self) -> list:
        """Forget cached children and return them."""
        old_children = self._cached_children
        self._cached_children = []
        if self.cache_state is CacheState.FRESH:
            self.cache_state = CacheState.STALE
        return old_children
