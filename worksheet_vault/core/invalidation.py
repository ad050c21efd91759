"""
Post-write cache invalidation for worksheet read views.
"""

from typing import List, Optional

from util.logging import logger

from .cache import CacheKey, ReadCache, phase_key, progress_key, worksheet_key
from .schema import RecordKey


class InvalidationCoordinator:
    """Marks the single-record, phase and full-progress views stale after a write."""

    def __init__(self, cache: ReadCache):
        self.cache = cache

    def keys_for(self, owner_id: str, group_key: int, record_key: str) -> List[CacheKey]:
        return [
            worksheet_key(owner_id, group_key, record_key),
            phase_key(owner_id, group_key),
            progress_key(owner_id),
        ]

    def invalidate(self, owner_id: str, group_key: int, record_key: str) -> List[CacheKey]:
        """Invalidate exactly the three views derived from one record."""
        keys = self.keys_for(owner_id, group_key, record_key)
        for key in keys:
            self.cache.invalidate(key)

        logger.log_invalidation(keys)
        return keys

    def invalidate_group(self, owner_id: str, group_key: int) -> List[CacheKey]:
        """Invalidate every cached view under a phase (used by phase resets)."""
        keys = self.cache.invalidate_prefix(("worksheet", owner_id, group_key))
        for key in (phase_key(owner_id, group_key), progress_key(owner_id)):
            self.cache.invalidate(key)
            keys.append(key)

        logger.log_invalidation(keys, reason="reset_phase")
        return keys

    def invalidate_owner(self, owner_id: str) -> List[CacheKey]:
        """Invalidate every cached view for a user (used by full resets)."""
        keys = []
        for prefix in (("worksheet", owner_id), ("phase", owner_id), ("progress", owner_id)):
            keys.extend(self.cache.invalidate_prefix(prefix))

        logger.log_invalidation(keys, reason="reset_all")
        return keys

    def on_write(self, key: RecordKey) -> None:
        """Post-write hook entry point."""
        self.invalidate(key.owner_id, key.group_key, key.record_key)

    def on_reset(self, owner_id: str, group_key: Optional[int] = None) -> None:
        """Post-reset hook entry point."""
        if group_key is None:
            self.invalidate_owner(owner_id)
        else:
            self.invalidate_group(owner_id, group_key)

    def attach(self, gateway) -> "InvalidationCoordinator":
        """Register this coordinator as post-write and post-reset hooks on a PersistenceGateway."""
        gateway.add_post_write_hook(self.on_write)
        gateway.add_post_reset_hook(self.on_reset)
        return self
