"""Deduplication of health records across retries and re-fetches.

The same record can reach the sink more than once: a fetch repeated from an
unchanged watermark, a retry of a previously failed write, or the same
batch arriving over both transports.  Record ids are stable across retries,
so ``(data_type, id)`` is the dedup key.

Dedup key: "<data_type>:<record_id>"
"""

from __future__ import annotations

import logging
from collections import OrderedDict

from src.healthsync.models import DataType, HealthRecord

logger = logging.getLogger("healthsync.dedup")


def record_key(data_type: DataType, record_id: str) -> str:
    """Generate a dedup key for a record.

    Args:
        data_type: Record family.
        record_id: The record's stable id.

    Returns:
        Colon-separated dedup key string.
    """
    return f"{data_type.value}:{record_id}"


def key_for(record: HealthRecord) -> str:
    return record_key(record.DATA_TYPE, record.id)


class InMemoryDedupCache:
    """In-process record of keys already written to the sink.

    Bounded: once ``max_entries`` keys are held, the oldest are evicted.
    Not a replacement for sink-side dedup via the ``sync_identifier``
    metadata; it keeps one process from writing the same record twice.

    Usage::

        cache = InMemoryDedupCache()
        if cache.is_seen(key):
            logger.debug("Skipping duplicate: %s", key)
        else:
            # write the record
            cache.mark_seen(key)
    """

    def __init__(self, max_entries: int = 100_000) -> None:
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._max_entries = max_entries

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self._max_entries:
            evicted, _ = self._seen.popitem(last=False)
            logger.debug("Dedup cache full, evicted %s", evicted)

    def clear(self) -> None:
        """Reset the cache."""
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)
