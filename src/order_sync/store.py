"""In-memory cache entry for the order list view."""

import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Sequence

from order_sync.schemas import CacheSnapshot, Order, SortKey, Statistics

logger = logging.getLogger(__name__)


class RecordStore:
    """Thread-safe cache of fetched orders plus first-page statistics and staleness bookkeeping.

    Readers may call any accessor at any time; mutation happens only through
    ``replace``, ``append`` and ``mark_stale``.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._records: list[Order] = []
        self._statistics = Statistics()
        self._owner: str | None = None
        self._sort_key: SortKey | None = None
        self._last_synced_at: datetime | None = None
        self._stale = False
        self._stale_generation = 0
        self._page_cursor = 0
        self._exhausted = False

    @property
    def records(self) -> tuple[Order, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def statistics(self) -> Statistics:
        with self._lock:
            return self._statistics

    @property
    def owner(self) -> str | None:
        with self._lock:
            return self._owner

    @property
    def sort_key(self) -> SortKey | None:
        with self._lock:
            return self._sort_key

    @property
    def last_synced_at(self) -> datetime | None:
        with self._lock:
            return self._last_synced_at

    @property
    def stale(self) -> bool:
        with self._lock:
            return self._stale

    @property
    def stale_generation(self) -> int:
        with self._lock:
            return self._stale_generation

    @property
    def page_cursor(self) -> int:
        with self._lock:
            return self._page_cursor

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._exhausted

    def replace(
        self,
        records: Sequence[Order],
        *,
        owner: str,
        sort_key: SortKey,
        statistics: Statistics,
        synced_at: datetime,
        page_size: int | None = None,
        generation: int | None = None,
    ) -> None:
        """Swap in a fresh page-0 result.

        ``generation`` is the ``stale_generation`` observed when the fetch was
        issued; if ``mark_stale`` ran since then the entry stays stale.
        """
        with self._lock:
            self._records = list(records)
            self._statistics = statistics
            self._owner = owner
            self._sort_key = sort_key
            self._last_synced_at = synced_at
            self._page_cursor = 1
            self._exhausted = page_size is not None and len(records) < page_size
            if generation is None or generation == self._stale_generation:
                self._stale = False
            else:
                logger.debug("cache marked stale during fetch; keeping stale flag")

    def append(
        self,
        records: Sequence[Order],
        page_size: int,
        *,
        owner: str | None = None,
        sort_key: SortKey | None = None,
        page_cursor: int | None = None,
    ) -> int | None:
        """Add a later page to the tail and return how many records were new.

        ``owner``, ``sort_key`` and ``page_cursor`` describe the cache the page
        was requested against. If any of them no longer matches, the page is
        dropped and ``None`` is returned.
        """
        with self._lock:
            if (
                (owner is not None and owner != self._owner)
                or (sort_key is not None and sort_key != self._sort_key)
                or (page_cursor is not None and page_cursor != self._page_cursor)
            ):
                logger.info(
                    "dropping page %s for %s/%s: cache is now at page %d for %s/%s",
                    page_cursor,
                    owner,
                    sort_key,
                    self._page_cursor,
                    self._owner,
                    self._sort_key,
                )
                return None
            seen = {record.id for record in self._records}
            added = 0
            for record in records:
                if record.id in seen:
                    continue
                seen.add(record.id)
                self._records.append(record)
                added += 1
            if added < len(records):
                logger.debug("skipped %d already cached orders", len(records) - added)
            self._page_cursor += 1
            if len(records) < page_size:
                self._exhausted = True
            return added

    def mark_stale(self) -> None:
        with self._lock:
            self._stale = True
            self._stale_generation += 1

    def is_fresh_enough_to_serve(self, now: datetime, ttl: timedelta) -> bool:
        with self._lock:
            if self._stale or not self._records or self._last_synced_at is None:
                return False
            return now - self._last_synced_at < ttl

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(
                records=list(self._records),
                statistics=self._statistics,
                owner=self._owner,
                sort_key=self._sort_key,
                last_synced_at=self._last_synced_at,
                stale=self._stale,
                page_cursor=self._page_cursor,
                exhausted=self._exhausted,
            )
