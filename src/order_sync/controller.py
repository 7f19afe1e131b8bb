"""Sync controller: decides when to hit the remote store and merges results into the cache."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Callable, Sequence

from order_sync.aggregator import compute_statistics
from order_sync.errors import FetchError
from order_sync.schemas import Order, SortKey
from order_sync.store import RecordStore

logger = logging.getLogger(__name__)

# fetch_page(identity, offset, limit, sort_key) -> orders sorted by sort_key; raises FetchError
FetchPage = Callable[[str, int, int, SortKey], Sequence[Order]]

DEFAULT_PAGE_SIZE = 20
DEFAULT_TTL = timedelta(minutes=5)


class SyncOutcome(str, Enum):
    FETCHED = "fetched"
    APPENDED = "appended"
    SERVED_FROM_CACHE = "served_from_cache"
    COALESCED = "coalesced"
    EXHAUSTED = "exhausted"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    IDENTITY_UNRESOLVED = "identity_unresolved"


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome not in (SyncOutcome.FAILED, SyncOutcome.IDENTITY_UNRESOLVED)

    @property
    def fetched(self) -> bool:
        return self.outcome in (SyncOutcome.FETCHED, SyncOutcome.APPENDED)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncController:
    """Owns the fetch-vs-serve decisions for one ``RecordStore``.

    At most one remote fetch runs at a time. A full load or a page load
    requested while another fetch is outstanding is dropped with
    ``SyncOutcome.COALESCED`` rather than queued.
    """

    def __init__(
        self,
        store: RecordStore,
        fetch_page: FetchPage,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utc_now,
        sort_key: SortKey = SortKey.DATE,
    ) -> None:
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.store = store
        self.page_size = page_size
        self.ttl = ttl
        self._fetch_page = fetch_page
        self._clock = clock
        self._sort_key = SortKey(sort_key)
        self._identity: str | None = None
        self._in_flight = Lock()
        self.last_error: str | None = None

    @property
    def sort_key(self) -> SortKey:
        """Key of the most recent successful full fetch."""
        return self._sort_key

    @property
    def is_fetching(self) -> bool:
        return self._in_flight.locked()

    def load_initial(self, identity: str | None, sort_key: SortKey | str) -> SyncResult:
        sort_key = SortKey(sort_key)
        if (
            identity
            and self.store.owner == identity
            and self.store.sort_key == sort_key
            and self.store.is_fresh_enough_to_serve(self._clock(), self.ttl)
        ):
            logger.debug("serving %d cached orders for %s", len(self.store.records), identity)
            return SyncResult(SyncOutcome.SERVED_FROM_CACHE)
        return self._full_fetch(identity, sort_key, reason="load")

    def refresh(self, identity: str | None, sort_key: SortKey | str) -> SyncResult:
        return self._full_fetch(identity, SortKey(sort_key), reason="refresh")

    def load_more(self, identity: str | None, sort_key: SortKey | str) -> SyncResult:
        sort_key = SortKey(sort_key)
        if not identity:
            return self._identity_unresolved()
        if not self._in_flight.acquire(blocking=False):
            logger.debug("fetch in flight; dropping load more")
            return SyncResult(SyncOutcome.COALESCED)
        try:
            # Cache state is read only while holding the guard so no page-0
            # fetch can replace it between the check and the append.
            if (
                self.store.page_cursor == 0
                or self.store.owner != identity
                or self.store.sort_key != sort_key
            ):
                # Nothing to extend for this owner/key yet; start from page 0.
                return self._fetch_first_page(identity, sort_key, reason="load more")
            if self.store.exhausted:
                return SyncResult(SyncOutcome.EXHAUSTED)
            page = self.store.page_cursor
            offset = page * self.page_size
            try:
                records = list(self._fetch_page(identity, offset, self.page_size, sort_key))
            except FetchError as exc:
                return self._failed(f"load more page {page}", exc)
            added = self.store.append(
                records,
                self.page_size,
                owner=identity,
                sort_key=sort_key,
                page_cursor=page,
            )
            if added is None:
                return SyncResult(SyncOutcome.COALESCED)
            self.last_error = None
            logger.info(
                "page %d fetched for %s: %d orders (%d new), exhausted=%s",
                page,
                identity,
                len(records),
                added,
                self.store.exhausted,
            )
            return SyncResult(SyncOutcome.APPENDED)
        finally:
            self._in_flight.release()

    def on_sort_key_changed(self, new_key: SortKey | str, identity: str | None = None) -> SyncResult:
        new_key = SortKey(new_key)
        if new_key == self._sort_key:
            return SyncResult(SyncOutcome.UNCHANGED)
        return self._full_fetch(identity or self._identity, new_key, reason="sort change")

    def notify_external_mutation(self) -> None:
        """Invalidate the cache; the next load, resume or sort change refetches."""
        self.store.mark_stale()
        logger.info("order cache marked stale")

    def on_visit_resume(self, identity: str | None, sort_key: SortKey | str) -> SyncResult:
        if not self.store.stale:
            return SyncResult(SyncOutcome.UNCHANGED)
        return self._full_fetch(identity, SortKey(sort_key), reason="resume")

    def _full_fetch(self, identity: str | None, sort_key: SortKey, reason: str) -> SyncResult:
        if not identity:
            return self._identity_unresolved()
        if not self._in_flight.acquire(blocking=False):
            logger.debug("fetch in flight; coalescing %s", reason)
            return SyncResult(SyncOutcome.COALESCED)
        try:
            return self._fetch_first_page(identity, sort_key, reason)
        finally:
            self._in_flight.release()

    def _fetch_first_page(self, identity: str, sort_key: SortKey, reason: str) -> SyncResult:
        """Fetch page 0 and replace the cache. Caller holds the in-flight guard."""
        self._identity = identity
        generation = self.store.stale_generation
        try:
            records = list(self._fetch_page(identity, 0, self.page_size, sort_key))
        except FetchError as exc:
            return self._failed(reason, exc)
        now = self._clock()
        self.store.replace(
            records,
            owner=identity,
            sort_key=sort_key,
            statistics=compute_statistics(records[: self.page_size], now),
            synced_at=now,
            page_size=self.page_size,
            generation=generation,
        )
        # Committed only on success so a failed sort change can be retried.
        self._sort_key = sort_key
        self.last_error = None
        logger.info(
            "%s: fetched %d orders for %s sorted by %s",
            reason,
            len(records),
            identity,
            sort_key.value,
        )
        return SyncResult(SyncOutcome.FETCHED)

    def _failed(self, what: str, exc: FetchError) -> SyncResult:
        self.last_error = str(exc) or exc.__class__.__name__
        logger.warning("%s failed, keeping cached orders: %s", what, self.last_error)
        return SyncResult(SyncOutcome.FAILED, error=self.last_error)

    @staticmethod
    def _identity_unresolved() -> SyncResult:
        logger.warning("no caller identity; fetch not attempted")
        return SyncResult(SyncOutcome.IDENTITY_UNRESOLVED, error="identity unresolved")
