"""Change detection: which feed records has the user not seen yet?

One pass of ``detect_and_record`` fetches the feed, diffs it against the
known set, records the new ids, and returns them for notification. The ids
are persisted *before* anything is dispatched, so an interrupted dispatch
can only lose a notification, never repeat one.
"""

import logging
from collections.abc import Callable

from ..exceptions import FetchError, StoreError
from ..feed.fetcher import FeedFetcher
from ..feed.models import Record
from ..store.known import KnownStore

logger = logging.getLogger(__name__)


class ChangeDetector:
    """Diffs the feed against the persisted known set.

    The known set is loaded from the store once and then kept in memory;
    call ``invalidate()`` after the store is changed behind this object's
    back.
    """

    def __init__(
        self,
        fetcher: FeedFetcher,
        store: KnownStore,
        notify_on_first_run: bool = False,
        on_store_unavailable: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the detector.

        Args:
            fetcher: Source of current feed records
            store: Durable known set
            notify_on_first_run: Report the first batch as new instead of
                silently recording it as the baseline
            on_store_unavailable: Called when the known set cannot be loaded
        """
        self.fetcher = fetcher
        self.store = store
        self.notify_on_first_run = notify_on_first_run
        self.on_store_unavailable = on_store_unavailable
        self._known: set[str] | None = None

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._known or ())

    def invalidate(self) -> None:
        """Drop the in-memory known set so the next pass reloads it."""
        self._known = None

    def _ensure_loaded(self) -> set[str]:
        if self._known is not None:
            return self._known

        try:
            self._known = self.store.load()
            logger.info("Loaded %d known videos", len(self._known))
        except StoreError as e:
            logger.warning("Known set unavailable, starting empty: %s", e)
            self._known = set()
            if self.on_store_unavailable is not None:
                self.on_store_unavailable()
        return self._known

    async def detect_and_record(self) -> list[Record]:
        """Run one detection pass.

        Returns:
            Records that appeared since the last pass, in feed order
        """
        known = self._ensure_loaded()

        try:
            current = await self.fetcher.fetch_records()
        except FetchError as e:
            logger.warning("Feed check skipped: %s", e)
            return []

        new: list[Record] = []
        seen: set[str] = set()
        for record in current:
            if record.id in known or record.id in seen:
                continue
            seen.add(record.id)
            new.append(record)

        baseline = not known and not self.notify_on_first_run
        self._persist(new)
        known.update(seen)

        if baseline:
            logger.info("Recorded %d videos as baseline", len(new))
            return []

        if new:
            logger.info("Detected %d new videos", len(new))
        return new

    def _persist(self, records: list[Record]) -> None:
        try:
            self.store.save_records(records)
            self.store.mark_checked()
        except StoreError as e:
            logger.error("Could not persist %d known videos: %s", len(records), e)
