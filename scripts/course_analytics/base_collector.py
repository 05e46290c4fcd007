"""Abstract base class for all source collectors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from scripts.course_analytics.config import FetchConfig
from scripts.course_analytics.errors import FetchError, MissingCredentialError
from scripts.course_analytics.fetcher import PagedFetcher, RawRecord
from scripts.course_analytics.models import RecordSet
from scripts.course_analytics.normalizer import Column, normalize_all
from scripts.course_analytics.secrets import CredentialProvider

logger = logging.getLogger("collection.collector")


class BaseCollector(ABC):
    """Each collector overrides fetch_raw() and declares its output columns.

    Calling the collector returns the normalized RecordSet for its source.
    """

    SOURCE_NAME: str = ""
    DISPLAY_NAME: str = ""
    SERVICE: str = ""
    COLUMNS: tuple[Column, ...] = ()
    REQUIRED: tuple[str, ...] = ()

    def __init__(
        self,
        credentials: CredentialProvider,
        fetcher: PagedFetcher,
        config: Optional[FetchConfig] = None,
        lookback_days: int = 30,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.credentials = credentials
        self.fetcher = fetcher
        self.config = config or FetchConfig()
        self.lookback_days = lookback_days
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    @abstractmethod
    def fetch_raw(self) -> list[RawRecord]:
        """Pull raw records from the remote API."""

    def __call__(self) -> RecordSet:
        raw = self.fetch_raw()
        records = normalize_all(raw, self.COLUMNS, self.REQUIRED, source=self.SOURCE_NAME)
        logger.info(
            "Normalized %d of %d raw records", len(records), len(raw),
            extra={"source": self.SOURCE_NAME, "records": len(records)},
        )
        return RecordSet(
            name=self.SOURCE_NAME,
            records=records,
            columns=tuple(c.name for c in self.COLUMNS) + ("collected_at",),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _credential(self, key: str, service: Optional[str] = None) -> str:
        service = service or self.SERVICE
        value = self.credentials.get(service, key)
        if not value:
            raise MissingCredentialError(service, key)
        return value

    def _base_url(self) -> str:
        return self._credential("base_url").rstrip("/")

    def _window(self) -> tuple[date, date]:
        end = self._today()
        return end - timedelta(days=self.lookback_days), end

    def _paginate(self, url: str, **kwargs: Any) -> list[RawRecord]:
        """Fetch all pages of ``url`` with the configured page size and cap.

        Partial results are kept when at least one page arrived before a
        FetchError. An AuthError, or a FetchError on the very first page,
        fails the collector.
        """
        kwargs.setdefault("page_size", self.config.page_size)
        kwargs.setdefault("max_pages", self.config.max_pages)
        result = self.fetcher.fetch_all(url, **kwargs)
        if result.error is not None:
            if not isinstance(result.error, FetchError) or not result.pages:
                raise result.error
            logger.warning(
                "Keeping %d page(s) of partial data from %s: %s",
                len(result.pages), url, result.error,
                extra={"source": self.SOURCE_NAME},
            )
        return result.records

    def _paginate_item(self, url: str, **kwargs: Any) -> list[RawRecord]:
        """Like _paginate, for one child listing inside a larger walk.

        A FetchError skips only this item (an empty repository, a meeting
        without a report); auth errors still fail the collector.
        """
        try:
            return self._paginate(url, **kwargs)
        except FetchError as exc:
            logger.warning("Skipping %s: %s", url, exc, extra={"source": self.SOURCE_NAME})
            return []

    def _detail(self, url: str, **kwargs: Any) -> Optional[Any]:
        """Single detail request; exhausted retries skip the item, auth errors propagate."""
        try:
            return self.fetcher.request_json(url, **kwargs)
        except FetchError as exc:
            logger.warning("Skipping detail %s: %s", url, exc, extra={"source": self.SOURCE_NAME})
            return None
