"""Paginated HTTP fetching with retry and exponential backoff."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import requests
from requests.auth import AuthBase

from scripts.course_analytics.errors import AuthError, FetchError

logger = logging.getLogger("collection.fetcher")

RawRecord = dict[str, Any]


class BearerAuth(AuthBase):
    """Attach ``Authorization: Bearer <token>`` to every request."""

    def __init__(self, token: str) -> None:
        self.token = token

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        r.headers["Authorization"] = f"Bearer {self.token}"
        return r


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is 0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


@dataclass
class Page:
    number: int
    records: list[RawRecord]
    has_more: bool

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class FetchResult:
    """Pages retrieved for one endpoint, plus the error that stopped it, if any."""

    url: str
    pages: list[Page] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def records(self) -> list[RawRecord]:
        return [record for page in self.pages for record in page.records]

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def extract_records(payload: Any, records_key: Optional[str] = None) -> list[RawRecord]:
    """Pull the list of records out of one decoded page payload."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        if records_key is not None:
            inner = payload.get(records_key)
            if inner is None:
                return []
            return extract_records(inner)
        return [payload] if payload else []
    return []


def _is_rate_limited(resp: requests.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in (resp.text or "").lower()


AuthLike = Union[AuthBase, tuple, None]


class PagedFetcher:
    """Issue authenticated GETs, walk page numbers or offsets, retry failures.

    Termination is heuristic: a page shorter than the requested size is taken
    as the last one. APIs that silently cap page size below the requested
    value will stop early; ``max_pages`` bounds the other direction.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session or requests.Session()
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep

    def request_json(
        self,
        url: str,
        auth: AuthLike = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """GET ``url`` and decode JSON, retrying per the retry policy.

        Raises AuthError on 401 and on 403 responses that are not rate
        limits; raises FetchError once every attempt has failed.
        """
        last_exc: Optional[Exception] = None
        attempts = self.retry.max_attempts

        for attempt in range(attempts):
            try:
                resp = self._session.get(
                    url, params=params, auth=auth, headers=headers, timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_exc = exc
            else:
                status = resp.status_code
                if status == 401 or (status == 403 and not _is_rate_limited(resp)):
                    raise AuthError(f"GET {url} rejected credentials (HTTP {status})")
                if 200 <= status < 300:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        last_exc = exc
                else:
                    last_exc = requests.HTTPError(f"HTTP {status} for {url}", response=resp)

            if attempt < attempts - 1:
                delay = self.retry.delay_for(attempt)
                logger.warning(
                    "Request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, attempts, delay, last_exc,
                    extra={"attempt": attempt + 1},
                )
                self._sleep(delay)

        logger.error("Request failed after %d attempts: %s", attempts, last_exc)
        raise FetchError(url, attempts, last_exc)

    def fetch_all(
        self,
        endpoint: str,
        auth: AuthLike = None,
        initial_params: Optional[dict[str, Any]] = None,
        page_param: str = "page",
        size_param: str = "per_page",
        page_size: int = 100,
        max_pages: int = 50,
        page_origin: int = 1,
        paging: str = "page",
        records_key: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> FetchResult:
        """Fetch every page of ``endpoint``.

        ``paging="page"`` advances ``page_param`` by one from ``page_origin``;
        ``paging="offset"`` advances it by ``page_size`` (start/limit APIs).
        AuthError and FetchError are returned on the result rather than
        raised, alongside whatever pages were fetched before the failure.
        """
        if paging not in ("page", "offset"):
            raise ValueError(f"Unknown paging style {paging!r}")

        result = FetchResult(url=endpoint)
        position = page_origin

        for number in range(1, max_pages + 1):
            params = dict(initial_params or {})
            params[page_param] = position
            params[size_param] = page_size

            try:
                payload = self.request_json(endpoint, auth=auth, params=params, headers=headers)
            except (AuthError, FetchError) as exc:
                if isinstance(exc, FetchError):
                    exc.pages = list(result.pages)
                result.error = exc
                logger.warning(
                    "Stopped paging %s after %d page(s): %s",
                    endpoint, len(result.pages), exc,
                    extra={"page": number},
                )
                return result

            records = extract_records(payload, records_key)
            if not records:
                break

            full_page = len(records) >= page_size
            result.pages.append(
                Page(number=number, records=records, has_more=full_page and number < max_pages)
            )
            logger.debug(
                "Fetched page %d of %s (%d records)", number, endpoint, len(records),
                extra={"page": number, "records": len(records)},
            )
            if not full_page:
                break
            if number == max_pages:
                logger.warning("Reached max_pages=%d for %s", max_pages, endpoint)
                break

            position += page_size if paging == "offset" else 1

        return result
