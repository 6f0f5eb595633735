# rfq_desk/services/sync_client.py
"""
Resilient reads against the remote quote store and the attachment store.

Every read is raced against a hard timeout, retried with linear backoff,
and tied to a SupersedingGate so a newer request of the same kind cancels
and discards an older one still in flight.
"""
from __future__ import annotations

import asyncio
import logging
import posixpath
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from rfq_desk.core.config import Settings, get_settings
from rfq_desk.core.errors import (
    PermissionDeniedError,
    QuoteNotFoundError,
    QuoteValidationError,
    RemoteTimeoutError,
    RequestCancelled,
    RetryExhaustedError,
)
from rfq_desk.schemas.quotes import Quote, QuoteFilter
from rfq_desk.schemas.results import SignedLink
from rfq_desk.services.ports import BlobStore, QuoteStore, SortSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

# retrying these cannot change the outcome
NON_RETRYABLE = (
    PermissionDeniedError,
    QuoteNotFoundError,
    QuoteValidationError,
    FileNotFoundError,
)


# ─────────────────────────────────────────────
# RETRY
# ─────────────────────────────────────────────


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    sleep: Sleep = asyncio.sleep

    def delay_after(self, attempt: int) -> float:
        return attempt * self.backoff_seconds

    async def run(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        *,
        timeout_seconds: float,
    ) -> T:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=timeout_seconds)
            except asyncio.TimeoutError:
                last_error = RemoteTimeoutError(operation, timeout_seconds)
            except (RequestCancelled, *NON_RETRYABLE):
                raise
            except Exception as exc:
                last_error = exc

            logger.warning(
                "remote call failed",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": self.max_attempts,
                    "error": str(last_error),
                },
            )
            if attempt < self.max_attempts:
                await self.sleep(self.delay_after(attempt))

        logger.error(
            "remote call gave up",
            extra={"operation": operation, "attempts": self.max_attempts},
        )
        raise RetryExhaustedError(operation, self.max_attempts, last_error)


# ─────────────────────────────────────────────
# SUPERSEDING CANCELLATION
# ─────────────────────────────────────────────


class SupersedingGate:
    """
    At most one authoritative request per kind.

    Each run() bumps the generation and cancels the task started by the
    previous run(). A result is handed back only if its generation is still
    the current one; otherwise RequestCancelled is raised.
    """

    def __init__(self, name: str):
        self.name = name
        self._generation = 0
        self._task: Optional[asyncio.Future] = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def cancel(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def settled(self) -> None:
        """Wait until no request of this kind is in flight. Never raises."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def run(self, call: Callable[[], Awaitable[T]]) -> T:
        self.cancel()
        token = self._generation
        task = asyncio.ensure_future(call())
        self._task = task

        try:
            result = await task
        except asyncio.CancelledError:
            if not self.is_current(token):
                logger.debug("request superseded", extra={"kind": self.name, "generation": token})
                raise RequestCancelled(self.name)
            raise
        finally:
            if self._task is task:
                self._task = None

        if not self.is_current(token):
            logger.debug("stale result dropped", extra={"kind": self.name, "generation": token})
            raise RequestCancelled(self.name)
        return result


# ─────────────────────────────────────────────
# SIGNED LINK CACHE
# ─────────────────────────────────────────────


class SignedLinkCache:
    """
    Signed links per quote id, kept for less time than the links live.
    """

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, List[SignedLink]]] = {}

    def get(self, quote_id: str, paths: Sequence[str]) -> Optional[List[SignedLink]]:
        entry = self._entries.get(quote_id)
        if entry is None:
            return None

        fetched_at, links = entry
        if self.clock() - fetched_at >= self.ttl_seconds:
            self._entries.pop(quote_id, None)
            return None

        # an empty result cached while the quote had no files yet
        if not links and paths:
            return None
        if sorted(link.path for link in links) != sorted(paths):
            return None

        return list(links)

    def put(self, quote_id: str, links: List[SignedLink]) -> None:
        if any(link.error for link in links):
            return
        self._entries[quote_id] = (self.clock(), list(links))

    def invalidate(self, quote_id: str) -> None:
        self._entries.pop(quote_id, None)

    def clear(self) -> None:
        self._entries.clear()


def display_name(path: str) -> str:
    return posixpath.basename(path) or path


# ─────────────────────────────────────────────
# CLIENT
# ─────────────────────────────────────────────


class SyncClient:
    def __init__(
        self,
        store: QuoteStore,
        blobs: Optional[BlobStore] = None,
        *,
        settings: Optional[Settings] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.blobs = blobs

        self.retry = RetryPolicy(
            max_attempts=self.settings.retry_max_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
            sleep=sleep,
        )
        self.link_cache = SignedLinkCache(self.settings.signed_link_cache_ttl_seconds, clock=clock)

        self.list_gate = SupersedingGate("quote-list")
        self.detail_gate = SupersedingGate("quote-detail")
        self.link_gate = SupersedingGate("signed-links")

    async def fetch_list(
        self,
        quote_filter: Optional[QuoteFilter] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[List[Quote]]:
        """
        Returns None when a newer list fetch superseded this one.
        Raises RetryExhaustedError after the last failed attempt.
        """
        quote_filter = quote_filter or QuoteFilter(include_hidden=True)
        sort = sort or SortSpec()

        async def _attempts() -> List[Quote]:
            return await self.retry.run(
                "list quotes",
                lambda: self.store.list(quote_filter, sort),
                timeout_seconds=self.settings.list_timeout_seconds,
            )

        try:
            return await self.list_gate.run(_attempts)
        except RequestCancelled:
            return None

    async def fetch_quote(self, quote_id: str) -> Optional[Quote]:
        async def _attempts() -> Quote:
            return await self.retry.run(
                "get quote",
                lambda: self.store.get(quote_id),
                timeout_seconds=self.settings.detail_timeout_seconds,
            )

        try:
            return await self.detail_gate.run(_attempts)
        except RequestCancelled:
            return None

    async def read_quote(self, quote_id: str) -> Quote:
        """Single read with retries, outside the superseding detail gate."""
        return await self.retry.run(
            "get quote",
            lambda: self.store.get(quote_id),
            timeout_seconds=self.settings.detail_timeout_seconds,
        )

    async def fetch_signed_links(
        self, quote_id: str, paths: Sequence[str]
    ) -> Optional[List[SignedLink]]:
        """
        Signed links for a quote's attachments, cached per quote.
        Files whose link cannot be produced come back with `error` set.
        Returns None when superseded by a newer link request.
        """
        if self.blobs is None:
            raise RuntimeError("SyncClient has no blob store configured.")

        paths = list(paths)
        cached = self.link_cache.get(quote_id, paths)
        if cached is not None:
            # a hit is still the newest link request
            self.link_gate.cancel()
            return cached

        try:
            links = await self.link_gate.run(lambda: self._resolve_links(paths))
        except RequestCancelled:
            return None

        self.link_cache.put(quote_id, links)
        return links

    async def _resolve_links(self, paths: List[str]) -> List[SignedLink]:
        return list(await asyncio.gather(*(self._resolve_link(p) for p in paths)))

    async def _resolve_link(self, path: str) -> SignedLink:
        try:
            url = await self.retry.run(
                "sign attachment link",
                lambda: self.blobs.create_signed_url(path, self.settings.signed_link_ttl_seconds),
                timeout_seconds=self.settings.link_timeout_seconds,
            )
        except (RetryExhaustedError, *NON_RETRYABLE) as exc:
            return SignedLink(name=display_name(path), path=path, error=str(exc))
        return SignedLink(name=display_name(path), path=path, url=url)

    def cancel_all(self) -> None:
        self.list_gate.cancel()
        self.detail_gate.cancel()
        self.link_gate.cancel()
