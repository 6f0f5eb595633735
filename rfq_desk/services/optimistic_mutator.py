# rfq_desk/services/optimistic_mutator.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from rfq_desk.core.errors import PermissionDeniedError, QuoteValidationError
from rfq_desk.schemas.quotes import Quote
from rfq_desk.schemas.results import BulkResult
from rfq_desk.services.ports import Notifier, QuoteStore, Severity

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Quote]], None]


@dataclass(frozen=True)
class WriteResult:
    ok: bool
    error: Optional[BaseException] = None


class QuoteViewStore:
    """
    The local list/detail view: the only shared mutable state.
    Replaced wholesale or patched by id; listeners see every change.
    """

    def __init__(self) -> None:
        self._quotes: Dict[str, Quote] = {}
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)

    def snapshot(self) -> Dict[str, Quote]:
        return dict(self._quotes)

    def get(self, quote_id: str) -> Optional[Quote]:
        return self._quotes.get(quote_id)

    def all(self) -> List[Quote]:
        return list(self._quotes.values())

    def replace_all(self, quotes: Sequence[Quote]) -> None:
        self._quotes = {q.id: q for q in quotes}
        self._emit()

    def upsert(self, quote: Quote) -> None:
        self._quotes[quote.id] = quote
        self._emit()

    def remove(self, quote_id: str) -> Optional[Quote]:
        removed = self._quotes.pop(quote_id, None)
        if removed is not None:
            self._emit()
        return removed


class QuoteLocks:
    """
    One asyncio.Lock per quote id. A lock lives only while someone holds
    or waits for it, so the registry does not grow with the quote count.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def held(self, quote_id: str) -> bool:
        lock = self._locks.get(quote_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, quote_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(quote_id)
        if lock is None:
            lock = self._locks[quote_id] = asyncio.Lock()
        self._users[quote_id] = self._users.get(quote_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[quote_id] -= 1
            if not self._users[quote_id]:
                del self._users[quote_id]
                del self._locks[quote_id]


def describe_failure(exc: BaseException) -> str:
    if isinstance(exc, PermissionDeniedError):
        return "You do not have permission to change this quote."
    return str(exc) or exc.__class__.__name__


class OptimisticMutator:
    """
    Shows a change locally first, then writes it to the store.

    rollback=True (the default) puts the previous local quote back when the
    write fails. rollback=False keeps the local change and only reports the
    failure (fire-and-forget). A rollback never overwrites a local change
    made by someone else while the write was in flight.

    Callers that read, compute and write one quote hold `locks.hold(id)`
    around the whole sequence; `bulk` takes the same lock per item.
    """

    def __init__(
        self,
        view: QuoteViewStore,
        store: QuoteStore,
        notifier: Notifier,
        locks: Optional[QuoteLocks] = None,
    ):
        self.view = view
        self.store = store
        self.notifier = notifier
        self.locks = locks or QuoteLocks()

    async def apply(
        self,
        updated: Quote,
        patch: Dict[str, Any],
        *,
        rollback: bool = True,
        failure_message: str = "Failed to update quote",
    ) -> WriteResult:
        previous = self.view.get(updated.id)
        self.view.upsert(updated)

        try:
            confirmed = await self.store.patch(updated.id, patch)
        except Exception as exc:
            logger.error(
                "optimistic write failed",
                extra={"quote_id": updated.id, "rollback": rollback, "error": str(exc)},
            )
            if rollback and self.view.get(updated.id) is updated:
                if previous is not None:
                    self.view.upsert(previous)
                else:
                    self.view.remove(updated.id)
            self.notifier.notify(f"{failure_message}: {describe_failure(exc)}", Severity.ERROR)
            return WriteResult(ok=False, error=exc)

        if confirmed is not None:
            self.view.upsert(confirmed)
        return WriteResult(ok=True)

    async def remove(self, quote_id: str, *, failure_message: str = "Failed to delete quote") -> WriteResult:
        previous = self.view.remove(quote_id)
        try:
            await self.store.delete(quote_id)
        except Exception as exc:
            logger.error("optimistic delete failed", extra={"quote_id": quote_id, "error": str(exc)})
            if previous is not None and self.view.get(quote_id) is None:
                self.view.upsert(previous)
            self.notifier.notify(f"{failure_message}: {describe_failure(exc)}", Severity.ERROR)
            return WriteResult(ok=False, error=exc)
        return WriteResult(ok=True)

    async def bulk(
        self,
        action: str,
        quote_ids: Sequence[str],
        call: Callable[[str], Awaitable[Optional[Quote]]],
    ) -> BulkResult:
        """
        One remote call per id, all concurrently, joined on all of them.
        Each call runs under that quote's lock. Only ids whose call
        succeeded are touched in the local view: a returned Quote is
        upserted, None means the quote is gone.
        """
        ids = list(dict.fromkeys(quote_ids))
        if not ids:
            raise QuoteValidationError(f"Select at least one quote to {action}.")

        async def _one(quote_id: str) -> Optional[Quote]:
            async with self.locks.hold(quote_id):
                outcome = await call(quote_id)
                if outcome is None:
                    self.view.remove(quote_id)
                else:
                    self.view.upsert(outcome)
                return outcome

        outcomes = await asyncio.gather(*(_one(qid) for qid in ids), return_exceptions=True)

        result = BulkResult(action=action)
        for qid, outcome in zip(ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "bulk item failed",
                    extra={"action": action, "quote_id": qid, "error": str(outcome)},
                )
                result.failed += 1
                result.failed_ids.append(qid)
                continue

            result.succeeded += 1
            result.succeeded_ids.append(qid)

        if result.failed and result.succeeded:
            self.notifier.notify(
                f"{action.capitalize()}: {result.succeeded} succeeded, {result.failed} failed.",
                Severity.WARNING,
            )
        elif result.failed:
            self.notifier.notify(f"{action.capitalize()} failed for all {result.failed} quotes.", Severity.ERROR)
        else:
            self.notifier.notify(f"{action.capitalize()}: {result.succeeded} quotes updated.", Severity.SUCCESS)
        return result
