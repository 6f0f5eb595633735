# rfq_desk/services/quote_admin_service.py
from __future__ import annotations

import logging
import posixpath
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from rfq_desk.core.errors import QuoteValidationError
from rfq_desk.core.quote_statuses import Party, QuoteStatus
from rfq_desk.schemas.actions import (
    FactoryResponsePayload,
    MessagePayload,
    SampleRequestPayload,
)
from rfq_desk.schemas.quotes import Quote, QuoteFilter
from rfq_desk.schemas.results import AgreedPrice, BulkResult, SignedLink, TimelineRow
from rfq_desk.services.attachment_uploads import AttachmentUploader
from rfq_desk.services.history_reconciler import build_timeline
from rfq_desk.services.line_item_ledger import LineItemLedger
from rfq_desk.services.optimistic_mutator import (
    OptimisticMutator,
    QuoteViewStore,
    describe_failure,
)
from rfq_desk.services.order_handoff import OrderHandoff
from rfq_desk.services.ports import Notifier, QuoteStore, Severity
from rfq_desk.services.quote_ordering import filter_queue, sort_queue
from rfq_desk.services.status_engine import StatusEngine, Transition
from rfq_desk.services.sync_client import SyncClient

logger = logging.getLogger(__name__)

BULK_ACTIONS = ("hide", "unhide", "trash", "restore", "delete")


@dataclass(frozen=True)
class MutationOutcome:
    ok: bool
    quote: Optional[Quote]
    error: Optional[BaseException] = None
    order_id: Optional[str] = None


class QuoteAdminService:
    """
    Admin-facing operations on quotes.

    Each operation computes the next quote with the StatusEngine, shows it
    locally through the OptimisticMutator and writes it to the store.
    Remote failures are reported through the notifier and returned in the
    outcome; local precondition failures raise before anything is sent.

    Every write reads the stored quote under that quote's lock and
    computes the transition from it, so events written elsewhere since the
    last refresh are kept and overlapping writes to one quote run one at
    a time.

    Rollback contract: status transitions roll back on a failed write;
    hide/unhide keep the local change (fire-and-forget).
    """

    def __init__(
        self,
        *,
        store: QuoteStore,
        sync: SyncClient,
        notifier: Notifier,
        handoff: OrderHandoff,
        view: Optional[QuoteViewStore] = None,
        engine: Optional[StatusEngine] = None,
    ):
        self.store = store
        self.sync = sync
        self.notifier = notifier
        self.handoff = handoff
        self.view = view or QuoteViewStore()
        self.engine = engine or StatusEngine()
        self.mutator = OptimisticMutator(self.view, store, notifier)
        self.uploads = AttachmentUploader(sync.blobs) if sync.blobs is not None else None

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    async def refresh(self, quote_filter: Optional[QuoteFilter] = None) -> Optional[List[Quote]]:
        """
        Reload the list into the view.

        None means a newer refresh superseded this one; it returns once
        that newer fetch has settled. A failed fetch is reported and
        re-raised, leaving the view as it was.
        """
        try:
            quotes = await self.sync.fetch_list(quote_filter)
        except Exception as exc:
            self.notifier.notify(f"Failed to fetch quotes: {describe_failure(exc)}", Severity.ERROR)
            raise

        if quotes is None:
            await self.sync.list_gate.settled()
            return None
        self.view.replace_all(quotes)
        return sort_queue(quotes)

    def queue(
        self,
        status: Optional[QuoteStatus] = None,
        include_hidden: bool = False,
    ) -> List[Quote]:
        quote_filter = QuoteFilter(status=status, include_hidden=include_hidden)
        return sort_queue(filter_queue(self.view.all(), quote_filter))

    async def open_quote(self, quote_id: str) -> Quote:
        """
        Authoritative detail fetch. When a newer detail fetch supersedes
        this one, the caller is answered from the view (or a plain read)
        once the newer fetch has settled.
        """
        try:
            quote = await self.sync.fetch_quote(quote_id)
        except Exception as exc:
            self.notifier.notify(f"Failed to load quote: {describe_failure(exc)}", Severity.ERROR)
            raise

        if quote is None:
            await self.sync.detail_gate.settled()
            return await self.load(quote_id)
        self.view.upsert(quote)
        return quote

    async def load(self, quote_id: str) -> Quote:
        quote = self.view.get(quote_id)
        if quote is not None:
            return quote
        quote = await self.sync.read_quote(quote_id)
        self.view.upsert(quote)
        return quote

    async def timeline(self, quote_id: str, line_item_id: Optional[int] = None) -> List[TimelineRow]:
        quote = await self.load(quote_id)
        if line_item_id is not None and line_item_id not in quote.line_item_ids:
            raise QuoteValidationError(f"Unknown line item {line_item_id}.")
        return build_timeline(quote, line_item_id)

    async def agreed_prices(self, quote_id: str) -> List[AgreedPrice]:
        quote = await self.load(quote_id)
        ledger = LineItemLedger(quote)
        return [ledger.resolve_agreed_price(item.id) for item in quote.line_items]

    async def attachment_links(self, quote_id: str) -> List[SignedLink]:
        quote = await self.load(quote_id)
        links = await self.sync.fetch_signed_links(quote.id, quote.files)
        if links is None:
            return []
        failed = [link for link in links if link.error]
        if failed:
            self.notifier.notify(f"{len(failed)} attachment link(s) could not be created.", Severity.WARNING)
        return links

    # ─────────────────────────────────────────────
    # CHAT ATTACHMENT UPLOADS
    # ─────────────────────────────────────────────

    def _uploader(self) -> AttachmentUploader:
        if self.uploads is None:
            raise RuntimeError("QuoteAdminService has no blob store configured.")
        return self.uploads

    async def upload_attachment(
        self,
        quote_id: str,
        line_item_id: int,
        filename: str,
        data: bytes,
    ) -> Optional[str]:
        """
        Store a chat attachment for one line item. Returns the stored path
        to reference from a message, or None when the upload was cancelled
        or replaced by a newer upload for the same line item.
        """
        uploader = self._uploader()
        quote = await self.load(quote_id)
        if line_item_id not in quote.line_item_ids:
            raise QuoteValidationError(f"Unknown line item {line_item_id}.")
        if not data:
            raise QuoteValidationError("Attachment is empty.")

        name = posixpath.basename((filename or "").replace("\\", "/")) or "attachment"
        path = f"quotes/{quote_id}/chat/{line_item_id}/{uuid.uuid4().hex}-{name}"

        stored = await uploader.upload(quote_id, line_item_id, path, data)
        if stored is None:
            self.notifier.notify("Upload cancelled.", Severity.INFO)
        return stored

    def cancel_upload(self, quote_id: str, line_item_id: int) -> bool:
        return self._uploader().cancel(quote_id, line_item_id)

    # ─────────────────────────────────────────────
    # SINGLE-QUOTE MUTATIONS
    # ─────────────────────────────────────────────

    async def _mutate(
        self,
        quote_id: str,
        compute: Callable[[Quote], Transition],
        *,
        success_message: str,
        failure_message: str,
        rollback: bool = True,
    ) -> MutationOutcome:
        async with self.mutator.locks.hold(quote_id):
            try:
                quote = await self.sync.read_quote(quote_id)
            except Exception as exc:
                self.notifier.notify(f"{failure_message}: {describe_failure(exc)}", Severity.ERROR)
                return MutationOutcome(ok=False, quote=self.view.get(quote_id), error=exc)
            self.view.upsert(quote)

            # local preconditions raise here, before any write
            transition = compute(quote)

            written = await self.mutator.apply(
                transition.quote,
                transition.store_patch(),
                rollback=rollback,
                failure_message=failure_message,
            )
            current = self.view.get(quote_id)

        if not written.ok:
            return MutationOutcome(ok=False, quote=current, error=written.error)

        self.notifier.notify(success_message, Severity.SUCCESS)

        order_id = None
        for effect in transition.side_effects:
            logger.info("quote accepted", extra={"quote_id": effect.quote_id})
            order_id = await self.handoff.on_accepted(current or transition.quote)
        return MutationOutcome(ok=True, quote=current, order_id=order_id)

    async def respond(self, quote_id: str, payload: FactoryResponsePayload) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.submit_response(q, payload),
            success_message="Quote response sent successfully!",
            failure_message="Failed to send response",
        )

    async def decline(self, quote_id: str, reason: str) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.decline(q, reason),
            success_message="Quote declined.",
            failure_message="Failed to decline quote",
        )

    async def trash(self, quote_id: str) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            self.engine.trash,
            success_message="Quote moved to trash.",
            failure_message="Failed to move quote to trash",
        )

    async def restore(self, quote_id: str) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            self.engine.restore,
            success_message="Quote restored.",
            failure_message="Failed to restore quote",
        )

    async def toggle_approval(
        self,
        quote_id: str,
        line_item_id: int,
        party: Party = Party.ADMIN,
        *,
        confirmed: bool = False,
    ) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.toggle_approval(q, line_item_id, party, confirmed=confirmed),
            success_message="Approval updated.",
            failure_message="Failed to update approval",
        )

    async def accept_all(self, quote_id: str) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            self.engine.accept_all,
            success_message="Quote accepted.",
            failure_message="Failed to accept quote",
        )

    async def post_message(self, quote_id: str, payload: MessagePayload) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.post_message(
                q,
                sender=payload.sender,
                message=payload.message,
                related_line_item_id=payload.related_line_item_id,
                attachments=payload.attachments,
            ),
            success_message="Message sent.",
            failure_message="Failed to send message",
        )

    async def request_sample(self, quote_id: str, payload: SampleRequestPayload) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.request_sample(q, payload),
            success_message="Sample request recorded.",
            failure_message="Failed to record sample request",
        )

    async def set_hidden(self, quote_id: str, hidden: bool) -> MutationOutcome:
        return await self._mutate(
            quote_id,
            lambda q: self.engine.set_hidden(q, hidden),
            success_message="Quote hidden." if hidden else "Quote visible again.",
            failure_message="Failed to update quote visibility",
            rollback=False,
        )

    async def delete_permanently(self, quote_id: str) -> MutationOutcome:
        """Irreversible. Only quotes already in the trash can be deleted."""
        async with self.mutator.locks.hold(quote_id):
            removed = await self.mutator.remove(quote_id, failure_message="Failed to delete quote")
        if not removed.ok:
            return MutationOutcome(ok=False, quote=self.view.get(quote_id), error=removed.error)
        self.sync.link_cache.invalidate(quote_id)
        self.notifier.notify("Quote deleted permanently.", Severity.SUCCESS)
        return MutationOutcome(ok=True, quote=None)

    # ─────────────────────────────────────────────
    # BULK
    # ─────────────────────────────────────────────

    async def bulk(self, action: str, quote_ids: Sequence[str]) -> BulkResult:
        if action not in BULK_ACTIONS:
            raise QuoteValidationError(f"Unknown bulk action {action!r}.")

        call = self._bulk_call(action)
        result = await self.mutator.bulk(action, quote_ids, call)
        if action == "delete":
            for qid in result.succeeded_ids:
                self.sync.link_cache.invalidate(qid)
        return result

    def _bulk_call(self, action: str) -> Callable[[str], Awaitable[Optional[Quote]]]:
        if action == "delete":

            async def _delete(quote_id: str) -> Optional[Quote]:
                await self.store.delete(quote_id)
                return None

            return _delete

        compute: Callable[[Quote], Transition] = {
            "hide": lambda q: self.engine.set_hidden(q, True),
            "unhide": lambda q: self.engine.set_hidden(q, False),
            "trash": self.engine.trash,
            "restore": self.engine.restore,
        }[action]

        async def _transition(quote_id: str) -> Optional[Quote]:
            quote = await self.sync.read_quote(quote_id)
            transition = compute(quote)
            return await self.store.patch(quote_id, transition.store_patch())

        return _transition

