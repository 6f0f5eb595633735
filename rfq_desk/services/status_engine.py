# rfq_desk/services/status_engine.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AbstractSet, List, Optional, Set, Tuple

from rfq_desk.core.errors import (
    ApprovalNotConfirmedError,
    InvalidTransitionError,
    QuoteValidationError,
)
from rfq_desk.core.quote_statuses import (
    TERMINAL_STATUSES,
    Party,
    QuoteStatus,
    is_transition_allowed,
)
from rfq_desk.schemas.actions import FactoryResponsePayload, SampleRequestPayload
from rfq_desk.schemas.quotes import (
    EventAction,
    LineItemPrice,
    LineItemResponse,
    NegotiationEvent,
    Quote,
    ResponseSummary,
    SampleRequest,
    Sender,
)
from rfq_desk.services.line_item_ledger import LineItemLedger


def _now():
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# PURE STATUS FUNCTION
# ─────────────────────────────────────────────


def compute_status(
    admin_approved: AbstractSet[int],
    client_approved: AbstractSet[int],
    line_item_ids: AbstractSet[int],
) -> QuoteStatus:
    admin_done = set(admin_approved) >= set(line_item_ids)
    client_done = set(client_approved) >= set(line_item_ids)

    if admin_done and client_done:
        return QuoteStatus.ACCEPTED
    if admin_done:
        return QuoteStatus.ADMIN_ACCEPTED
    if client_done:
        return QuoteStatus.CLIENT_ACCEPTED
    return QuoteStatus.IN_NEGOTIATION


@dataclass(frozen=True)
class Archive:
    """Soft-delete wrapper: what the quote goes back to on restore."""

    status: QuoteStatus
    restore_to: QuoteStatus

    @classmethod
    def wrap(cls, quote: Quote) -> "Archive":
        return cls(status=QuoteStatus.TRASHED, restore_to=quote.status)

    @classmethod
    def of(cls, quote: Quote) -> "Archive":
        if quote.status != QuoteStatus.TRASHED:
            raise InvalidTransitionError("restore", quote.status.value)
        restore_to = quote.negotiation.previous_status or infer_restore_target(quote)
        return cls(status=QuoteStatus.TRASHED, restore_to=restore_to)


def infer_restore_target(quote: Quote) -> QuoteStatus:
    if quote.negotiation.history:
        return QuoteStatus.IN_NEGOTIATION
    if quote.response_summary is not None:
        return QuoteStatus.RESPONDED
    return QuoteStatus.PENDING


# ─────────────────────────────────────────────
# TRANSITION RESULTS
# ─────────────────────────────────────────────


@dataclass(frozen=True)
class QuoteAccepted:
    """Fired once when a quote enters Accepted; drives order creation."""

    quote_id: str
    accepted_at: datetime


@dataclass(frozen=True)
class Transition:
    action: str
    before: Quote
    quote: Quote
    side_effects: Tuple[QuoteAccepted, ...] = field(default_factory=tuple)

    @property
    def status_changed(self) -> bool:
        return self.before.status != self.quote.status

    def store_patch(self) -> dict:
        """
        Fields the remote store needs for this transition, in wire form.
        """
        wire = self.quote.to_wire()
        keys = ("status", "negotiation", "responseSummary", "modifiedAt", "acceptedAt", "isHidden")
        patch = {k: wire.get(k) for k in keys if k in wire}
        # cleared optional fields must reach the store as nulls
        for k in ("responseSummary", "acceptedAt"):
            patch.setdefault(k, None)
        return patch


# ─────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────


class StatusEngine:
    """
    Quote lifecycle transitions.

    Every method takes a quote and returns a Transition holding a new quote;
    the input is never modified and history is only ever appended to.
    """

    RESPOND_FROM: Set[QuoteStatus] = {
        QuoteStatus.PENDING,
        QuoteStatus.RESPONDED,
        QuoteStatus.IN_NEGOTIATION,
        QuoteStatus.ADMIN_ACCEPTED,
        QuoteStatus.CLIENT_ACCEPTED,
    }
    DECLINE_FROM: Set[QuoteStatus] = {
        QuoteStatus.PENDING,
        QuoteStatus.RESPONDED,
        QuoteStatus.IN_NEGOTIATION,
        QuoteStatus.CLIENT_ACCEPTED,
    }
    OPEN_STATUSES: Set[QuoteStatus] = {
        QuoteStatus.PENDING,
        QuoteStatus.RESPONDED,
        QuoteStatus.IN_NEGOTIATION,
        QuoteStatus.ADMIN_ACCEPTED,
        QuoteStatus.CLIENT_ACCEPTED,
    }

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _guard(self, action: str, quote: Quote, allowed: Set[QuoteStatus]) -> None:
        if quote.status not in allowed:
            raise InvalidTransitionError(action, quote.status.value)

    def _check_edge(self, action: str, current: QuoteStatus, nxt: QuoteStatus) -> None:
        if current == nxt:
            return
        if not is_transition_allowed(current, nxt):
            raise InvalidTransitionError(action, current.value)

    def _with_history(self, quote: Quote, *events: NegotiationEvent) -> List[NegotiationEvent]:
        return list(quote.negotiation.history) + list(events)

    def _finish(
        self,
        action: str,
        before: Quote,
        *,
        status: QuoteStatus,
        now: datetime,
        negotiation_updates: Optional[dict] = None,
        quote_updates: Optional[dict] = None,
    ) -> Transition:
        self._check_edge(action, before.status, status)

        neg = before.negotiation
        if negotiation_updates:
            neg = neg.model_copy(update=negotiation_updates)

        updates = {"status": status, "negotiation": neg, "modified_at": now}
        if quote_updates:
            updates.update(quote_updates)

        side_effects: Tuple[QuoteAccepted, ...] = ()
        if status == QuoteStatus.ACCEPTED and before.status != QuoteStatus.ACCEPTED:
            updates["accepted_at"] = now
            summary = updates.get("response_summary", before.response_summary)
            if summary is not None:
                updates["response_summary"] = summary.model_copy(update={"accepted_at": now})
            side_effects = (QuoteAccepted(quote_id=before.id, accepted_at=now),)

        after = before.model_copy(update=updates)
        return Transition(action=action, before=before, quote=after, side_effects=side_effects)

    # ─────────────────────────────────────────────
    # RESPONSES
    # ─────────────────────────────────────────────

    def submit_response(
        self,
        quote: Quote,
        response: FactoryResponsePayload,
        *,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        Rules:
        - At least one line item must be priced
        - First response with no history → Responded
        - With history (or after the client accepted) → In Negotiation
        """
        self._guard("respond to", quote, self.RESPOND_FROM)
        now = now or _now()

        priced = [r for r in response.line_item_responses if r.price is not None]
        if not priced:
            raise QuoteValidationError("Price at least one line item before sending a response.")

        unknown = {r.line_item_id for r in priced} - quote.line_item_ids
        if unknown:
            raise QuoteValidationError(f"Unknown line items in response: {sorted(unknown)}")

        reopen = bool(quote.negotiation.history) or quote.status == QuoteStatus.CLIENT_ACCEPTED
        status = QuoteStatus.IN_NEGOTIATION if reopen else QuoteStatus.RESPONDED

        previous = quote.response_summary
        merged: List[LineItemResponse] = list(previous.line_item_responses) if previous else []
        merged.extend(priced)

        summary = ResponseSummary(
            price=response.price if response.price is not None else (previous.price if previous else None),
            lead_time=response.lead_time or (previous.lead_time if previous else None),
            notes=response.notes if response.notes is not None else (previous.notes if previous else None),
            line_item_responses=merged,
            responded_at=now,
        )

        event = NegotiationEvent(
            sender=Sender.FACTORY,
            message=response.notes,
            price=response.price,
            line_item_prices=[
                LineItemPrice(line_item_id=r.line_item_id, price=r.price) for r in priced
            ],
            timestamp=now,
            action=EventAction.OFFER,
            attachments=list(response.attachments) or None,
        )

        return self._finish(
            "respond to",
            quote,
            status=status,
            now=now,
            negotiation_updates={"history": self._with_history(quote, event)},
            quote_updates={"response_summary": summary},
        )

    def decline(self, quote: Quote, reason: str, *, now: Optional[datetime] = None) -> Transition:
        self._guard("decline", quote, self.DECLINE_FROM)
        reason = (reason or "").strip()
        if not reason:
            raise QuoteValidationError("A decline reason is required.")
        now = now or _now()

        annotation = f"[Declined {now.isoformat()}] {reason}"
        summary = quote.response_summary
        if summary is None:
            summary = ResponseSummary(notes=annotation)
        else:
            notes = f"{summary.notes}\n\n{annotation}" if summary.notes else annotation
            summary = summary.model_copy(update={"notes": notes})

        event = NegotiationEvent(
            sender=Sender.FACTORY,
            message=reason,
            timestamp=now,
            action=EventAction.DECLINE,
        )

        return self._finish(
            "decline",
            quote,
            status=QuoteStatus.DECLINED,
            now=now,
            negotiation_updates={"history": self._with_history(quote, event)},
            quote_updates={"response_summary": summary},
        )

    def post_message(
        self,
        quote: Quote,
        *,
        sender: Sender,
        message: str,
        related_line_item_id: Optional[int] = None,
        attachments: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Transition:
        if quote.status == QuoteStatus.TRASHED:
            raise InvalidTransitionError("message", quote.status.value)
        if related_line_item_id is not None and related_line_item_id not in quote.line_item_ids:
            raise QuoteValidationError(f"Unknown line item {related_line_item_id}.")
        now = now or _now()

        event = NegotiationEvent(
            sender=sender,
            message=message,
            related_line_item_id=related_line_item_id,
            timestamp=now,
            action=EventAction.INFO,
            attachments=list(attachments or []) or None,
        )
        return self._finish(
            "message",
            quote,
            status=quote.status,
            now=now,
            negotiation_updates={"history": self._with_history(quote, event)},
        )

    # ─────────────────────────────────────────────
    # APPROVALS
    # ─────────────────────────────────────────────

    def toggle_approval(
        self,
        quote: Quote,
        line_item_id: int,
        party: Party,
        *,
        confirmed: bool = False,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        Flip one party's approval of one line item and recompute the status.
        Switching an approval on needs confirmed=True; switching off never does.
        """
        self._guard("change approvals on", quote, self.OPEN_STATUSES)

        ledger = LineItemLedger(quote)
        if line_item_id not in quote.line_item_ids:
            raise QuoteValidationError(f"Unknown line item {line_item_id}.")

        turning_on = not ledger.is_approved(line_item_id, party)
        if turning_on and not confirmed:
            raise ApprovalNotConfirmedError(
                f"Approval of line item {line_item_id} must be confirmed."
            )
        now = now or _now()

        toggled = ledger.toggle_approval(line_item_id, party)
        admin = toggled if party == Party.ADMIN else ledger.approvals(Party.ADMIN)
        client = toggled if party == Party.CLIENT else ledger.approvals(Party.CLIENT)
        status = compute_status(admin, client, quote.line_item_ids)

        sender = Sender.FACTORY if party == Party.ADMIN else Sender.CLIENT
        event = NegotiationEvent(
            sender=sender,
            message=(
                f"Approved line item {line_item_id}"
                if turning_on
                else f"Withdrew approval of line item {line_item_id}"
            ),
            related_line_item_id=line_item_id,
            timestamp=now,
            action=EventAction.ACCEPT if turning_on else EventAction.INFO,
        )

        return self._finish(
            "change approvals on",
            quote,
            status=status,
            now=now,
            negotiation_updates={
                "history": self._with_history(quote, event),
                "admin_approved_line_items": set(admin),
                "client_approved_line_items": set(client),
            },
        )

    def accept_all(self, quote: Quote, *, now: Optional[datetime] = None) -> Transition:
        """
        Finalize from the admin side: every admin bit is set at once.
        Accepted if the client side is already complete, else Admin Accepted.
        """
        self._guard("accept", quote, self.OPEN_STATUSES)
        if not quote.line_items:
            raise QuoteValidationError("Cannot accept a quote without line items.")
        now = now or _now()

        ledger = LineItemLedger(quote)
        all_ids = set(quote.line_item_ids)
        client_done = quote.status == QuoteStatus.CLIENT_ACCEPTED or ledger.all_approved(Party.CLIENT)

        if client_done:
            status = QuoteStatus.ACCEPTED
            client = all_ids
        else:
            status = QuoteStatus.ADMIN_ACCEPTED
            client = set(ledger.approvals(Party.CLIENT))

        event = NegotiationEvent(
            sender=Sender.FACTORY,
            message="Accepted all line items",
            timestamp=now,
            action=EventAction.ACCEPT,
        )

        return self._finish(
            "accept",
            quote,
            status=status,
            now=now,
            negotiation_updates={
                "history": self._with_history(quote, event),
                "admin_approved_line_items": all_ids,
                "client_approved_line_items": client,
            },
        )

    # ─────────────────────────────────────────────
    # ARCHIVE
    # ─────────────────────────────────────────────

    def trash(self, quote: Quote, *, now: Optional[datetime] = None) -> Transition:
        if quote.status == QuoteStatus.TRASHED or quote.status in TERMINAL_STATUSES:
            raise InvalidTransitionError("trash", quote.status.value)
        now = now or _now()

        archive = Archive.wrap(quote)
        return self._finish(
            "trash",
            quote,
            status=archive.status,
            now=now,
            negotiation_updates={"previous_status": archive.restore_to},
        )

    def restore(self, quote: Quote, *, now: Optional[datetime] = None) -> Transition:
        archive = Archive.of(quote)
        now = now or _now()
        return self._finish(
            "restore",
            quote,
            status=archive.restore_to,
            now=now,
            negotiation_updates={"previous_status": None},
        )

    # ─────────────────────────────────────────────
    # MISC
    # ─────────────────────────────────────────────

    def request_sample(
        self,
        quote: Quote,
        payload: SampleRequestPayload,
        *,
        now: Optional[datetime] = None,
    ) -> Transition:
        if quote.status == QuoteStatus.TRASHED or quote.status in TERMINAL_STATUSES:
            raise InvalidTransitionError("request a sample for", quote.status.value)
        unknown = set(payload.line_item_ids) - quote.line_item_ids
        if unknown:
            raise QuoteValidationError(f"Unknown line items in sample request: {sorted(unknown)}")
        now = now or _now()

        sample = SampleRequest(
            line_item_ids=list(payload.line_item_ids),
            quantity=payload.quantity,
            shipping_address=payload.shipping_address,
            notes=payload.notes,
            requested_at=now,
        )
        event = NegotiationEvent(
            sender=Sender.CLIENT,
            message=payload.notes or "Sample requested",
            timestamp=now,
            action=EventAction.INFO,
        )
        return self._finish(
            "request a sample for",
            quote,
            status=quote.status,
            now=now,
            negotiation_updates={
                "history": self._with_history(quote, event),
                "sample_request": sample,
            },
        )

    def set_hidden(self, quote: Quote, hidden: bool, *, now: Optional[datetime] = None) -> Transition:
        now = now or _now()
        return self._finish(
            "hide" if hidden else "unhide",
            quote,
            status=quote.status,
            now=now,
            quote_updates={"is_hidden": hidden},
        )
