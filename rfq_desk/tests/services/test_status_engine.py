import itertools
from decimal import Decimal

import pytest

from rfq_desk.core.errors import (
    ApprovalNotConfirmedError,
    InvalidTransitionError,
    QuoteValidationError,
)
from rfq_desk.core.quote_statuses import Party, QuoteStatus
from rfq_desk.schemas.actions import FactoryResponsePayload, SampleRequestPayload
from rfq_desk.schemas.quotes import EventAction, Sender
from rfq_desk.services.status_engine import (
    Archive,
    StatusEngine,
    compute_status,
    infer_restore_target,
)
from rfq_desk.tests.conftest import at, make_quote


def negotiating(admin=(), client=(), status="In Negotiation", line_item_ids=(1, 2)):
    return make_quote(
        status=status,
        line_item_ids=line_item_ids,
        negotiation={
            "adminApprovedLineItems": list(admin),
            "clientApprovedLineItems": list(client),
        },
    )


def response(*prices):
    return FactoryResponsePayload.model_validate(
        {
            "notes": "Best we can do",
            "leadTime": "30 days",
            "lineItemResponses": [
                {"lineItemId": i, "price": p} for i, p in prices
            ],
        }
    )


# ---------------------------------------------------------------------
# compute_status
# ---------------------------------------------------------------------


def _subsets(ids):
    return [set(c) for n in range(len(ids) + 1) for c in itertools.combinations(ids, n)]


@pytest.mark.parametrize("admin", _subsets([1, 2]))
@pytest.mark.parametrize("client", _subsets([1, 2]))
def test_compute_status_matches_coverage(admin, client):
    ids = {1, 2}
    status = compute_status(admin, client, ids)

    if admin >= ids and client >= ids:
        assert status == QuoteStatus.ACCEPTED
    elif admin >= ids:
        assert status == QuoteStatus.ADMIN_ACCEPTED
    elif client >= ids:
        assert status == QuoteStatus.CLIENT_ACCEPTED
    else:
        assert status == QuoteStatus.IN_NEGOTIATION

    # pure: same inputs, same answer
    assert compute_status(admin, client, ids) == status


def test_compute_status_ignores_ids_outside_the_quote():
    assert compute_status({1, 2, 99}, {1}, {1, 2}) == QuoteStatus.ADMIN_ACCEPTED


def test_compute_status_empty_line_items_is_vacuously_accepted():
    assert compute_status(set(), set(), set()) == QuoteStatus.ACCEPTED


# ---------------------------------------------------------------------
# approvals
# ---------------------------------------------------------------------


def test_client_then_admin_approvals_reach_accepted():
    engine = StatusEngine()
    quote = negotiating(admin=[1], client=[1])

    t1 = engine.toggle_approval(quote, 2, Party.CLIENT, confirmed=True, now=at(1))
    assert t1.quote.status == QuoteStatus.CLIENT_ACCEPTED
    assert t1.side_effects == ()

    t2 = engine.toggle_approval(t1.quote, 2, Party.ADMIN, confirmed=True, now=at(2))
    assert t2.quote.status == QuoteStatus.ACCEPTED
    assert t2.quote.accepted_at == at(2)
    assert [e.quote_id for e in t2.side_effects] == [quote.id]


def test_turning_an_approval_on_requires_confirmation():
    engine = StatusEngine()
    quote = negotiating()

    with pytest.raises(ApprovalNotConfirmedError):
        engine.toggle_approval(quote, 1, Party.ADMIN)


def test_withdrawing_an_approval_needs_no_confirmation():
    engine = StatusEngine()
    quote = negotiating(admin=[1, 2], status="Admin Accepted")

    t = engine.toggle_approval(quote, 2, Party.ADMIN, now=at(1))

    assert t.quote.negotiation.admin_approved_line_items == {1}
    assert t.quote.status == QuoteStatus.IN_NEGOTIATION
    assert t.quote.negotiation.history[-1].action == EventAction.INFO


def test_toggle_leaves_the_input_quote_untouched():
    engine = StatusEngine()
    quote = negotiating()

    engine.toggle_approval(quote, 1, Party.ADMIN, confirmed=True, now=at(1))

    assert quote.negotiation.admin_approved_line_items == set()
    assert quote.negotiation.history == []


def test_toggle_unknown_line_item_is_rejected():
    engine = StatusEngine()
    with pytest.raises(QuoteValidationError):
        engine.toggle_approval(negotiating(), 42, Party.ADMIN, confirmed=True)


def test_accepted_quote_cannot_change_approvals():
    engine = StatusEngine()
    quote = negotiating(admin=[1, 2], client=[1, 2], status="Accepted")
    with pytest.raises(InvalidTransitionError):
        engine.toggle_approval(quote, 1, Party.ADMIN)


def test_accept_all_without_client_side_is_admin_accepted():
    engine = StatusEngine()
    t = engine.accept_all(negotiating(client=[1]), now=at(1))

    assert t.quote.status == QuoteStatus.ADMIN_ACCEPTED
    assert t.quote.negotiation.admin_approved_line_items == {1, 2}
    assert t.quote.negotiation.client_approved_line_items == {1}
    assert t.side_effects == ()


def test_accept_all_after_client_accepted_is_final():
    engine = StatusEngine()
    quote = negotiating(client=[1, 2], status="Client Accepted")

    t = engine.accept_all(quote, now=at(3))

    assert t.quote.status == QuoteStatus.ACCEPTED
    assert t.quote.accepted_at == at(3)
    assert len(t.side_effects) == 1


def test_accept_all_rejects_quote_without_line_items():
    engine = StatusEngine()
    with pytest.raises(QuoteValidationError):
        engine.accept_all(negotiating(line_item_ids=()))


# ---------------------------------------------------------------------
# responses / decline / messages
# ---------------------------------------------------------------------


def test_first_response_moves_pending_to_responded():
    engine = StatusEngine()
    quote = make_quote()

    t = engine.submit_response(quote, response((1, "4.10"), (2, "5.20")), now=at(5))

    assert t.quote.status == QuoteStatus.RESPONDED
    assert t.quote.response_summary.responded_at == at(5)
    assert t.quote.response_summary.lead_time == "30 days"

    event = t.quote.negotiation.history[-1]
    assert event.sender == Sender.FACTORY
    assert event.action == EventAction.OFFER
    assert {p.line_item_id for p in event.line_item_prices} == {1, 2}


def test_response_with_history_moves_to_in_negotiation():
    engine = StatusEngine()
    first = engine.submit_response(make_quote(), response((1, "4.10")), now=at(1)).quote

    second = engine.submit_response(first, response((1, "3.90")), now=at(2)).quote

    assert second.status == QuoteStatus.IN_NEGOTIATION
    assert len(second.negotiation.history) == 2
    assert second.response_summary.response_for(1).price == Decimal("3.90")


def test_response_requires_at_least_one_priced_item():
    engine = StatusEngine()
    with pytest.raises(QuoteValidationError):
        engine.submit_response(make_quote(), response())


def test_response_rejects_unknown_line_items():
    engine = StatusEngine()
    with pytest.raises(QuoteValidationError):
        engine.submit_response(make_quote(), response((9, "1.00")))


def test_decline_annotates_notes_and_logs_event():
    engine = StatusEngine()
    quote = engine.submit_response(make_quote(), response((1, "4.10")), now=at(1)).quote

    t = engine.decline(quote, "  Fabric unavailable ", now=at(2))

    assert t.quote.status == QuoteStatus.DECLINED
    assert t.quote.response_summary.notes.startswith("Best we can do")
    assert f"[Declined {at(2).isoformat()}] Fabric unavailable" in t.quote.response_summary.notes
    assert t.quote.negotiation.history[-1].action == EventAction.DECLINE


def test_decline_requires_reason():
    engine = StatusEngine()
    with pytest.raises(QuoteValidationError):
        engine.decline(make_quote(), "   ")


def test_decline_after_admin_accepted_is_invalid():
    engine = StatusEngine()
    with pytest.raises(InvalidTransitionError):
        engine.decline(negotiating(admin=[1, 2], status="Admin Accepted"), "late")


def test_post_message_keeps_status():
    engine = StatusEngine()
    quote = negotiating()

    t = engine.post_message(quote, sender=Sender.CLIENT, message="Can you do navy?", related_line_item_id=1, now=at(1))

    assert t.quote.status == QuoteStatus.IN_NEGOTIATION
    assert not t.status_changed
    assert t.quote.negotiation.history[-1].related_line_item_id == 1


def test_request_sample_records_request():
    engine = StatusEngine()
    payload = SampleRequestPayload(line_item_ids=[2], quantity=3, shipping_address="Dock 4")

    t = engine.request_sample(negotiating(), payload, now=at(1))

    sample = t.quote.negotiation.sample_request
    assert sample.line_item_ids == [2]
    assert sample.quantity == 3
    assert sample.requested_at == at(1)


# ---------------------------------------------------------------------
# trash / restore
# ---------------------------------------------------------------------


@pytest.mark.parametrize(
    "status",
    ["Pending", "Responded", "In Negotiation", "Admin Accepted", "Client Accepted"],
)
def test_trash_then_restore_round_trips(status):
    engine = StatusEngine()
    quote = negotiating(status=status)

    trashed = engine.trash(quote, now=at(1)).quote
    assert trashed.status == QuoteStatus.TRASHED
    assert trashed.negotiation.previous_status.value == status

    restored = engine.restore(trashed, now=at(2)).quote
    assert restored.status.value == status
    assert restored.negotiation.previous_status is None


def test_trash_twice_is_rejected():
    engine = StatusEngine()
    trashed = engine.trash(make_quote(), now=at(1)).quote
    with pytest.raises(InvalidTransitionError):
        engine.trash(trashed)


@pytest.mark.parametrize("status", ["Accepted", "Declined"])
def test_terminal_quotes_cannot_be_trashed(status):
    with pytest.raises(InvalidTransitionError):
        StatusEngine().trash(make_quote(status=status))


def test_restore_requires_trashed_quote():
    with pytest.raises(InvalidTransitionError):
        StatusEngine().restore(make_quote())


def test_restore_without_previous_status_is_inferred():
    with_history = make_quote(
        status="Trashed",
        negotiation={"history": [{"sender": "client", "timestamp": at(1).isoformat(), "message": "hi"}]},
    )
    responded = make_quote(status="Trashed", responseSummary={"notes": "ok"})
    bare = make_quote(status="Trashed")

    assert Archive.of(with_history).restore_to == QuoteStatus.IN_NEGOTIATION
    assert infer_restore_target(responded) == QuoteStatus.RESPONDED
    assert StatusEngine().restore(bare, now=at(2)).quote.status == QuoteStatus.PENDING


def test_hide_keeps_status_and_patch_carries_flag():
    t = StatusEngine().set_hidden(negotiating(), True, now=at(1))

    assert t.quote.is_hidden is True
    patch = t.store_patch()
    assert patch["isHidden"] is True
    assert patch["status"] == "In Negotiation"
    assert patch["acceptedAt"] is None
