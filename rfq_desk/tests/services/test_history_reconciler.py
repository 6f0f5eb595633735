from rfq_desk.schemas.quotes import NegotiationEvent, Sender
from rfq_desk.services.history_reconciler import (
    build_timeline,
    chronological,
    effective_history,
    flatten_timeline,
    group_timeline,
    synthesize_history,
)
from rfq_desk.tests.conftest import at, make_quote


def ev(sender, minute, message=None, item=None):
    return NegotiationEvent(
        id=f"{sender}-{minute}",
        sender=Sender(sender),
        timestamp=at(minute),
        message=message or f"{sender} at {minute}",
        related_line_item_id=item,
    )


def test_client_and_factory_pairs_newest_first():
    events = [ev("client", 1), ev("factory", 2), ev("client", 3), ev("factory", 4)]

    rows = group_timeline(events)

    assert [(r.client.id, r.factory.id) for r in rows] == [
        ("client-3", "factory-4"),
        ("client-1", "factory-2"),
    ]


def test_factory_without_pending_client_is_its_own_row():
    rows = group_timeline([ev("factory", 1), ev("client", 2)])

    assert rows[0].client.id == "client-2" and rows[0].factory is None
    assert rows[1].client is None and rows[1].factory.id == "factory-1"


def test_consecutive_client_messages_each_get_a_row():
    rows = group_timeline([ev("client", 1), ev("client", 2), ev("factory", 3)])

    assert len(rows) == 2
    assert rows[0].client.id == "client-2" and rows[0].factory.id == "factory-3"
    assert rows[1].client.id == "client-1" and rows[1].factory is None


def test_grouping_sorts_by_timestamp_first():
    rows = group_timeline([ev("factory", 5), ev("client", 4)])
    assert len(rows) == 1
    assert rows[0].client.id == "client-4"


def test_flatten_restores_the_sorted_log():
    events = [
        ev("factory", 1),
        ev("client", 2),
        ev("client", 3),
        ev("factory", 4),
        ev("factory", 5),
        ev("client", 6),
    ]

    assert flatten_timeline(group_timeline(events)) == chronological(events)


def test_equal_timestamps_keep_log_order():
    a = NegotiationEvent(id="a", sender=Sender.CLIENT, timestamp=at(1))
    b = NegotiationEvent(id="b", sender=Sender.FACTORY, timestamp=at(1))

    assert [e.id for e in chronological([a, b])] == ["a", "b"]


def test_line_item_filter_keeps_only_referencing_events():
    quote = make_quote(
        negotiation={
            "history": [
                ev("client", 1, item=1).to_wire(),
                ev("factory", 2, item=2).to_wire(),
                {
                    "sender": "factory",
                    "timestamp": at(3).isoformat(),
                    "action": "offer",
                    "lineItemPrices": [{"lineItemId": 1, "price": "2.00"}],
                },
            ]
        }
    )

    rows = build_timeline(quote, line_item_id=1)

    assert len(rows) == 1
    assert rows[0].client.id == "client-1"
    assert rows[0].factory.price_for(1) is not None


def test_legacy_quote_gets_synthesized_history():
    quote = make_quote(
        status="In Negotiation",
        responseSummary={
            "notes": "Can do 4.00",
            "respondedAt": at(10).isoformat(),
            "lineItemResponses": [{"lineItemId": 1, "price": "4.00"}],
        },
        negotiation={
            "counterPrice": "3.50",
            "message": "Too high",
            "submittedAt": at(20).isoformat(),
            "lineItemNegotiations": [{"lineItemId": 1, "counterPrice": "3.50"}],
        },
    )

    events = synthesize_history(quote)

    assert [e.id for e in events] == ["legacy-response-Q-1", "legacy-counter-Q-1"]
    assert events[0].sender == Sender.FACTORY and events[0].timestamp == at(10)
    assert events[1].sender == Sender.CLIENT and events[1].timestamp == at(20)
    assert effective_history(quote) == events

    rows = build_timeline(quote)
    assert rows[0].client.id == "legacy-counter-Q-1"
    assert rows[1].factory.id == "legacy-response-Q-1"


def test_structured_history_wins_over_legacy_fields():
    quote = make_quote(
        responseSummary={"notes": "old"},
        negotiation={"history": [ev("client", 1).to_wire()], "message": "legacy"},
    )
    assert [e.id for e in effective_history(quote)] == ["client-1"]


def test_no_history_and_no_legacy_fields_is_empty():
    assert build_timeline(make_quote()) == []
