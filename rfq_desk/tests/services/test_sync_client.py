import asyncio

import pytest

from rfq_desk.core.errors import (
    NetworkError,
    PermissionDeniedError,
    RemoteTimeoutError,
    RequestCancelled,
    RetryExhaustedError,
)
from rfq_desk.schemas.results import SignedLink
from rfq_desk.services.sync_client import (
    RetryPolicy,
    SignedLinkCache,
    SupersedingGate,
    SyncClient,
)
from rfq_desk.tests.conftest import FakeBlobStore, FakeQuoteStore, make_quote


class Flaky:
    def __init__(self, failures, result="ok", error=None):
        self.failures = failures
        self.result = result
        self.error = error or NetworkError("connection reset")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


# ---------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------


def test_retry_recovers_after_transient_failures(sleep):
    policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0, sleep=sleep)
    call = Flaky(failures=2)

    assert asyncio.run(policy.run("list quotes", call, timeout_seconds=1)) == "ok"
    assert call.calls == 3
    assert sleep.calls == [1.0, 2.0]


def test_retry_gives_up_after_exactly_three_attempts(sleep):
    policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0, sleep=sleep)
    call = Flaky(failures=10)

    with pytest.raises(RetryExhaustedError) as exc:
        asyncio.run(policy.run("list quotes", call, timeout_seconds=1))

    assert call.calls == 3
    # no wait after the final attempt
    assert sleep.calls == [1.0, 2.0]
    assert exc.value.attempts == 3
    assert isinstance(exc.value.last_error, NetworkError)


def test_timeout_counts_as_a_failed_attempt(sleep):
    policy = RetryPolicy(max_attempts=2, backoff_seconds=0.5, sleep=sleep)

    async def hang():
        await asyncio.sleep(10)

    with pytest.raises(RetryExhaustedError) as exc:
        asyncio.run(policy.run("get quote", hang, timeout_seconds=0.01))

    assert isinstance(exc.value.last_error, RemoteTimeoutError)
    assert sleep.calls == [0.5]


def test_permission_errors_are_not_retried(sleep):
    policy = RetryPolicy(sleep=sleep)
    call = Flaky(failures=5, error=PermissionDeniedError("row level security"))

    with pytest.raises(PermissionDeniedError):
        asyncio.run(policy.run("patch quote", call, timeout_seconds=1))

    assert call.calls == 1
    assert sleep.calls == []


# ---------------------------------------------------------------------
# superseding
# ---------------------------------------------------------------------


def test_newer_request_supersedes_older_one():
    gate = SupersedingGate("quote-list")

    async def scenario():
        first_started = asyncio.Event()

        async def slow():
            first_started.set()
            await asyncio.sleep(0.2)
            return "first"

        async def fast():
            return "second"

        first = asyncio.ensure_future(gate.run(slow))
        await first_started.wait()
        second = await gate.run(fast)

        with pytest.raises(RequestCancelled):
            await first
        return second

    assert asyncio.run(scenario()) == "second"


def test_list_view_reflects_only_the_latest_fetch(sleep):
    store = FakeQuoteStore([make_quote("Q-1")])
    client = SyncClient(store, sleep=sleep)

    async def scenario():
        store.read_delay = 0.1
        first = asyncio.ensure_future(client.fetch_list())
        await asyncio.sleep(0.01)

        store.read_delay = 0
        store.quotes["Q-2"] = make_quote("Q-2")
        second = await client.fetch_list()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert sorted(q.id for q in second) == ["Q-1", "Q-2"]


def test_cancel_all_bumps_every_generation():
    client = SyncClient(FakeQuoteStore())
    before = (client.list_gate.generation, client.detail_gate.generation, client.link_gate.generation)

    client.cancel_all()

    after = (client.list_gate.generation, client.detail_gate.generation, client.link_gate.generation)
    assert all(a == b + 1 for a, b in zip(after, before))


# ---------------------------------------------------------------------
# signed link cache
# ---------------------------------------------------------------------


def _links(*paths):
    return [SignedLink(name=p, path=p, url=f"https://x/{p}") for p in paths]


def test_cached_links_are_served_before_ttl(clock):
    cache = SignedLinkCache(ttl_seconds=3000, clock=clock)
    cache.put("Q-1", _links("a.pdf"))

    clock.advance(49 * 60)
    assert cache.get("Q-1", ["a.pdf"]) is not None

    clock.advance(2 * 60)
    assert cache.get("Q-1", ["a.pdf"]) is None


def test_empty_cached_entry_is_ignored_when_quote_has_files(clock):
    cache = SignedLinkCache(ttl_seconds=3000, clock=clock)
    cache.put("Q-1", [])

    assert cache.get("Q-1", []) == []
    assert cache.get("Q-1", ["a.pdf"]) is None


def test_changed_file_set_is_a_miss(clock):
    cache = SignedLinkCache(ttl_seconds=3000, clock=clock)
    cache.put("Q-1", _links("a.pdf"))

    assert cache.get("Q-1", ["a.pdf", "b.pdf"]) is None


def test_links_with_errors_are_not_cached(clock):
    cache = SignedLinkCache(ttl_seconds=3000, clock=clock)
    cache.put("Q-1", [SignedLink(name="a.pdf", path="a.pdf", error="missing")])

    assert cache.get("Q-1", ["a.pdf"]) is None


def test_fetch_signed_links_uses_cache_and_marks_failures(settings, sleep, clock):
    blobs = FakeBlobStore(missing=["q/gone.pdf"])
    client = SyncClient(FakeQuoteStore(), blobs, settings=settings, sleep=sleep, clock=clock)

    ok = asyncio.run(client.fetch_signed_links("Q-1", ["q/measurements.pdf"]))
    again = asyncio.run(client.fetch_signed_links("Q-1", ["q/measurements.pdf"]))

    assert ok == again
    assert blobs.sign_calls == ["q/measurements.pdf"]
    assert ok[0].name == "measurements.pdf"
    assert str(settings.signed_link_ttl_seconds) in ok[0].url

    mixed = asyncio.run(client.fetch_signed_links("Q-2", ["q/measurements.pdf", "q/gone.pdf"]))
    assert mixed[0].url is not None
    assert mixed[1].url is None and mixed[1].error
    # missing files fail fast
    assert sleep.calls == []


def test_fetch_signed_links_without_blob_store_fails():
    client = SyncClient(FakeQuoteStore())
    with pytest.raises(RuntimeError):
        asyncio.run(client.fetch_signed_links("Q-1", ["a.pdf"]))


def test_cache_hit_supersedes_an_older_link_request(settings, sleep, clock):
    blobs = FakeBlobStore()
    client = SyncClient(FakeQuoteStore(), blobs, settings=settings, sleep=sleep, clock=clock)
    client.link_cache.put("Q-2", _links("q2/a.pdf"))

    async def scenario():
        blobs.sign_delay = 0.05
        older = asyncio.ensure_future(client.fetch_signed_links("Q-1", ["q1/a.pdf"]))
        await asyncio.sleep(0.01)
        newer = await client.fetch_signed_links("Q-2", ["q2/a.pdf"])
        return await older, newer

    older, newer = asyncio.run(scenario())

    assert older is None
    assert [link.path for link in newer] == ["q2/a.pdf"]
    assert client.link_cache.get("Q-1", ["q1/a.pdf"]) is None


def test_settled_waits_for_the_request_in_flight():
    gate = SupersedingGate("quote-list")
    done = []

    async def scenario():
        async def slow():
            await asyncio.sleep(0.02)
            done.append("slow")
            return "ok"

        pending = asyncio.ensure_future(gate.run(slow))
        await asyncio.sleep(0)
        await gate.settled()
        assert done == ["slow"]
        return await pending

    assert asyncio.run(scenario()) == "ok"
