import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import rfq_desk.models  # noqa

from rfq_desk.core.config import Settings
from rfq_desk.core.errors import QuoteNotFoundError
from rfq_desk.db.base import Base
from rfq_desk.schemas.quotes import Quote, QuoteFilter
from rfq_desk.services.notifier import LoggingNotifier
from rfq_desk.services.ports import OrderRequest, SortSpec

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def make_quote(quote_id: str = "Q-1", line_item_ids=(1, 2, 3), **overrides) -> Quote:
    data: Dict[str, Any] = {
        "id": quote_id,
        "status": "Pending",
        "lineItems": [
            {"id": i, "category": f"Tee {i}", "qty": 100 * i, "targetPrice": f"{i}.50"}
            for i in line_item_ids
        ],
        "submittedAt": T0.isoformat(),
        "clientId": "client-1",
        "factoryId": "factory-1",
    }
    data.update(overrides)
    return Quote.model_validate(data)


# ---------------------------------------------------------------------
# fakes
# ---------------------------------------------------------------------


class FakeQuoteStore:
    """
    In-memory QuoteStore. `fail` maps quote id -> exception raised on every
    write, `fail_once` -> exception raised on the next write only.
    """

    def __init__(self, quotes: Sequence[Quote] = ()):
        self.quotes: Dict[str, Quote] = {q.id: q for q in quotes}
        self.fail: Dict[str, BaseException] = {}
        self.fail_once: Dict[str, BaseException] = {}
        self.write_delay: float = 0.0
        self.fail_reads: List[BaseException] = []
        self.read_delay: float = 0.0
        self.patches: List[tuple] = []
        self.list_calls = 0

    async def list(self, quote_filter: QuoteFilter, sort: SortSpec) -> List[Quote]:
        self.list_calls += 1
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.fail_reads:
            raise self.fail_reads.pop(0)
        return [q for q in self.quotes.values() if quote_filter.matches(q)]

    async def get(self, quote_id: str) -> Quote:
        if self.fail_reads:
            raise self.fail_reads.pop(0)
        if quote_id not in self.quotes:
            raise QuoteNotFoundError(quote_id)
        return self.quotes[quote_id]

    async def patch(self, quote_id: str, fields: Dict[str, Any]) -> Quote:
        self.patches.append((quote_id, fields))
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if quote_id in self.fail_once:
            raise self.fail_once.pop(quote_id)
        if quote_id in self.fail:
            raise self.fail[quote_id]
        merged = self.quotes[quote_id].to_wire()
        merged.update(fields)
        self.quotes[quote_id] = Quote.model_validate(merged)
        return self.quotes[quote_id]

    async def delete(self, quote_id: str) -> None:
        if quote_id in self.fail:
            raise self.fail[quote_id]
        self.quotes.pop(quote_id)

    async def delete_many(self, quote_ids: Sequence[str]) -> int:
        n = 0
        for qid in quote_ids:
            if self.quotes.pop(qid, None) is not None:
                n += 1
        return n


class FakeBlobStore:
    def __init__(self, missing: Sequence[str] = ()):
        self.missing = set(missing)
        self.sign_calls: List[str] = []
        self.uploaded: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.upload_delay: float = 0.0
        self.sign_delay: float = 0.0

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        self.sign_calls.append(path)
        if self.sign_delay:
            await asyncio.sleep(self.sign_delay)
        if path in self.missing:
            raise FileNotFoundError(path)
        return f"https://files.test/{path}?ttl={ttl_seconds}"

    async def upload(self, path: str, data: bytes) -> str:
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        self.uploaded[path] = data
        return path

    async def remove(self, paths: Sequence[str]) -> None:
        for p in paths:
            self.removed.append(p)
            self.uploaded.pop(p, None)


class FakeOrderSink:
    def __init__(self, error: Optional[BaseException] = None):
        self.error = error
        self.requests: List[OrderRequest] = []

    async def create_order(self, request: OrderRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return f"ORD-{request.quote_id}"


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        attachment_root=str(tmp_path / "attachments"),
        link_signing_key="test-signing-key",
        list_timeout_seconds=0.5,
        detail_timeout_seconds=0.5,
        link_timeout_seconds=0.5,
    )


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture(scope="function")
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
