import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from models.auction import (
    AuctionEngine,
    AuctionTransaction,
    BidAccepted,
    BidNotifier,
    EligibilityCheck,
    EngineConfig,
    FixedClock,
    InMemoryAuctionStore,
)
from models.entities.couchbase.auctions import Auction, AuctionData, PercentIncrement

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def auction_data(**overrides) -> AuctionData:
    """Valid, currently running auction data; override any field."""
    fields = dict(
        listing_id="listing-1",
        seller_id="seller-1",
        increment=PercentIncrement(value=Decimal("0.05")),
        starting_price=1000,
        soft_close_window_seconds=120,
        soft_close_extension_seconds=120,
        deposit_required=False,
        start_at=T0 - timedelta(hours=1),
        scheduled_end_at=T0 + timedelta(hours=1),
        end_at=T0 + timedelta(hours=1),
    )
    fields.update(overrides)
    return AuctionData(**fields)


class BlockList(EligibilityCheck):
    def __init__(self):
        self.blocked = set()
        self.calls = 0

    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        self.calls += 1
        return bidder_id not in self.blocked


class RecordingNotifier(BidNotifier):
    def __init__(self, fail: bool = False):
        self.accepted: List[BidAccepted] = []
        self.fail = fail

    async def bid_accepted(self, accepted: BidAccepted) -> None:
        self.accepted.append(accepted)
        if self.fail:
            raise RuntimeError("mail server down")


class _YieldingTransaction(AuctionTransaction):
    """Hands control back to the event loop after every read and write."""

    def __init__(self, inner: AuctionTransaction):
        self.inner = inner

    async def read_auction_for_update(self, auction_id):
        result = await self.inner.read_auction_for_update(auction_id)
        await asyncio.sleep(0)
        return result

    async def read_current_high_bid(self, auction_id):
        result = await self.inner.read_current_high_bid(auction_id)
        await asyncio.sleep(0)
        return result

    async def read_bid(self, bid_id):
        result = await self.inner.read_bid(bid_id)
        await asyncio.sleep(0)
        return result

    async def insert_bid(self, bid):
        await self.inner.insert_bid(bid)
        await asyncio.sleep(0)

    async def update_auction_end_at(self, auction_id, new_end_at):
        await self.inner.update_auction_end_at(auction_id, new_end_at)
        await asyncio.sleep(0)


class InterleavingStore(InMemoryAuctionStore):
    """In-memory store whose transactions suspend between steps, so
    concurrent submissions really overlap."""

    async def run_transaction(self, work):
        async def _interleaved(txn):
            return await work(_YieldingTransaction(txn))
        return await super().run_transaction(_interleaved)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def store() -> InMemoryAuctionStore:
    return InterleavingStore()


@pytest.fixture
def eligibility() -> BlockList:
    return BlockList()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(store, eligibility, clock, config, notifier) -> AuctionEngine:
    return AuctionEngine(
        store=store,
        eligibility=eligibility,
        clock=clock,
        config=config,
        notifier=notifier,
    )


@pytest.fixture
def make_auction(engine, clock):
    async def _make(
        start_in: float = -3600,
        ends_in: float = 3600,
        starting_price: int = 1000,
        increment=None,
        window: Optional[int] = 120,
        extension: Optional[int] = 120,
        **kwargs,
    ) -> Auction:
        return await engine.create_auction(
            listing_id=kwargs.pop("listing_id", "listing-1"),
            seller_id=kwargs.pop("seller_id", "seller-1"),
            start_at=clock.now() + timedelta(seconds=start_in),
            end_at=clock.now() + timedelta(seconds=ends_in),
            starting_price=starting_price,
            increment=increment if increment is not None else PercentIncrement(value=Decimal("0.05")),
            soft_close_window_seconds=window,
            soft_close_extension_seconds=extension,
            deposit_required=kwargs.pop("deposit_required", False),
            **kwargs,
        )
    return _make
