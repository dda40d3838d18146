"""
Storage contract for the bidding core, and an in-process implementation.

The engine never locks anything itself: every decision that depends on the
current high bid happens inside ``AuctionStore.run_transaction``, and the
store is responsible for serializing concurrent transactions on the same
auction (row lock, serializable isolation or optimistic retry).
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from models.entities.couchbase.auctions import Auction, AuctionData
from models.entities.couchbase.bids import Bid

R = TypeVar("R")

# Receives the auction data, mutates it in place and returns None, or
# returns an error string to abort without writing.
AuctionMutator = Callable[[AuctionData], Optional[str]]


class AuctionTransaction(ABC):
    @abstractmethod
    async def read_auction_for_update(self, auction_id: str) -> Optional[Auction]:
        """Read and lock the auction until the transaction ends. None if missing."""

    @abstractmethod
    async def read_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        ...

    @abstractmethod
    async def read_bid(self, bid_id: str) -> Optional[Bid]:
        ...

    @abstractmethod
    async def insert_bid(self, bid: Bid) -> None:
        """Append *bid*; also moves the auction's high-bid pointer and bid count."""

    @abstractmethod
    async def update_auction_end_at(self, auction_id: str, new_end_at: datetime) -> None:
        """Record one soft-close extension."""


class AuctionStore(ABC):
    @abstractmethod
    async def run_transaction(self, work: Callable[[AuctionTransaction], Awaitable[R]]) -> R:
        """
        Run *work* atomically. Commits when it returns, rolls back when it
        raises. May call *work* more than once on a write conflict.
        """

    @abstractmethod
    async def create_auction(self, data: AuctionData, key: Optional[str] = None) -> Auction:
        ...

    @abstractmethod
    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        ...

    @abstractmethod
    async def get_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        ...

    @abstractmethod
    async def list_bids(self, auction_id: str, limit: int = 100) -> List[Bid]:
        """Bids by amount descending, then earliest first."""

    @abstractmethod
    async def list_bids_by_bidder(self, bidder_id: str, limit: int = 50) -> List[Bid]:
        """A bidder's bids, most recent first."""

    @abstractmethod
    async def mutate_auction(
        self, auction_id: str, mutator: AuctionMutator
    ) -> tuple[bool, Optional[str]]:
        """Atomic read-modify-write of a single auction document."""

    @abstractmethod
    async def find_auctions_to_close(self, now: datetime, limit: int = 100) -> List[Auction]:
        """Auctions past ``end_at`` that are neither cancelled nor closed yet."""


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------

class _InMemoryTransaction(AuctionTransaction):
    def __init__(self, store: "InMemoryAuctionStore"):
        self._store = store
        self._held: List[asyncio.Lock] = []
        self._staged: Dict[str, AuctionData] = {}
        self._new_bids: Dict[str, Bid] = {}

    async def read_auction_for_update(self, auction_id: str) -> Optional[Auction]:
        if auction_id not in self._staged:
            if auction_id not in self._store._auctions:
                return None
            lock = self._store._lock_for(auction_id)
            await lock.acquire()
            self._held.append(lock)
            # Read again now that concurrent writers are excluded
            self._staged[auction_id] = self._store._auctions[auction_id].model_copy(deep=True)
        return Auction(id=auction_id, data=self._staged[auction_id].model_copy(deep=True))

    async def read_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        bids = [b for b in self._store._bids.values() if b.data.auction_id == auction_id]
        bids += [b for b in self._new_bids.values() if b.data.auction_id == auction_id]
        return _copy(_highest(bids))

    async def read_bid(self, bid_id: str) -> Optional[Bid]:
        return _copy(self._new_bids.get(bid_id) or self._store._bids.get(bid_id))

    async def insert_bid(self, bid: Bid) -> None:
        data = self._staged.get(bid.data.auction_id)
        if data is None:
            raise RuntimeError("Auction must be read for update before inserting a bid")
        if bid.id in self._store._bids or bid.id in self._new_bids:
            raise ValueError(f"Bid {bid.id} already exists")

        current = await self.read_current_high_bid(bid.data.auction_id)
        self._new_bids[bid.id] = bid.model_copy(deep=True)
        if bid.outranks(current):
            data.current_high_bid_id = bid.id
            data.current_high_bid_amount = bid.data.amount
            data.current_high_bidder_id = bid.data.bidder_id
        data.bid_count += 1

    async def update_auction_end_at(self, auction_id: str, new_end_at: datetime) -> None:
        data = self._staged.get(auction_id)
        if data is None:
            raise RuntimeError("Auction must be read for update before changing end_at")
        data.end_at = new_end_at
        data.extensions_count += 1

    def _commit(self) -> None:
        now = datetime.now(timezone.utc)
        for auction_id, data in self._staged.items():
            data.updated_at = now
            self._store._auctions[auction_id] = data
        for bid_id, bid in self._new_bids.items():
            bid.data.created_at = bid.data.created_at or now
            bid.data.updated_at = now
            self._store._bids[bid_id] = bid

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()


class InMemoryAuctionStore(AuctionStore):
    """
    Process-local store. A transaction locks each auction it reads for update
    and stages its writes until ``work`` returns, so concurrent submissions
    within one event loop are serialized per auction exactly like a row lock.
    """

    def __init__(self):
        self._auctions: Dict[str, AuctionData] = {}
        self._bids: Dict[str, Bid] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, auction_id: str) -> asyncio.Lock:
        if auction_id not in self._locks:
            self._locks[auction_id] = asyncio.Lock()
        return self._locks[auction_id]

    async def run_transaction(self, work: Callable[[AuctionTransaction], Awaitable[R]]) -> R:
        txn = _InMemoryTransaction(self)
        try:
            result = await work(txn)
            txn._commit()
            return result
        finally:
            txn._release()

    async def create_auction(self, data: AuctionData, key: Optional[str] = None) -> Auction:
        key = key or str(uuid.uuid4())
        if key in self._auctions:
            raise ValueError(f"Auction {key} already exists")
        now = datetime.now(timezone.utc)
        data = data.model_copy(deep=True)
        data.created_at = data.created_at or now
        data.updated_at = now
        self._auctions[key] = data
        return Auction(id=key, data=data.model_copy(deep=True))

    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        data = self._auctions.get(auction_id)
        if data is None:
            return None
        return Auction(id=auction_id, data=data.model_copy(deep=True))

    async def get_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        bids = [b for b in self._bids.values() if b.data.auction_id == auction_id]
        return _copy(_highest(bids))

    async def list_bids(self, auction_id: str, limit: int = 100) -> List[Bid]:
        bids = [b for b in self._bids.values() if b.data.auction_id == auction_id]
        bids.sort(key=lambda b: (-b.data.amount, b.data.placed_at))
        return [_copy(b) for b in bids[:limit]]

    async def list_bids_by_bidder(self, bidder_id: str, limit: int = 50) -> List[Bid]:
        bids = [b for b in self._bids.values() if b.data.bidder_id == bidder_id]
        bids.sort(key=lambda b: b.data.placed_at, reverse=True)
        return [_copy(b) for b in bids[:limit]]

    async def mutate_auction(
        self, auction_id: str, mutator: AuctionMutator
    ) -> tuple[bool, Optional[str]]:
        if auction_id not in self._auctions:
            return False, f"Auction {auction_id} not found"
        async with self._lock_for(auction_id):
            data = self._auctions[auction_id].model_copy(deep=True)
            error = mutator(data)
            if error is not None:
                return False, error
            data.updated_at = datetime.now(timezone.utc)
            self._auctions[auction_id] = data
            return True, None

    async def find_auctions_to_close(self, now: datetime, limit: int = 100) -> List[Auction]:
        due = [
            (auction_id, data) for auction_id, data in self._auctions.items()
            if data.cancelled_at is None and data.closed_at is None and data.end_at <= now
        ]
        due.sort(key=lambda item: item[1].end_at)
        return [Auction(id=i, data=d.model_copy(deep=True)) for i, d in due[:limit]]


def _highest(bids: List[Bid]) -> Optional[Bid]:
    best = None
    for bid in bids:
        if bid.outranks(best):
            best = bid
    return best


def _copy(bid: Optional[Bid]) -> Optional[Bid]:
    return bid.model_copy(deep=True) if bid is not None else None
