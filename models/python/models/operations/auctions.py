"""
Couchbase-backed auction storage.

Patterns:
- Bid placement runs as a Couchbase distributed ACID transaction: the bid
  insert, the denormalized high-bid pointer and any soft-close extension
  commit together or not at all
- _auction_cas_retry for single-document lifecycle changes (cancel, close)
- Exponential backoff on CASMismatchException
- Every CouchbaseException leaves this module as StorageUnavailable
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from acouchbase.transactions import AttemptContext
from couchbase.exceptions import (
    CASMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
    TransactionCommitAmbiguous,
)

from clients.couchbase import run_transaction as run_couchbase_transaction
from models.auction.errors import StorageUnavailable
from models.auction.store import AuctionMutator, AuctionStore, AuctionTransaction
from models.entities.couchbase.auctions import Auction, AuctionData
from models.entities.couchbase.bids import Bid
from models.operations.bids import bid_get_by_auction, bid_get_by_bidder

logger = logging.getLogger(__name__)

R = TypeVar("R")


def _unavailable(e: CouchbaseException) -> StorageUnavailable:
    return StorageUnavailable(
        f"Couchbase operation failed: {e}",
        ambiguous=isinstance(e, TransactionCommitAmbiguous),
    )


# ---------------------------------------------------------------------------
# CAS-retry helper for lifecycle changes
# ---------------------------------------------------------------------------

async def _auction_cas_retry(
    auction_id: str,
    mutator: AuctionMutator,
    max_retries: int = 5,
) -> tuple[bool, Optional[str]]:
    """Read-modify-write an auction with CAS-guarded retry.

    *mutator* receives ``AuctionData`` and mutates it in place.  It returns
    ``None`` on success or an error string to abort early.  On
    ``CASMismatchException`` the helper re-reads and retries with
    exponential backoff (10 ms, 20 ms, 40 ms, …).
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        auction = await Auction.get(auction_id)
        if not auction:
            return False, f"Auction {auction_id} not found"

        error = mutator(auction.data)
        if error is not None:
            return False, error

        try:
            await Auction.update(auction)
            return True, None
        except CASMismatchException:
            if attempt == max_retries:
                return False, "Concurrent update conflict, please retry"
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2

    return False, "Max retries exceeded"


# ---------------------------------------------------------------------------
# Transaction adapter
# ---------------------------------------------------------------------------

class _CouchbaseTransaction(AuctionTransaction):
    """One attempt of a Couchbase transaction.

    Auction documents are read through the attempt context, changed in
    ``_staged`` and written back once by ``flush`` at the end of the attempt.
    """

    def __init__(self, ctx: AttemptContext, auctions, bids):
        self._ctx = ctx
        self._auctions = auctions
        self._bids = bids
        self._docs: Dict[str, Any] = {}
        self._staged: Dict[str, AuctionData] = {}
        self._dirty: Set[str] = set()
        self._new_bids: Dict[str, Bid] = {}

    async def read_auction_for_update(self, auction_id: str) -> Optional[Auction]:
        if auction_id not in self._staged:
            try:
                doc = await self._ctx.get(self._auctions, auction_id)
            except DocumentNotFoundException:
                return None
            self._docs[auction_id] = doc
            self._staged[auction_id] = AuctionData(**doc.content_as[dict])
        return Auction(id=auction_id, data=self._staged[auction_id].model_copy(deep=True))

    async def read_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        auction = await self.read_auction_for_update(auction_id)
        if auction is None or auction.data.current_high_bid_id is None:
            return None
        return await self.read_bid(auction.data.current_high_bid_id)

    async def read_bid(self, bid_id: str) -> Optional[Bid]:
        if bid_id in self._new_bids:
            return self._new_bids[bid_id].model_copy(deep=True)
        try:
            doc = await self._ctx.get(self._bids, bid_id)
        except DocumentNotFoundException:
            return None
        return Bid(id=bid_id, data=doc.content_as[dict])

    async def insert_bid(self, bid: Bid) -> None:
        data = self._staged.get(bid.data.auction_id)
        if data is None:
            raise RuntimeError("Auction must be read for update before inserting a bid")

        current = await self.read_current_high_bid(bid.data.auction_id)

        now = datetime.now(timezone.utc)
        bid.data.created_at = bid.data.created_at or now
        bid.data.updated_at = now
        await self._ctx.insert(self._bids, bid.id, Bid.to_document(bid.data))
        self._new_bids[bid.id] = bid.model_copy(deep=True)

        if bid.outranks(current):
            data.current_high_bid_id = bid.id
            data.current_high_bid_amount = bid.data.amount
            data.current_high_bidder_id = bid.data.bidder_id
        data.bid_count += 1
        self._dirty.add(bid.data.auction_id)

    async def update_auction_end_at(self, auction_id: str, new_end_at: datetime) -> None:
        data = self._staged.get(auction_id)
        if data is None:
            raise RuntimeError("Auction must be read for update before changing end_at")
        data.end_at = new_end_at
        data.extensions_count += 1
        self._dirty.add(auction_id)

    async def flush(self) -> None:
        now = datetime.now(timezone.utc)
        for auction_id in self._dirty:
            data = self._staged[auction_id]
            data.updated_at = now
            await self._ctx.replace(self._docs[auction_id], Auction.to_document(data))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class CouchbaseAuctionStore(AuctionStore):
    def __init__(self, transaction_timeout: Optional[timedelta] = None, cas_max_retries: int = 5):
        self.transaction_timeout = transaction_timeout
        self.cas_max_retries = cas_max_retries

    async def run_transaction(self, work: Callable[[AuctionTransaction], Awaitable[R]]) -> R:
        result: Dict[str, Any] = {}

        async def _logic(ctx: AttemptContext) -> None:
            txn = _CouchbaseTransaction(ctx, auctions, bids)
            # Overwritten on every attempt; only the committed attempt's value survives
            result["value"] = await work(txn)
            await txn.flush()

        try:
            auctions = await Auction.get_keyspace().get_collection()
            bids = await Bid.get_keyspace().get_collection()
            await run_couchbase_transaction(_logic, timeout=self.transaction_timeout)
        except CouchbaseException as e:
            raise _unavailable(e) from e
        return result["value"]

    async def create_auction(self, data: AuctionData, key: Optional[str] = None) -> Auction:
        try:
            return await Auction.create(data, key=key, user_id=data.created_by_user_id)
        except DocumentExistsException as e:
            raise ValueError(f"Auction {key} already exists") from e
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        try:
            return await Auction.get(auction_id)
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def get_current_high_bid(self, auction_id: str) -> Optional[Bid]:
        try:
            auction = await Auction.get(auction_id)
            if auction is None or auction.data.current_high_bid_id is None:
                return None
            return await Bid.get(auction.data.current_high_bid_id)
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def list_bids(self, auction_id: str, limit: int = 100) -> List[Bid]:
        try:
            return await bid_get_by_auction(auction_id, limit)
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def list_bids_by_bidder(self, bidder_id: str, limit: int = 50) -> List[Bid]:
        try:
            return await bid_get_by_bidder(bidder_id, limit)
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def mutate_auction(
        self, auction_id: str, mutator: AuctionMutator
    ) -> tuple[bool, Optional[str]]:
        try:
            return await _auction_cas_retry(auction_id, mutator, self.cas_max_retries)
        except CouchbaseException as e:
            raise _unavailable(e) from e

    async def find_auctions_to_close(self, now: datetime, limit: int = 100) -> List[Auction]:
        keyspace = Auction.get_keyspace()
        query = (
            f"SELECT META().id, * FROM {keyspace} "
            f"WHERE cancelled_at IS NULL AND closed_at IS NULL "
            f"AND STR_TO_MILLIS(end_at) <= $now_millis "
            f"ORDER BY STR_TO_MILLIS(end_at) ASC "
            f"LIMIT {int(limit)}"
        )
        try:
            rows = await keyspace.query(query, now_millis=int(now.timestamp() * 1000))
        except CouchbaseException as e:
            raise _unavailable(e) from e
        return Auction.from_rows(rows)
