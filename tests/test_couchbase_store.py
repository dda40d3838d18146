from datetime import timedelta

import pytest
from couchbase.exceptions import (
    CASMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
    TransactionCommitAmbiguous,
)

import clients.couchbase
from models.auction import StorageUnavailable
from models.entities.couchbase.auctions import Auction
from models.entities.couchbase.bids import Bid, BidData
from models.operations import auctions as ops
from models.operations.auctions import (
    CouchbaseAuctionStore,
    _auction_cas_retry,
    _CouchbaseTransaction,
    _unavailable,
)

from conftest import T0, auction_data

AUCTIONS = "auctions"
BIDS = "bids"


class FakeDoc:
    def __init__(self, collection, key, content):
        self.collection = collection
        self.id = key
        self.content_as = {dict: content}


class FakeAttemptContext:
    """Key-value attempt context over a dict of (collection, key) documents."""

    def __init__(self, docs=None):
        self.docs = dict(docs or {})
        self.inserted = []
        self.replaced = []

    async def get(self, collection, key):
        if (collection, key) not in self.docs:
            raise DocumentNotFoundException(f"{key} not found")
        return FakeDoc(collection, key, self.docs[(collection, key)])

    async def insert(self, collection, key, value):
        if (collection, key) in self.docs:
            raise DocumentExistsException(f"{key} exists")
        self.docs[(collection, key)] = value
        self.inserted.append(key)

    async def replace(self, doc, value):
        self.docs[(doc.collection, doc.id)] = value
        self.replaced.append(doc.id)


def _bid(bid_id, amount, bidder="alice", seconds=0):
    return Bid(
        id=bid_id,
        data=BidData(
            auction_id="a1",
            bidder_id=bidder,
            amount=amount,
            placed_at=T0 + timedelta(seconds=seconds),
        ),
    )


def _ctx_with_auction(**overrides):
    return FakeAttemptContext({(AUCTIONS, "a1"): Auction.to_document(auction_data(**overrides))})


class TestCouchbaseTransaction:
    async def test_missing_auction(self):
        txn = _CouchbaseTransaction(FakeAttemptContext(), AUCTIONS, BIDS)

        assert await txn.read_auction_for_update("a1") is None
        assert await txn.read_current_high_bid("a1") is None
        assert await txn.read_bid("b1") is None

    async def test_high_bid_read_through_pointer(self):
        ctx = _ctx_with_auction(
            current_high_bid_id="b1",
            current_high_bid_amount=1500,
            current_high_bidder_id="bob",
        )
        ctx.docs[(BIDS, "b1")] = Bid.to_document(_bid("b1", 1500, bidder="bob").data)
        txn = _CouchbaseTransaction(ctx, AUCTIONS, BIDS)

        high = await txn.read_current_high_bid("a1")

        assert high.id == "b1"
        assert high.data.amount == 1500
        assert high.data.bidder_id == "bob"

    async def test_insert_bid_moves_pointer(self):
        ctx = _ctx_with_auction()
        txn = _CouchbaseTransaction(ctx, AUCTIONS, BIDS)
        await txn.read_auction_for_update("a1")

        await txn.insert_bid(_bid("b1", 1000))
        await txn.insert_bid(_bid("b2", 1000, bidder="bob", seconds=5))

        auction = await txn.read_auction_for_update("a1")
        assert auction.data.current_high_bid_id == "b1"
        assert auction.data.current_high_bidder_id == "alice"
        assert auction.data.bid_count == 2
        assert (await txn.read_bid("b2")).data.bidder_id == "bob"
        assert ctx.inserted == ["b1", "b2"]
        assert ctx.replaced == []

        await txn.flush()

        assert ctx.replaced == ["a1"]
        stored = ctx.docs[(AUCTIONS, "a1")]
        assert stored["current_high_bid_id"] == "b1"
        assert stored["bid_count"] == 2

    async def test_flush_without_changes(self):
        ctx = _ctx_with_auction()
        txn = _CouchbaseTransaction(ctx, AUCTIONS, BIDS)
        await txn.read_auction_for_update("a1")

        await txn.flush()

        assert ctx.replaced == []

    async def test_reads_return_copies(self):
        txn = _CouchbaseTransaction(_ctx_with_auction(), AUCTIONS, BIDS)
        auction = await txn.read_auction_for_update("a1")
        auction.data.bid_count = 99

        assert (await txn.read_auction_for_update("a1")).data.bid_count == 0

    async def test_insert_requires_staged_auction(self):
        ctx = _ctx_with_auction()
        txn = _CouchbaseTransaction(ctx, AUCTIONS, BIDS)

        with pytest.raises(RuntimeError):
            await txn.insert_bid(_bid("b1", 1000))
        with pytest.raises(RuntimeError):
            await txn.update_auction_end_at("a1", T0 + timedelta(hours=2))
        assert ctx.inserted == []

    async def test_extension_is_written(self):
        ctx = _ctx_with_auction()
        txn = _CouchbaseTransaction(ctx, AUCTIONS, BIDS)
        await txn.read_auction_for_update("a1")
        new_end = T0 + timedelta(hours=1, minutes=2)

        await txn.update_auction_end_at("a1", new_end)
        await txn.flush()

        stored = Auction.model_validate({"id": "a1", "data": ctx.docs[(AUCTIONS, "a1")]})
        assert stored.data.end_at == new_end
        assert stored.data.extensions_count == 1


class TestUnavailable:
    def test_commit_ambiguous(self):
        error = _unavailable(TransactionCommitAmbiguous("commit timed out"))
        assert isinstance(error, StorageUnavailable)
        assert error.ambiguous is True

    @pytest.mark.parametrize("cause", [
        CouchbaseException(message="cluster unreachable"),
        DocumentNotFoundException("a1 not found"),
        CASMismatchException("cas changed"),
    ])
    def test_other_failures_not_ambiguous(self, cause):
        assert _unavailable(cause).ambiguous is False


class TestAuctionCasRetry:
    @pytest.fixture
    def delays(self, monkeypatch):
        recorded = []

        async def _sleep(seconds):
            recorded.append(seconds)

        monkeypatch.setattr(ops.asyncio, "sleep", _sleep)
        return recorded

    @pytest.fixture
    def stored(self, monkeypatch):
        """Serves a fresh copy of one auction; ``conflicts`` updates fail with a CAS mismatch."""
        state = {"conflicts": 0, "gets": 0, "updates": []}

        async def _get(auction_id):
            state["gets"] += 1
            if auction_id != "a1":
                return None
            return Auction(id="a1", data=auction_data())

        async def _update(item):
            if state["conflicts"]:
                state["conflicts"] -= 1
                raise CASMismatchException("cas changed")
            state["updates"].append(item)
            return item

        monkeypatch.setattr(Auction, "get", _get)
        monkeypatch.setattr(Auction, "update", _update)
        return state

    @staticmethod
    def _close(data):
        data.closed_at = T0
        return None

    async def test_succeeds_after_conflict(self, stored, delays):
        stored["conflicts"] = 1

        assert await _auction_cas_retry("a1", self._close) == (True, None)
        assert stored["gets"] == 2
        assert stored["updates"][0].data.closed_at == T0
        assert delays == [0.01]

    async def test_gives_up_after_max_retries(self, stored, delays):
        stored["conflicts"] = 100

        ok, err = await _auction_cas_retry("a1", self._close, max_retries=3)

        assert not ok
        assert err == "Concurrent update conflict, please retry"
        assert stored["gets"] == 4
        assert stored["updates"] == []
        assert delays == [0.01, 0.02, 0.04]

    async def test_not_found(self, stored, delays):
        assert await _auction_cas_retry("missing", self._close) == (False, "Auction missing not found")
        assert delays == []

    async def test_mutator_error_aborts(self, stored, delays):
        ok, err = await _auction_cas_retry("a1", lambda data: "Auction is already closed")

        assert (ok, err) == (False, "Auction is already closed")
        assert stored["updates"] == []

    async def test_store_maps_driver_errors(self, monkeypatch):
        async def _get(auction_id):
            raise CouchbaseException(message="kv timeout")

        monkeypatch.setattr(Auction, "get", _get)

        with pytest.raises(StorageUnavailable) as exc:
            await CouchbaseAuctionStore().mutate_auction("a1", self._close)
        assert exc.value.ambiguous is False


class FakeKeyspace:
    def __init__(self, collection):
        self.collection = collection

    async def get_collection(self):
        return self.collection


class TestCouchbaseAuctionStoreTransactions:
    @pytest.fixture
    def ctx(self, monkeypatch):
        ctx = _ctx_with_auction()
        monkeypatch.setattr(Auction, "get_keyspace", lambda: FakeKeyspace(AUCTIONS))
        monkeypatch.setattr(Bid, "get_keyspace", lambda: FakeKeyspace(BIDS))
        return ctx

    async def test_work_result_and_flush(self, ctx, monkeypatch):
        async def _run(logic, timeout=None):
            await logic(ctx)

        monkeypatch.setattr(ops, "run_couchbase_transaction", _run)

        async def _work(txn):
            await txn.read_auction_for_update("a1")
            await txn.insert_bid(_bid("b1", 1000))
            return "placed"

        assert await CouchbaseAuctionStore().run_transaction(_work) == "placed"
        assert ctx.docs[(AUCTIONS, "a1")]["current_high_bid_id"] == "b1"

    async def test_lost_commit_is_ambiguous(self, ctx, monkeypatch):
        async def _run(logic, timeout=None):
            await logic(ctx)
            raise TransactionCommitAmbiguous("commit outcome unknown")

        monkeypatch.setattr(ops, "run_couchbase_transaction", _run)

        async def _work(txn):
            await txn.read_auction_for_update("a1")
            await txn.insert_bid(_bid("b1", 1000))

        with pytest.raises(StorageUnavailable) as exc:
            await CouchbaseAuctionStore().run_transaction(_work)
        assert exc.value.ambiguous is True


def test_client_package_does_not_reexport_driver_exceptions():
    assert not hasattr(clients.couchbase, "CASMismatchException")
    assert not hasattr(clients.couchbase, "DocumentNotFoundException")
