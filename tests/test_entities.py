from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models.entities.couchbase.auctions import (
    Auction,
    AuctionData,
    FixedIncrement,
    PercentIncrement,
)
from models.entities.couchbase.bids import Bid, BidData
from models.entities.couchbase.deposits import Deposit

from conftest import T0, auction_data


class TestAuctionData:
    def test_end_must_follow_start(self):
        with pytest.raises(ValidationError):
            auction_data(scheduled_end_at=T0 - timedelta(hours=1), end_at=T0 - timedelta(hours=1))

    def test_end_at_not_before_scheduled_end(self):
        with pytest.raises(ValidationError):
            auction_data(end_at=T0)

    def test_starting_price_must_be_positive(self):
        with pytest.raises(ValidationError):
            auction_data(starting_price=0)

    def test_negative_window_rejected(self):
        with pytest.raises(ValidationError):
            auction_data(soft_close_window_seconds=-1)

    @pytest.mark.parametrize("field", ["start_at", "scheduled_end_at", "end_at", "cancelled_at"])
    def test_naive_datetimes_rejected(self, field):
        naive = {
            "start_at": T0 - timedelta(hours=1),
            "scheduled_end_at": T0 + timedelta(hours=1),
            "end_at": T0 + timedelta(hours=1),
            "cancelled_at": T0,
        }[field].replace(tzinfo=None)
        with pytest.raises(ValidationError):
            auction_data(**{field: naive})

    def test_zero_window_allowed(self):
        assert auction_data(soft_close_window_seconds=0).soft_close_window_seconds == 0

    @pytest.mark.parametrize("increment", [
        {"kind": "percent", "value": "0"},
        {"kind": "percent", "value": "-0.05"},
        {"kind": "fixed", "value": 0},
        {"kind": "flat", "value": 5},
    ])
    def test_invalid_increment(self, increment):
        with pytest.raises(ValidationError):
            auction_data(increment=increment)

    def test_increment_discriminated_by_kind(self):
        assert isinstance(auction_data(increment={"kind": "fixed", "value": 500}).increment, FixedIncrement)
        percent = auction_data(increment={"kind": "percent", "value": "0.05"}).increment
        assert isinstance(percent, PercentIncrement)
        assert percent.value == Decimal("0.05")

    def test_stored_document_keeps_exact_percent(self):
        doc = Auction.to_document(auction_data())
        assert doc["increment"] == {"kind": "percent", "value": "0.05"}
        assert AuctionData.model_validate(doc).increment.value == Decimal("0.05")


class TestBid:
    def _bid(self, amount, seconds=0):
        return Bid(
            id=f"bid-{amount}-{seconds}",
            data=BidData(
                auction_id="a1",
                bidder_id="alice",
                amount=amount,
                placed_at=T0 + timedelta(seconds=seconds),
            ),
        )

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            self._bid(0)

    def test_placed_at_must_be_aware(self):
        with pytest.raises(ValidationError):
            BidData(
                auction_id="a1",
                bidder_id="alice",
                amount=1000,
                placed_at=T0.replace(tzinfo=None),
            )

    def test_higher_amount_outranks(self):
        assert self._bid(2000, seconds=10).outranks(self._bid(1000))
        assert not self._bid(1000).outranks(self._bid(2000, seconds=10))

    def test_earlier_bid_wins_tie(self):
        assert self._bid(1000, seconds=0).outranks(self._bid(1000, seconds=5))
        assert not self._bid(1000, seconds=5).outranks(self._bid(1000, seconds=0))

    def test_outranks_nothing(self):
        assert self._bid(1).outranks(None)

    def test_from_rows_skips_empty_rows(self):
        rows = [
            {"id": "b1", "bids": self._bid(1000).data.model_dump(mode="json")},
            {"id": "b2", "bids": None},
        ]
        bids = Bid.from_rows(rows)
        assert [b.id for b in bids] == ["b1"]
        assert bids[0].data.amount == 1000


def test_deposit_key():
    assert Deposit.key_for("a1", "alice") == "deposit::a1::alice"
