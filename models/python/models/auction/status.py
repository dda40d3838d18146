from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from models.entities.couchbase.auctions import AuctionData
from models.entities.couchbase.bids import Bid

from .increment import minimum_next_bid

AuctionStatus = Literal["scheduled", "active", "ended", "cancelled"]


def derive_status(data: AuctionData, now: datetime) -> AuctionStatus:
    """Status from the clock against ``[start_at, end_at)``, cancellation wins."""
    if data.cancelled_at is not None:
        return "cancelled"
    if now < data.start_at:
        return "scheduled"
    if now < data.end_at:
        return "active"
    return "ended"


class AuctionState(BaseModel):
    """Read-only view of an auction for display; nothing here is persisted."""
    auction_id: str
    status: AuctionStatus
    has_started: bool
    has_ended: bool
    is_active: bool
    time_left_seconds: float
    current_high_bid: Optional[int] = None
    current_high_bidder_id: Optional[str] = None
    minimum_next_bid: int
    total_bids: int
    end_at: datetime
    extensions_count: int


def compute_auction_state(
    auction_id: str,
    data: AuctionData,
    high_bid: Optional[Bid],
    now: datetime,
) -> AuctionState:
    status = derive_status(data, now)
    high_amount = high_bid.data.amount if high_bid else None
    return AuctionState(
        auction_id=auction_id,
        status=status,
        has_started=now >= data.start_at,
        has_ended=now >= data.end_at,
        is_active=status == "active",
        time_left_seconds=max(0.0, (data.end_at - now).total_seconds()),
        current_high_bid=high_amount,
        current_high_bidder_id=high_bid.data.bidder_id if high_bid else None,
        minimum_next_bid=minimum_next_bid(data.increment, high_amount, data.starting_price),
        total_bids=data.bid_count,
        end_at=data.end_at,
        extensions_count=data.extensions_count,
    )
