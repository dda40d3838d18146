from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel

from models.entities.couchbase.bids import Bid


class RejectionReason(str, Enum):
    AUCTION_NOT_ACTIVE = "auction_not_active"
    BIDDER_NOT_ELIGIBLE = "bidder_not_eligible"
    BID_TOO_LOW = "bid_too_low"


class BidAccepted(BaseModel):
    outcome: Literal["accepted"] = "accepted"
    bid: Bid
    end_at: datetime
    extended: bool = False
    previous_high_bid: Optional[Bid] = None
    # True when an idempotency key matched an already persisted bid
    replayed: bool = False


class BidRejected(BaseModel):
    outcome: Literal["rejected"] = "rejected"
    reason: RejectionReason
    # Only set for BID_TOO_LOW
    minimum_next_bid: Optional[int] = None


BidOutcome = Union[BidAccepted, BidRejected]


class ClosedAuction(BaseModel):
    auction_id: str
    listing_id: str
    closed_at: datetime
    winning_bid_id: Optional[str] = None
    winner_id: Optional[str] = None
    winning_amount: Optional[int] = None
    total_bids: int = 0
