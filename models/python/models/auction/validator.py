from datetime import datetime
from typing import Optional

from models.entities.couchbase.auctions import AuctionData

from .increment import minimum_next_bid
from .results import BidRejected, RejectionReason
from .status import derive_status


def validate_bid(
    auction: AuctionData,
    current_high_bid: Optional[int],
    amount: int,
    bidder_eligible: bool,
    now: datetime,
) -> Optional[BidRejected]:
    """
    Decide whether *amount* may be accepted right now.

    Returns ``None`` to accept, otherwise the first failing check in order:
    auction not active, bidder not eligible, amount below the floor. Pure:
    no reads or writes happen here.
    """
    if derive_status(auction, now) != "active":
        return BidRejected(reason=RejectionReason.AUCTION_NOT_ACTIVE)

    if not bidder_eligible:
        return BidRejected(reason=RejectionReason.BIDDER_NOT_ELIGIBLE)

    floor = minimum_next_bid(auction.increment, current_high_bid, auction.starting_price)
    if amount < floor:
        return BidRejected(reason=RejectionReason.BID_TOO_LOW, minimum_next_bid=floor)

    return None
