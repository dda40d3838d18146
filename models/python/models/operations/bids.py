"""
Bid query operations.

Simple reads. Bids are only ever written by the auction transaction in
operations/auctions.py.
"""

from typing import List, Optional

from models.entities.couchbase.bids import Bid


async def bid_get(bid_id: str) -> Optional[Bid]:
    return await Bid.get(bid_id)


async def bid_get_by_auction(auction_id: str, limit: int = 100) -> List[Bid]:
    """Get bids for an auction, ordered by amount descending."""
    keyspace = Bid.get_keyspace()
    query = (
        f"SELECT META().id, * FROM {keyspace} "
        f"WHERE auction_id = $auction_id "
        f"ORDER BY amount DESC, STR_TO_MILLIS(placed_at) ASC "
        f"LIMIT {int(limit)}"
    )
    rows = await keyspace.query(query, auction_id=auction_id)
    return Bid.from_rows(rows)


async def bid_get_by_bidder(bidder_id: str, limit: int = 50) -> List[Bid]:
    """Get a bidder's bid history, ordered by most recent first."""
    keyspace = Bid.get_keyspace()
    query = (
        f"SELECT META().id, * FROM {keyspace} "
        f"WHERE bidder_id = $bidder_id "
        f"ORDER BY STR_TO_MILLIS(placed_at) DESC "
        f"LIMIT {int(limit)}"
    )
    rows = await keyspace.query(query, bidder_id=bidder_id)
    return Bid.from_rows(rows)
