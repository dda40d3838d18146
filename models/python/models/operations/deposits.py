"""
Deposit lookups used for bidder eligibility.

Deposits are authorized and captured by the payment flow; the bidding core
only reads their status.
"""

import logging
from typing import Optional

from couchbase.exceptions import CouchbaseException

from models.auction.errors import StorageUnavailable
from models.entities.couchbase.deposits import Deposit

logger = logging.getLogger(__name__)


async def deposit_get(auction_id: str, bidder_id: str) -> Optional[Deposit]:
    return await Deposit.get(Deposit.key_for(auction_id, bidder_id))


async def deposit_get_status(auction_id: str, bidder_id: str) -> Optional[str]:
    """Deposit status for *bidder_id* on *auction_id*, or None without a deposit.

    Matches ``DepositStatusLookup`` so it can back ``DepositAuthorized``.
    """
    try:
        deposit = await deposit_get(auction_id, bidder_id)
    except CouchbaseException as e:
        logger.warning(f"Deposit lookup failed for auction {auction_id}, bidder {bidder_id}: {e}")
        raise StorageUnavailable(f"Deposit lookup failed: {e}") from e
    return deposit.data.status if deposit else None
