from typing import Optional, Literal
from pydantic import AwareDatetime, Field
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class BidData(BaseCouchbaseEntityData):
    auction_id: str
    bidder_id: str
    amount: int = Field(gt=0)  # minor currency units
    placed_at: AwareDatetime
    # Rejected bids are never persisted
    status: Literal["accepted"] = "accepted"
    idempotency_key: Optional[str] = None


class Bid(BaseModelCouchbase[BidData]):
    _collection_name = "bids"

    def outranks(self, other: Optional["Bid"]) -> bool:
        """Higher amount wins; on equal amounts the earlier bid keeps the lead."""
        if other is None:
            return True
        if self.data.amount != other.data.amount:
            return self.data.amount > other.data.amount
        return self.data.placed_at < other.data.placed_at
