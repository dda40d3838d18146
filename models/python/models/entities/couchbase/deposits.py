from typing import Optional, Literal
from datetime import datetime
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData

DepositStatus = Literal["pending", "authorized", "captured", "cancelled", "failed"]


class DepositData(BaseCouchbaseEntityData):
    auction_id: str
    bidder_id: str
    amount: int  # minor currency units
    payment_intent_id: str
    status: DepositStatus = "pending"
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class Deposit(BaseModelCouchbase[DepositData]):
    _collection_name = "deposits"

    @staticmethod
    def key_for(auction_id: str, bidder_id: str) -> str:
        """One deposit per bidder per auction."""
        return f"deposit::{auction_id}::{bidder_id}"
