from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from pydantic import AwareDatetime, BaseModel, Field, model_validator
from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class PercentIncrement(BaseModel):
    """Next bid must be at least the high bid grown by *value* (0.05 == 5%)."""
    kind: Literal["percent"] = "percent"
    value: Decimal = Field(gt=0)


class FixedIncrement(BaseModel):
    """Next bid must be at least the high bid plus *value* minor units."""
    kind: Literal["fixed"] = "fixed"
    value: int = Field(gt=0)


IncrementStrategy = Annotated[
    Union[PercentIncrement, FixedIncrement],
    Field(discriminator="kind"),
]


class AuctionData(BaseCouchbaseEntityData):
    # Ownership
    listing_id: str
    seller_id: Optional[str] = None

    # Config (immutable after creation)
    increment: IncrementStrategy
    starting_price: int = Field(gt=0)  # minor currency units
    soft_close_window_seconds: int = Field(ge=0)
    soft_close_extension_seconds: int = Field(ge=0)
    deposit_required: bool = True

    # Schedule
    start_at: AwareDatetime
    scheduled_end_at: AwareDatetime
    end_at: AwareDatetime  # moves forward on soft close
    extensions_count: int = 0

    # Administrative override; status is otherwise derived from the clock
    cancelled_at: Optional[AwareDatetime] = None

    # Denormalized high bid, written in the same transaction as the bid
    current_high_bid_id: Optional[str] = None
    current_high_bid_amount: Optional[int] = None
    current_high_bidder_id: Optional[str] = None
    bid_count: int = 0

    # Close-out
    closed_at: Optional[AwareDatetime] = None
    winning_bid_id: Optional[str] = None
    winner_id: Optional[str] = None
    winning_amount: Optional[int] = None

    @model_validator(mode="after")
    def _check_schedule(self) -> "AuctionData":
        if self.scheduled_end_at <= self.start_at:
            raise ValueError("scheduled_end_at must be after start_at")
        if self.end_at < self.scheduled_end_at:
            raise ValueError("end_at may not be earlier than scheduled_end_at")
        return self


class Auction(BaseModelCouchbase[AuctionData]):
    _collection_name = "auctions"
