"""
Auction state machine.

``AuctionEngine.submit_bid`` is the only writer of bids and of an auction's
``end_at``. Every decision that depends on the current high bid runs inside
the store's transaction:

1. Read the auction for update and its current high bid
2. Validate (status, eligibility, amount against the increment floor)
3. On rejection return ``BidRejected`` without writing
4. On acceptance insert the bid and, if the soft-close window was hit,
   push ``end_at`` out, in the same transaction
5. Return ``BidAccepted`` with the persisted bid and the resulting ``end_at``

Storage failures surface as ``StorageUnavailable``; nothing is retried here.
"""

import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.entities.couchbase.auctions import (
    Auction,
    AuctionData,
    FixedIncrement,
    IncrementStrategy,
)
from models.entities.couchbase.bids import Bid, BidData

from .clock import Clock, SystemClock
from .eligibility import EligibilityCheck
from .errors import AuctionNotFound, InvalidAuctionTransition, StorageUnavailable
from .increment import minimum_next_bid
from .results import BidAccepted, BidOutcome, BidRejected, ClosedAuction, RejectionReason
from .soft_close import extend_end_at, in_soft_close
from .status import AuctionState, compute_auction_state, derive_status
from .store import AuctionStore, AuctionTransaction
from .validator import validate_bid

logger = logging.getLogger(__name__)


class AuctionDefaults(BaseModel):
    """Values used by ``create_auction`` when the caller leaves them out."""
    increment: IncrementStrategy = FixedIncrement(value=500)
    soft_close_window_seconds: int = Field(default=120, ge=0)
    soft_close_extension_seconds: int = Field(default=120, ge=0)
    deposit_required: bool = True


class EngineConfig(BaseModel):
    defaults: AuctionDefaults = Field(default_factory=AuctionDefaults)
    # None leaves soft close uncapped
    max_soft_close_extensions: Optional[int] = Field(default=None, ge=0)
    history_limit: int = Field(default=100, gt=0)


class BidNotifier(ABC):
    """Told about every newly accepted bid after it has been committed."""

    @abstractmethod
    async def bid_accepted(self, accepted: BidAccepted) -> None:
        ...


def idempotent_bid_id(auction_id: str, bidder_id: str, idempotency_key: str) -> str:
    digest = hashlib.sha256(f"{auction_id}:{bidder_id}:{idempotency_key}".encode()).hexdigest()
    return f"bid_{digest[:32]}"


class AuctionEngine:
    def __init__(
        self,
        store: AuctionStore,
        eligibility: EligibilityCheck,
        clock: Optional[Clock] = None,
        config: Optional[EngineConfig] = None,
        notifier: Optional[BidNotifier] = None,
    ):
        self.store = store
        self.eligibility = eligibility
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig()
        self.notifier = notifier

    # -----------------------------------------------------------------------
    # Bidding
    # -----------------------------------------------------------------------

    async def submit_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> BidOutcome:
        """
        Place a bid of *amount* minor units.

        Returns ``BidAccepted`` or ``BidRejected``. Raises ``AuctionNotFound``
        for an unknown auction and ``StorageUnavailable`` when the store
        fails. With an *idempotency_key*, resubmitting a bid that was already
        persisted returns it again (``replayed=True``) instead of bidding twice.
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValueError("amount must be an integer number of minor currency units")

        # Seller and deposit requirement never change, so a plain read is enough here
        snapshot = await self._load(auction_id)
        # Status is checked again inside the transaction
        if derive_status(snapshot.data, self.clock.now()) == "active":
            eligible = await self.eligibility.is_bidder_eligible(snapshot, bidder_id)
        elif idempotency_key:
            # Only a replay of an already persisted bid can succeed now
            eligible = None
        else:
            logger.info(
                f"Bid rejected on auction {auction_id}: bidder={bidder_id}, "
                f"amount={amount}, reason={RejectionReason.AUCTION_NOT_ACTIVE.value}"
            )
            return BidRejected(reason=RejectionReason.AUCTION_NOT_ACTIVE)

        if idempotency_key:
            bid_id = idempotent_bid_id(auction_id, bidder_id, idempotency_key)
        else:
            bid_id = str(uuid.uuid4())

        async def _attempt(txn: AuctionTransaction) -> Optional[BidOutcome]:
            auction = await txn.read_auction_for_update(auction_id)
            if auction is None:
                return None

            if idempotency_key:
                existing = await txn.read_bid(bid_id)
                if existing is not None:
                    return BidAccepted(bid=existing, end_at=auction.data.end_at, replayed=True)

            if eligible is None:
                return BidRejected(reason=RejectionReason.AUCTION_NOT_ACTIVE)

            now = self.clock.now()
            high_bid = await txn.read_current_high_bid(auction_id)
            rejection = validate_bid(
                auction.data,
                high_bid.data.amount if high_bid else None,
                amount,
                eligible,
                now,
            )
            if rejection is not None:
                return rejection

            bid = Bid(
                id=bid_id,
                data=BidData(
                    auction_id=auction_id,
                    bidder_id=bidder_id,
                    amount=amount,
                    placed_at=now,
                    idempotency_key=idempotency_key,
                    created_by_user_id=bidder_id,
                ),
            )
            await txn.insert_bid(bid)

            new_end_at = self._end_at_after_bid(auction, now)
            extended = new_end_at != auction.data.end_at
            if extended:
                await txn.update_auction_end_at(auction_id, new_end_at)

            return BidAccepted(
                bid=bid,
                end_at=new_end_at,
                extended=extended,
                previous_high_bid=high_bid,
            )

        try:
            outcome = await self.store.run_transaction(_attempt)
        except StorageUnavailable as e:
            logger.warning(
                f"Bid on auction {auction_id} by {bidder_id} failed in storage "
                f"(ambiguous={e.ambiguous}): {e}"
            )
            raise

        if outcome is None:
            raise AuctionNotFound(auction_id)

        if isinstance(outcome, BidRejected):
            logger.info(
                f"Bid rejected on auction {auction_id}: bidder={bidder_id}, "
                f"amount={amount}, reason={outcome.reason.value}"
            )
            return outcome

        if outcome.replayed:
            if outcome.bid.data.amount != amount:
                logger.warning(
                    f"Idempotency key reused with a different amount on auction {auction_id}: "
                    f"stored={outcome.bid.data.amount}, submitted={amount}"
                )
            return outcome

        logger.info(
            f"Bid accepted on auction {auction_id}: bid={outcome.bid.id}, "
            f"bidder={bidder_id}, amount={amount}"
        )
        if outcome.extended:
            logger.info(f"Auction {auction_id} soft close: end_at extended to {outcome.end_at.isoformat()}")
        await self._notify(outcome)
        return outcome

    def _end_at_after_bid(self, auction: Auction, now: datetime) -> datetime:
        d = auction.data
        cap = self.config.max_soft_close_extensions
        if cap is not None and d.extensions_count >= cap:
            if in_soft_close(d.end_at, now, d.soft_close_window_seconds):
                logger.info(f"Auction {auction.id} reached its soft close cap of {cap} extensions")
            return d.end_at
        return extend_end_at(
            d.end_at,
            now,
            d.soft_close_window_seconds,
            d.soft_close_extension_seconds,
        )

    async def _notify(self, accepted: BidAccepted) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.bid_accepted(accepted)
        except Exception as e:
            # The bid is committed; a lost notification must not undo it
            logger.warning(f"Failed to send notifications for bid {accepted.bid.id}: {e}")

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def compute_minimum_next_bid(self, auction_id: str) -> int:
        """Current floor for the next bid, without placing one."""
        auction = await self._load(auction_id)
        high_bid = await self.store.get_current_high_bid(auction_id)
        return minimum_next_bid(
            auction.data.increment,
            high_bid.data.amount if high_bid else None,
            auction.data.starting_price,
        )

    async def get_auction_state(self, auction_id: str) -> AuctionState:
        auction = await self._load(auction_id)
        high_bid = await self.store.get_current_high_bid(auction_id)
        return compute_auction_state(auction_id, auction.data, high_bid, self.clock.now())

    async def list_bids(self, auction_id: str, limit: Optional[int] = None) -> List[Bid]:
        return await self.store.list_bids(auction_id, limit or self.config.history_limit)

    async def list_bids_by_bidder(self, bidder_id: str, limit: Optional[int] = None) -> List[Bid]:
        return await self.store.list_bids_by_bidder(bidder_id, limit or self.config.history_limit)

    async def _load(self, auction_id: str) -> Auction:
        auction = await self.store.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)
        return auction

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def create_auction(
        self,
        listing_id: str,
        start_at: datetime,
        end_at: datetime,
        starting_price: int,
        seller_id: Optional[str] = None,
        increment: Optional[IncrementStrategy] = None,
        soft_close_window_seconds: Optional[int] = None,
        soft_close_extension_seconds: Optional[int] = None,
        deposit_required: Optional[bool] = None,
        key: Optional[str] = None,
    ) -> Auction:
        """Create an auction. Configuration is validated here, once."""
        defaults = self.config.defaults
        data = AuctionData(
            listing_id=listing_id,
            seller_id=seller_id,
            increment=increment if increment is not None else defaults.increment,
            starting_price=starting_price,
            soft_close_window_seconds=(
                soft_close_window_seconds
                if soft_close_window_seconds is not None
                else defaults.soft_close_window_seconds
            ),
            soft_close_extension_seconds=(
                soft_close_extension_seconds
                if soft_close_extension_seconds is not None
                else defaults.soft_close_extension_seconds
            ),
            deposit_required=(
                deposit_required if deposit_required is not None else defaults.deposit_required
            ),
            start_at=start_at,
            scheduled_end_at=end_at,
            end_at=end_at,
            created_by_user_id=seller_id,
        )
        auction = await self.store.create_auction(data, key=key)
        logger.info(
            f"Auction {auction.id} created for listing {listing_id}: "
            f"{start_at.isoformat()} -> {end_at.isoformat()}"
        )
        return auction

    async def cancel_auction(self, auction_id: str) -> Auction:
        """Cancel a scheduled or active auction. Cancelled is terminal."""
        await self._load(auction_id)
        now = self.clock.now()

        def _mutate(d: AuctionData) -> Optional[str]:
            status = derive_status(d, now)
            if status not in ("scheduled", "active"):
                return f"Cannot cancel auction with status: {status}"
            d.cancelled_at = now
            return None

        ok, err = await self.store.mutate_auction(auction_id, _mutate)
        if not ok:
            raise InvalidAuctionTransition(err)
        logger.info(f"Auction {auction_id} cancelled")
        return await self._load(auction_id)

    async def close_ended_auctions(self, limit: int = 100) -> List[ClosedAuction]:
        """
        Record the outcome of every auction that has ended but is not closed.

        The winner is the auction's current high bid, or nobody when no bid
        was placed. Auctions extended or cancelled in the meantime are skipped
        and picked up by a later run if still due.
        A storage failure on one auction does not stop the rest of the batch;
        only failing to find due auctions raises ``StorageUnavailable``.
        """
        now = self.clock.now()
        due = await self.store.find_auctions_to_close(now, limit)
        closed = []

        for auction in due:
            final = {}

            def _mutate(d: AuctionData) -> Optional[str]:
                if d.closed_at is not None:
                    return "Auction already closed"
                status = derive_status(d, now)
                if status != "ended":
                    return f"Auction is {status}"
                d.closed_at = now
                d.winning_bid_id = d.current_high_bid_id
                d.winner_id = d.current_high_bidder_id
                d.winning_amount = d.current_high_bid_amount
                final["data"] = d
                return None

            try:
                ok, err = await self.store.mutate_auction(auction.id, _mutate)
            except StorageUnavailable as e:
                # Still due, so the next run picks it up again
                logger.warning(f"Failed to close auction {auction.id}: {e}")
                continue
            if not ok:
                logger.info(f"Skipped closing auction {auction.id}: {err}")
                continue

            d = final["data"]
            summary = ClosedAuction(
                auction_id=auction.id,
                listing_id=d.listing_id,
                closed_at=now,
                winning_bid_id=d.current_high_bid_id,
                winner_id=d.current_high_bidder_id,
                winning_amount=d.current_high_bid_amount,
                total_bids=d.bid_count,
            )
            closed.append(summary)
            if summary.winner_id:
                logger.info(
                    f"Auction {auction.id} closed: winner={summary.winner_id}, "
                    f"amount={summary.winning_amount}"
                )
            else:
                logger.info(f"Auction {auction.id} closed without bids")

        return closed
