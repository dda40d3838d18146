"""
Bidder eligibility collaborators.

The engine only consumes the boolean answer. Deposit authorization, KYC and
terms acceptance live in other systems; these adapters combine their
answers.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from models.entities.couchbase.auctions import Auction

# (auction_id, bidder_id) -> deposit status, or None when there is no deposit
DepositStatusLookup = Callable[[str, str], Awaitable[Optional[str]]]

AUTHORIZED_DEPOSIT_STATUSES = ("authorized", "captured")


class EligibilityCheck(ABC):
    @abstractmethod
    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        ...


class AlwaysEligible(EligibilityCheck):
    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        return True


class AllOf(EligibilityCheck):
    """Eligible only if every check passes. Stops at the first failure."""

    def __init__(self, *checks: EligibilityCheck):
        self.checks = checks

    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        for check in self.checks:
            if not await check.is_bidder_eligible(auction, bidder_id):
                return False
        return True


class NotSeller(EligibilityCheck):
    """Sellers cannot bid on their own auctions."""

    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        return auction.data.seller_id != bidder_id


class DepositAuthorized(EligibilityCheck):
    """Requires an authorized (or already captured) deposit when the auction asks for one."""

    def __init__(self, lookup: DepositStatusLookup):
        self.lookup = lookup

    async def is_bidder_eligible(self, auction: Auction, bidder_id: str) -> bool:
        if not auction.data.deposit_required:
            return True
        status = await self.lookup(auction.id, bidder_id)
        return status in AUTHORIZED_DEPOSIT_STATUSES
