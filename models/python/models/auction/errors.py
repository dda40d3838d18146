class AuctionError(Exception):
    """Base exception for the bidding core."""
    pass


class AuctionNotFound(AuctionError, LookupError):
    """Raised when an auction id does not exist."""

    def __init__(self, auction_id: str):
        super().__init__(f"Auction {auction_id} not found")
        self.auction_id = auction_id


class StorageUnavailable(AuctionError):
    """
    Raised when the store could not complete a read or a transaction.

    Retryable by the caller. When ``ambiguous`` is True the transaction may
    have committed, so a retry must carry the same idempotency key.
    """

    def __init__(self, message: str, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous


class InvalidAuctionTransition(AuctionError):
    """Raised when a lifecycle change is not allowed from the current status."""
    pass
