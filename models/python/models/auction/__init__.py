from .clock import Clock, SystemClock, FixedClock
from .errors import (
    AuctionError,
    AuctionNotFound,
    StorageUnavailable,
    InvalidAuctionTransition,
)
from .increment import minimum_next_bid
from .soft_close import extend_end_at, in_soft_close
from .status import AuctionStatus, AuctionState, derive_status, compute_auction_state
from .results import (
    RejectionReason,
    BidAccepted,
    BidRejected,
    BidOutcome,
    ClosedAuction,
)
from .validator import validate_bid
from .store import AuctionStore, AuctionTransaction, InMemoryAuctionStore
from .eligibility import (
    EligibilityCheck,
    AlwaysEligible,
    AllOf,
    NotSeller,
    DepositAuthorized,
)
from .engine import (
    AuctionDefaults,
    EngineConfig,
    BidNotifier,
    AuctionEngine,
    idempotent_bid_id,
)
