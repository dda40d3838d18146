"""
Minimum next bid computation.

Amounts are integers in the currency's minor unit. Percent increments are
computed in ``Decimal`` and rounded up, so the floor is never understated.
"""

import math
from decimal import Decimal
from typing import Optional

from models.entities.couchbase.auctions import (
    FixedIncrement,
    IncrementStrategy,
    PercentIncrement,
)


def minimum_next_bid(
    strategy: IncrementStrategy,
    current_high_bid: Optional[int],
    starting_price: int,
) -> int:
    """Smallest amount a new bid must meet.

    The first bid only has to reach *starting_price*; the increment applies
    from the second bid on.
    """
    if current_high_bid is None:
        return starting_price

    if isinstance(strategy, PercentIncrement):
        return math.ceil(Decimal(current_high_bid) * (1 + strategy.value))
    if isinstance(strategy, FixedIncrement):
        return current_high_bid + strategy.value
    raise TypeError(f"Unknown increment strategy: {strategy!r}")
