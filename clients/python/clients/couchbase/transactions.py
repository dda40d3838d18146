from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from acouchbase.transactions import AttemptContext
from couchbase.options import TransactionOptions

from .config import get_cluster

TransactionLogic = Callable[[AttemptContext], Awaitable[Any]]


async def run_transaction(
    logic: TransactionLogic,
    timeout: Optional[timedelta] = None,
):
    """
    Run *logic* as a Couchbase distributed ACID transaction.

    The SDK re-runs *logic* from the start whenever an attempt hits a
    write-write conflict, so *logic* must only touch documents through the
    ``AttemptContext`` it receives. The transaction commits when *logic*
    returns and rolls back when it raises.

    Raises ``TransactionFailed``/``TransactionExpired`` when no attempt
    could commit, and ``TransactionCommitAmbiguous`` when the commit
    outcome is unknown.
    """
    cluster = await get_cluster()
    if timeout is None:
        return await cluster.transactions.run(logic)
    return await cluster.transactions.run(logic, TransactionOptions(timeout=timeout))
