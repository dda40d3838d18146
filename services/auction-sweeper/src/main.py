import asyncio
import signal

import conf
from utils import log

from clients.couchbase import check_connection
from models.auction import AllOf, AuctionEngine, DepositAuthorized, NotSeller
from models.operations.auctions import CouchbaseAuctionStore
from models.operations.deposits import deposit_get_status
from scheduler import init_scheduler, shutdown_scheduler

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)


def build_engine() -> AuctionEngine:
    return AuctionEngine(
        store=CouchbaseAuctionStore(),
        eligibility=AllOf(NotSeller(), DepositAuthorized(deposit_get_status)),
        config=conf.get_engine_config(),
    )


async def run() -> None:
    if not conf.validate():
        raise ValueError("Invalid configuration.")

    logger.info("Verifying Couchbase connection...")
    await check_connection()
    logger.info("Couchbase connection verified.")

    sweeper_conf = conf.get_sweeper_conf()
    init_scheduler(build_engine(), sweeper_conf.interval_seconds, sweeper_conf.batch_size)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        shutdown_scheduler()
        logger.info("Auction sweeper stopped")


if __name__ == "__main__":
    asyncio.run(run())
