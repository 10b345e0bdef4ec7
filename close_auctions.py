# close_auctions.py
# Run from cron (e.g. every minute): python close_auctions.py

import structlog

from gofresh.app_config import load_config
from gofresh.clock import system_clock
from gofresh.logging_setup import configure_logging
from gofresh.mongo import init_mongo
from gofresh.services.auction_service import AuctionService

logger = structlog.stdlib.get_logger()


def main() -> int:
    config = load_config()
    configure_logging(config.log_level, config.log_json)
    init_mongo(config)

    closed = AuctionService.close_ended_auctions(system_clock.now())
    logger.info("close_sweep_done", closed=len(closed))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
