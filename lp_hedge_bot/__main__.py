"""
Process entry point.

    python -m lp_hedge_bot run          # rebalancing loop (default)
    python -m lp_hedge_bot close-all    # withdraw and burn every owned position
    python -m lp_hedge_bot record-fees  # append pool fee growth to the JSONL log

Configuration comes from the environment (and a .env file if present).
"""
import argparse
import sys

import structlog

from lp_hedge_bot.chain import BlockchainClient, Wallet
from lp_hedge_bot.config import Settings
from lp_hedge_bot.controller import RebalanceController
from lp_hedge_bot.errors import ConfigError
from lp_hedge_bot.fee_growth import FeeGrowthRecorder
from lp_hedge_bot.hedge import OkxHedgeClient
from lp_hedge_bot.logging import setup_logging
from lp_hedge_bot.pool import PoolStateClient
from lp_hedge_bot.position_manager import PositionManagerClient
from lp_hedge_bot.swap_router import SwapRouterClient

log = structlog.get_logger()


class Bot:
    """Wires the on-chain and venue clients for one pool."""

    def __init__(self, settings: Settings):
        self.settings = settings
        strategy = settings.strategy
        self.chain = BlockchainClient(settings.chain, read_attempts=strategy.read_retry_attempts)
        self.pool_state = PoolStateClient(self.chain, settings.chain.factory_address)
        self.wallet = Wallet(self.chain, settings.pool, strategy.approval_threshold)
        self.positions = PositionManagerClient(
            self.chain,
            self.pool_state,
            settings.chain.position_manager_address,
            deadline_seconds=strategy.tx_deadline_seconds,
        )
        self.router = SwapRouterClient(self.chain, settings.chain.swap_router_address)
        self.hedge = OkxHedgeClient(settings.hedge, read_attempts=strategy.read_retry_attempts)

    def controller(self) -> RebalanceController:
        return RebalanceController(
            pool=self.settings.pool,
            config=self.settings.strategy,
            hedge_settings=self.settings.hedge,
            positions=self.positions,
            pool_state=self.pool_state,
            wallet=self.wallet,
            router=self.router,
            hedge=self.hedge,
            initial_position_id=self.settings.initial_position_id,
        )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="lp_hedge_bot", description=__doc__.splitlines()[1])
    parser.add_argument("command", nargs="?", default="run", choices=["run", "close-all", "record-fees"])
    parser.add_argument("--interval", type=float, default=30 * 60, help="seconds between fee growth samples")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level, settings.json_logs, settings.log_file)
    bot = Bot(settings)
    bot.chain.connect()

    try:
        if args.command == "close-all":
            burned = bot.positions.close_all()
            log.info("closed_all_positions", count=len(burned))
        elif args.command == "record-fees":
            FeeGrowthRecorder(bot.pool_state, settings.pool, settings.fee_log_dir).run_forever(args.interval)
        else:
            bot.controller().run_forever()
    except KeyboardInterrupt:
        log.info("stopped")
    finally:
        bot.hedge.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
