"""
Rebalancing controller: keeps one liquidity position centred on the pool
price and the derivatives hedge sized against the token0 it holds.

One iteration runs to completion, including every confirmation, before the
fixed idle delay. Nothing read from chain or venue outlives an iteration;
the in-memory position id is only a hint about which registry entry to read.

States:
    NO_POSITION                -> REOPENING
    REOPENING                  -> POSITION_ACTIVE             (mint confirmed, or live position adopted)
    POSITION_ACTIVE            -> POSITION_ACTIVE             (in range, hedge re-synced)
    POSITION_ACTIVE            -> REOPENING                   (position gone or not owned)
    POSITION_ACTIVE            -> POSITION_INACTIVE_CLOSING   (out of range)
    POSITION_INACTIVE_CLOSING  -> REOPENING                   (decrease + collect done)

A failed step leaves the state where it was, so the next pass re-reads and
resumes from the same point. REOPENING adopts a live position the wallet
already holds in the pool before it mints a new one.
"""
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

import structlog

from lp_hedge_bot.config import HedgeSettings, StrategyConfig
from lp_hedge_bot.errors import (
    InvariantViolation,
    LPHedgeError,
    PositionNotFound,
    TransactionReverted,
    TransientNetworkError,
)
from lp_hedge_bot.hedge import HedgeOrder, compute_hedge_order
from lp_hedge_bot.pool import Pool
from lp_hedge_bot.position_manager import Position
from lp_hedge_bot.swap_sizing import SwapPlan, min_amount_out, plan_swap
from lp_hedge_bot.tick_math import amounts_for_liquidity, tick_range

log = structlog.get_logger()


class ControllerState(str, Enum):
    NO_POSITION = "no_position"
    POSITION_ACTIVE = "position_active"
    POSITION_INACTIVE_CLOSING = "position_inactive_closing"
    REOPENING = "reopening"


@dataclass(frozen=True)
class RebalanceDecision:
    needs_exit: bool
    new_tick_lower: int
    new_tick_upper: int
    swap_plan: Optional[SwapPlan]
    tick: int
    price: Decimal


class RebalanceController:
    def __init__(
        self,
        pool: Pool,
        config: StrategyConfig,
        hedge_settings: HedgeSettings,
        positions,
        pool_state,
        wallet,
        router,
        hedge,
        initial_position_id: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config.validate(pool)
        self.pool = pool
        self.config = config
        self.hedge_settings = hedge_settings
        self.positions = positions
        self.pool_state = pool_state
        self.wallet = wallet
        self.router = router
        self.hedge = hedge
        self._sleep = sleep

        self.position_id: Optional[int] = initial_position_id
        self.state = ControllerState.NO_POSITION if initial_position_id is None else ControllerState.POSITION_ACTIVE
        self._log = log.bind(component="controller", pool=pool.name)

    def _transition(self, new_state: ControllerState) -> None:
        if new_state != self.state:
            self._log.info("state_transition", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state

    # --- loop ---

    def run_forever(self, max_iterations: Optional[int] = None) -> None:
        """Run iterations until the process is stopped.

        Errors never escape an iteration; the fixed delay is the only backoff.
        """
        self._log.info("controller_started", state=self.state.value, position_id=self.position_id)
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            try:
                self.run_once()
            except TransientNetworkError as exc:
                self._log.warning("iteration_transient_error", error=str(exc), state=self.state.value)
            except TransactionReverted as exc:
                self._log.error("iteration_tx_reverted", error=str(exc), tx_hash=exc.tx_hash, state=self.state.value)
            except InvariantViolation as exc:
                self._log.error("iteration_invariant_violation", error=str(exc), state=self.state.value)
            except Exception:
                self._log.exception("iteration_failed", state=self.state.value, position_id=self.position_id)
            self._log.debug("sleeping", seconds=self.config.poll_interval)
            self._sleep(self.config.poll_interval)

    def run_once(self) -> ControllerState:
        if self.state == ControllerState.NO_POSITION or (
            self.state in (ControllerState.POSITION_ACTIVE, ControllerState.POSITION_INACTIVE_CLOSING)
            and self.position_id is None
        ):
            self._transition(ControllerState.REOPENING)

        if self.state == ControllerState.POSITION_ACTIVE:
            checked = self._check_held_position()
            if checked is not None:
                active, position = checked
                if active:
                    self.sync_hedge(position)
                    return self.state
                self._log.info("position_out_of_range", position_id=self.position_id)
                self._transition(ControllerState.POSITION_INACTIVE_CLOSING)

        if self.state == ControllerState.POSITION_INACTIVE_CLOSING:
            try:
                self.close_position()
            except PositionNotFound:
                self._drop_position("not_found")
            self._transition(ControllerState.REOPENING)

        if self.state == ControllerState.REOPENING:
            self.reopen()
            self._transition(ControllerState.POSITION_ACTIVE)

        return self.state

    # --- decisions ---

    def _plan_entry(self, needs_exit: bool) -> RebalanceDecision:
        pool_state = self.pool_state.state(self.pool)
        holdings = self.wallet.holdings()
        price = self.pool.price_at(pool_state.tick)
        plan = plan_swap(
            self.pool,
            holdings,
            price,
            self.config.ratio_weight,
            self.config.min_swap_amount0,
            self.config.min_swap_amount1,
        )
        lower, upper = tick_range(pool_state.tick, self.config.range_half_width, self.pool.tick_spacing)
        return RebalanceDecision(needs_exit, lower, upper, plan, pool_state.tick, price)

    def decide(self) -> RebalanceDecision:
        """What the next pass would do, computed from fresh reads and without side effects."""
        needs_exit = False
        if self.position_id is not None:
            try:
                active, position = self.positions.check_active(self.position_id)
            except PositionNotFound:
                needs_exit = True
            else:
                needs_exit = not active or not self._owns(position)
        return self._plan_entry(needs_exit)

    def _owns(self, position: Position) -> bool:
        return position.owner.lower() == self.wallet.address.lower()

    def _check_held_position(self) -> Optional[tuple[bool, Position]]:
        """check_active for the current handle, or None once the handle is dropped.

        The handle is dropped when the registry has no such position or the
        wallet is not its owner.
        """
        try:
            active, position = self.positions.check_active(self.position_id)
        except PositionNotFound:
            self._drop_position("not_found")
            return None
        if not self._owns(position):
            self._drop_position("not_owned", owner=position.owner)
            return None
        return active, position

    def _drop_position(self, reason: str, **details) -> None:
        self._log.warning("position_dropped", position_id=self.position_id, reason=reason, **details)
        self.position_id = None
        self._transition(ControllerState.REOPENING)

    def find_open_position(self) -> Optional[Position]:
        """Newest position the wallet holds in this pool with liquidity in it.

        A mint whose receipt wait failed may still have been mined; its
        position shows up here on the next pass.
        """
        for position_id in sorted(self.positions.owned_position_ids(), reverse=True):
            position = self.positions.read_position(position_id)
            if (
                position.liquidity > 0
                and self._owns(position)
                and position.fee == self.pool.fee
                and position.token0.lower() == self.pool.token0.address.lower()
                and position.token1.lower() == self.pool.token1.address.lower()
            ):
                return position
        return None

    # --- actions ---

    def ensure_approvals(self) -> None:
        """Approve router and position manager for both tokens where the allowance ran low."""
        for spender in (self.router.address, self.positions.address):
            for token in (self.pool.token0, self.pool.token1):
                self.wallet.ensure_allowance(token, spender)

    def close_position(self) -> Optional[Position]:
        """Withdraw everything from the current position; burn it if that left it empty.

        Burning is cleanup only: a failed or skipped burn never blocks reopening.
        """
        position_id = self.position_id
        position = self.positions.withdraw(position_id)
        if self.config.burn_closed_positions:
            if position.is_empty:
                try:
                    self.positions.burn(position_id)
                except LPHedgeError as exc:
                    self._log.warning("burn_failed", position_id=position_id, error=str(exc))
            else:
                self._log.warning(
                    "burn_skipped",
                    position_id=position_id,
                    liquidity=position.liquidity,
                    owed0=position.tokens_owed0,
                    owed1=position.tokens_owed1,
                )
        self.position_id = None
        self._log.info("position_closed", position_id=position_id)
        return position

    def reopen(self) -> int:
        adopted = self.find_open_position()
        if adopted is not None:
            self.position_id = adopted.id
            self._log.info("position_adopted", position_id=adopted.id, liquidity=adopted.liquidity)
            self.sync_hedge(adopted)
            return adopted.id

        self.ensure_approvals()

        decision = self._plan_entry(needs_exit=False)
        self._log.info(
            "entry_planned",
            tick=decision.tick,
            price=str(decision.price),
            swap=bool(decision.swap_plan),
        )
        if decision.swap_plan is not None:
            self.execute_swap(decision.swap_plan, decision.price)

        # Balances and tick after the swap settled
        holdings = self.wallet.holdings()
        self.sync_hedge(token0_amount=holdings.balance0)

        tick = self.pool_state.state(self.pool).tick
        lower, upper = tick_range(tick, self.config.range_half_width, self.pool.tick_spacing)
        self.position_id = self.positions.mint(self.pool, lower, upper, holdings.balance0, holdings.balance1)
        self._log.info("position_opened", position_id=self.position_id, tick=tick, tick_lower=lower, tick_upper=upper)
        return self.position_id

    def execute_swap(self, plan: SwapPlan, price: Decimal):
        min_out = min_amount_out(plan, self.pool, price, self.config.swap_slippage_bps)
        return self.router.exact_input_single(
            plan.token_in.address,
            plan.token_out.address,
            self.config.swap_fee_tier(self.pool, plan.zero_for_one),
            plan.amount_in,
            self.wallet.address,
            min_out,
        )

    def _token0_exposure(self, position: Optional[Position]) -> int:
        amount = self.wallet.holdings().balance0
        if position is not None:
            pool_state = self.pool_state.state(self.pool)
            in_range0, _ = amounts_for_liquidity(
                position.liquidity, pool_state.sqrt_price_x96, position.tick_lower, position.tick_upper
            )
            amount += in_range0 + position.tokens_owed0
        return amount

    def sync_hedge(self, position: Optional[Position] = None, token0_amount: Optional[int] = None) -> Optional[HedgeOrder]:
        """Bring the hedge to -hedge_ratio times the token0 held, with at most one order."""
        if token0_amount is None:
            token0_amount = self._token0_exposure(position)
        holdings = self.pool.to_human(token0_amount, self.pool.token0)
        settings = self.hedge_settings

        current = self.hedge.get_position(settings.instrument)
        order = compute_hedge_order(
            holdings,
            current,
            settings.hedge_ratio,
            settings.contracts_per_token0,
            settings.size_increment,
        )
        if order is None:
            self._log.info("hedge_in_sync", size=str(current.signed_size), token0=str(holdings))
            return None

        self._log.info(
            "hedge_resync",
            current=str(current.signed_size),
            change=str(order.signed_size),
            token0=str(holdings),
        )
        self.hedge.set_leverage(settings.instrument, settings.leverage, settings.margin_mode)
        self.hedge.submit_market_order(settings.instrument, order.side, order.size, settings.margin_mode)
        return order
