"""
Liquidity position lifecycle against the NonfungiblePositionManager.

Every mutating call blocks until its transaction is mined, and every read
goes to the chain; the registry is the only source of truth for positions.
"""
import time
from dataclasses import dataclass
from typing import Optional

import structlog
from web3 import Web3
from web3.logs import DISCARD

from lp_hedge_bot.config import MAX_UINT128
from lp_hedge_bot.errors import (
    BurnNotEmpty,
    InvariantViolation,
    MintFailed,
    PositionNotFound,
    TransactionReverted,
)
from lp_hedge_bot.pool import Pool, PoolStateClient

log = structlog.get_logger()


@dataclass(frozen=True)
class Position:
    id: int
    owner: str
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    fee_growth_inside0_last_x128: int
    fee_growth_inside1_last_x128: int
    tokens_owed0: int
    tokens_owed1: int

    @property
    def has_owed_tokens(self) -> bool:
        return self.tokens_owed0 > 0 or self.tokens_owed1 > 0

    @property
    def is_empty(self) -> bool:
        return self.liquidity == 0 and not self.has_owed_tokens

    def in_range(self, tick: int) -> bool:
        return self.tick_lower <= tick <= self.tick_upper


class PositionManagerClient:
    def __init__(
        self,
        client,
        pool_state: PoolStateClient,
        address: str,
        deadline_seconds: int = 20 * 60,
        clock=time.time,
    ):
        self.client = client
        self.pool_state = pool_state
        self.address = Web3.to_checksum_address(address)
        self.contract = client.get_contract(address, client.load_abi("NonfungiblePositionManager"))
        self.deadline_seconds = deadline_seconds
        self._clock = clock
        self._log = log.bind(component="position_manager")

    def _deadline(self, deadline: Optional[int] = None) -> int:
        return deadline if deadline is not None else int(self._clock()) + self.deadline_seconds

    # --- reads ---

    def read_position(self, position_id: int) -> Position:
        # both reads revert for an id that was burned or never minted
        try:
            raw = self.client.call(self.contract.functions.positions(position_id))
            owner = self.client.call(self.contract.functions.ownerOf(position_id))
        except TransactionReverted as exc:
            raise PositionNotFound(position_id, cause=exc) from exc
        # raw: nonce, operator, token0, token1, fee, tickLower, tickUpper, liquidity,
        # feeGrowthInside0LastX128, feeGrowthInside1LastX128, tokensOwed0, tokensOwed1
        return Position(
            id=int(position_id),
            owner=owner,
            token0=raw[2],
            token1=raw[3],
            fee=int(raw[4]),
            tick_lower=int(raw[5]),
            tick_upper=int(raw[6]),
            liquidity=int(raw[7]),
            fee_growth_inside0_last_x128=int(raw[8]),
            fee_growth_inside1_last_x128=int(raw[9]),
            tokens_owed0=int(raw[10]),
            tokens_owed1=int(raw[11]),
        )

    def check_active(self, position_id: int) -> tuple[bool, Position]:
        """Whether the pool tick is inside the position's range, boundaries included.

        The pool tick is read right after the position. A price move between
        the two reads can at worst cost one idle cycle.
        """
        position = self.read_position(position_id)
        state = self.pool_state.state_of(position.token0, position.token1, position.fee)
        active = position.in_range(state.tick)
        self._log.info(
            "position_checked",
            position_id=position_id,
            tick=state.tick,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            active=active,
        )
        return active, position

    def owned_position_ids(self, owner: Optional[str] = None) -> list[int]:
        owner = Web3.to_checksum_address(owner or self.client.address)
        count = int(self.client.call(self.contract.functions.balanceOf(owner)))
        return [
            int(self.client.call(self.contract.functions.tokenOfOwnerByIndex(owner, index)))
            for index in range(count)
        ]

    # --- writes ---

    def mint(
        self,
        pool: Pool,
        tick_lower: int,
        tick_upper: int,
        amount0_desired: int,
        amount1_desired: int,
        amount0_min: int = 0,
        amount1_min: int = 0,
        deadline: Optional[int] = None,
    ) -> int:
        """Mint a new position and return its token id.

        The id is taken from the IncreaseLiquidity event in this transaction's
        own receipt, not from a separate query.
        """
        if tick_lower >= tick_upper:
            raise InvariantViolation(f"tick_lower {tick_lower} must be below tick_upper {tick_upper}")
        if tick_lower % pool.tick_spacing or tick_upper % pool.tick_spacing:
            raise InvariantViolation(
                f"ticks [{tick_lower}, {tick_upper}] are not multiples of spacing {pool.tick_spacing}"
            )

        params = {
            "token0": Web3.to_checksum_address(pool.token0.address),
            "token1": Web3.to_checksum_address(pool.token1.address),
            "fee": pool.fee,
            "tickLower": tick_lower,
            "tickUpper": tick_upper,
            "amount0Desired": amount0_desired,
            "amount1Desired": amount1_desired,
            "amount0Min": amount0_min,
            "amount1Min": amount1_min,
            "recipient": self.client.address,
            "deadline": self._deadline(deadline),
        }
        receipt = self.client.send_transaction(self.contract.functions.mint(params), error_cls=MintFailed)

        events = self.contract.events.IncreaseLiquidity().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise MintFailed("mint receipt has no IncreaseLiquidity event", tx_hash=_tx_hash(receipt))
        token_id = int(events[0]["args"]["tokenId"])
        self._log.info(
            "position_minted",
            position_id=token_id,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=int(events[0]["args"]["liquidity"]),
        )
        return token_id

    def increase_liquidity(
        self,
        position_id: int,
        amount0_desired: int,
        amount1_desired: int,
        amount0_min: int = 0,
        amount1_min: int = 0,
        deadline: Optional[int] = None,
    ):
        params = {
            "tokenId": position_id,
            "amount0Desired": amount0_desired,
            "amount1Desired": amount1_desired,
            "amount0Min": amount0_min,
            "amount1Min": amount1_min,
            "deadline": self._deadline(deadline),
        }
        return self.client.send_transaction(self.contract.functions.increaseLiquidity(params))

    def decrease_liquidity(
        self,
        position_id: int,
        liquidity: int,
        amount0_min: int = 0,
        amount1_min: int = 0,
        deadline: Optional[int] = None,
    ):
        if liquidity <= 0:
            raise InvariantViolation(f"refusing to decrease position {position_id} by {liquidity}")
        params = {
            "tokenId": position_id,
            "liquidity": liquidity,
            "amount0Min": amount0_min,
            "amount1Min": amount1_min,
            "deadline": self._deadline(deadline),
        }
        receipt = self.client.send_transaction(self.contract.functions.decreaseLiquidity(params))
        self._log.info("liquidity_decreased", position_id=position_id, liquidity=liquidity)
        return receipt

    def collect(
        self,
        position_id: int,
        recipient: Optional[str] = None,
        amount0_max: int = MAX_UINT128,
        amount1_max: int = MAX_UINT128,
    ):
        """Withdraw owed tokens; the default caps collect everything."""
        params = {
            "tokenId": position_id,
            "recipient": Web3.to_checksum_address(recipient or self.client.address),
            "amount0Max": amount0_max,
            "amount1Max": amount1_max,
        }
        receipt = self.client.send_transaction(self.contract.functions.collect(params))
        self._log.info("tokens_collected", position_id=position_id)
        return receipt

    def burn(self, position_id: int):
        position = self.read_position(position_id)
        if not position.is_empty:
            raise BurnNotEmpty(position_id, position.liquidity, position.tokens_owed0, position.tokens_owed1)
        receipt = self.client.send_transaction(self.contract.functions.burn(position_id))
        self._log.info("position_burned", position_id=position_id)
        return receipt

    def withdraw(self, position_id: int) -> Position:
        """Remove all liquidity and collect everything owed.

        Each step is skipped when the fresh read shows nothing to do. Returns
        the position as read after the last step.
        """
        position = self.read_position(position_id)
        if position.liquidity > 0:
            self.decrease_liquidity(position_id, position.liquidity)
            position = self.read_position(position_id)
        else:
            self._log.info("decrease_skipped", position_id=position_id, reason="no liquidity")

        if position.has_owed_tokens:
            self.collect(position_id)
            position = self.read_position(position_id)
        else:
            self._log.info("collect_skipped", position_id=position_id, reason="nothing owed")
        return position

    def close_all(self) -> list[int]:
        """Withdraw and burn every position owned by the account. Returns the burned ids."""
        burned = []
        for position_id in self.owned_position_ids():
            position = self.withdraw(position_id)
            if not position.is_empty:
                self._log.warning(
                    "burn_skipped",
                    position_id=position_id,
                    liquidity=position.liquidity,
                    owed0=position.tokens_owed0,
                    owed1=position.tokens_owed1,
                )
                continue
            self.burn(position_id)
            burned.append(position_id)
        self._log.info("close_all_done", burned=burned)
        return burned


def _tx_hash(receipt) -> Optional[str]:
    tx_hash = receipt.get("transactionHash") if hasattr(receipt, "get") else None
    return tx_hash.hex() if hasattr(tx_hash, "hex") else tx_hash
