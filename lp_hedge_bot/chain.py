"""
Blockchain connection, transaction submission and ERC-20 wallet reads.
"""
import json
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

import structlog
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware

from lp_hedge_bot.config import MAX_UINT256, ChainSettings
from lp_hedge_bot.errors import LPHedgeError, TransactionReverted, TransientNetworkError
from lp_hedge_bot.pool import Pool, Token
from lp_hedge_bot.retry import call_with_retry

log = structlog.get_logger()

ABI_DIR = Path(__file__).parent / "abi"


@lru_cache(maxsize=None)
def _read_abi(name: str) -> str:
    with open(ABI_DIR / f"{name}.json") as f:
        return f.read()


def load_abi(name: str) -> list:
    return json.loads(_read_abi(name))


@contextmanager
def rpc_errors(action: str):
    """Map web3/transport failures onto the bot's error taxonomy."""
    try:
        yield
    except LPHedgeError:
        raise
    except ContractLogicError as exc:
        raise TransactionReverted(f"{action} reverted: {exc}", cause=exc) from exc
    except (TimeExhausted, Web3RPCError, OSError) as exc:
        # requests' ConnectionError/Timeout are OSError subclasses
        raise TransientNetworkError(f"{action} failed: {exc}", cause=exc) from exc


@dataclass(frozen=True)
class WalletHoldings:
    balance0: int
    balance1: int


class BlockchainClient:
    def __init__(self, settings: ChainSettings, w3: Optional[Web3] = None, read_attempts: int = 3):
        self.settings = settings
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(settings.node_url, request_kwargs={"timeout": settings.rpc_timeout})
        )
        # Needed on PoA chains such as Polygon or BSC
        if settings.poa:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.account = self.w3.eth.account.from_key(settings.private_key)
        self.read_attempts = read_attempts
        self._log = log.bind(component="chain", address=self.account.address)

    @property
    def address(self) -> str:
        return self.account.address

    def connect(self) -> None:
        if not self.w3.is_connected():
            raise TransientNetworkError(f"could not connect to {self.settings.node_url}")
        self._log.info("chain_connected", chain_id=self.w3.eth.chain_id)

    load_abi = staticmethod(load_abi)

    def get_contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _call_once(self, fn, **kwargs):
        with rpc_errors(f"call {fn.fn_name}"):
            return fn.call(**kwargs)

    def call(self, fn, **kwargs):
        """Read-only contract call, retried on transient failures."""
        return call_with_retry(self._call_once, fn, attempts=self.read_attempts, **kwargs)

    def send_transaction(self, fn, error_cls: type = TransactionReverted):
        """Build, sign and send a contract call, then block until it is mined.

        Raises ``error_cls`` when the receipt status is not 1.
        """
        action = fn.fn_name
        with rpc_errors(action):
            tx = fn.build_transaction({
                "chainId": self.w3.eth.chain_id,
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            self._log.info("tx_sent", action=action, tx_hash=tx_hash.hex())
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.settings.receipt_timeout)

        if receipt["status"] != 1:
            self._log.error("tx_failed", action=action, tx_hash=tx_hash.hex())
            raise error_cls(f"{action} transaction failed", tx_hash=tx_hash.hex())
        self._log.info("tx_confirmed", action=action, tx_hash=tx_hash.hex(), block=receipt["blockNumber"])
        return receipt


class Wallet:
    """ERC-20 balances and spender approvals of the controlling account."""

    def __init__(self, client: BlockchainClient, pool: Pool, approval_threshold: int = MAX_UINT256 * 9 // 10):
        self.client = client
        self.pool = pool
        self.approval_threshold = approval_threshold
        self._erc20_abi = client.load_abi("ERC20")
        self._log = log.bind(component="wallet")

    def _token(self, token: Token):
        return self.client.get_contract(token.address, self._erc20_abi)

    @property
    def address(self) -> str:
        return self.client.address

    def balance_of(self, token: Token) -> int:
        return int(self.client.call(self._token(token).functions.balanceOf(self.client.address)))

    def holdings(self) -> WalletHoldings:
        return WalletHoldings(
            balance0=self.balance_of(self.pool.token0),
            balance1=self.balance_of(self.pool.token1),
        )

    def allowance(self, token: Token, spender: str) -> int:
        return int(self.client.call(
            self._token(token).functions.allowance(self.client.address, Web3.to_checksum_address(spender))
        ))

    def ensure_allowance(self, token: Token, spender: str) -> bool:
        """Approve ``spender`` for the maximum amount if the allowance dropped below the threshold.

        Returns True when an approval was sent.
        """
        current = self.allowance(token, spender)
        if current >= self.approval_threshold:
            self._log.debug("allowance_ok", token=token.symbol, spender=spender)
            return False
        self._log.info("approving", token=token.symbol, spender=spender, current=current)
        self.client.send_transaction(
            self._token(token).functions.approve(Web3.to_checksum_address(spender), MAX_UINT256)
        )
        return True
