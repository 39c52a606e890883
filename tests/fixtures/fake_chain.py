"""In-memory chain for tests.

FakeChain stands in for BlockchainClient: the real PoolStateClient, Wallet,
PositionManagerClient and SwapRouterClient run against it unchanged. Contract
calls are dispatched to small Python models of the factory, pool, position
manager, router and ERC-20 tokens, and every mutating call is recorded in
``chain.sent`` in order.
"""
from decimal import Decimal

from web3 import Web3
from web3.exceptions import ContractLogicError

from lp_hedge_bot.chain import WalletHoldings, rpc_errors
from lp_hedge_bot.errors import TransactionReverted
from lp_hedge_bot.pool import ZERO_ADDRESS, Pool, Token
from lp_hedge_bot.tick_math import Q96, amounts_for_liquidity, sqrt_price_x96_from_tick

OWNER = Web3.to_checksum_address("0x00000000000000000000000000000000000000a1")
OTHER_OWNER = Web3.to_checksum_address("0x00000000000000000000000000000000000000b2")
FACTORY_ADDRESS = Web3.to_checksum_address("0x2000000000000000000000000000000000000002")
POOL_ADDRESS = Web3.to_checksum_address("0x1000000000000000000000000000000000000001")
NPM_ADDRESS = Web3.to_checksum_address("0x3000000000000000000000000000000000000003")
ROUTER_ADDRESS = Web3.to_checksum_address("0x4000000000000000000000000000000000000004")

WETH = Token(Web3.to_checksum_address("0x1111111111111111111111111111111111111111"), "WETH", 18)
USDC = Token(Web3.to_checksum_address("0x9999999999999999999999999999999999999999"), "USDC", 6)


class FakeCall:
    def __init__(self, fn_name, impl, args):
        self.fn_name = fn_name
        self.args = args
        self._impl = impl

    def call(self, **kwargs):
        return self._impl(*self.args)

    def execute(self):
        return self._impl(*self.args)


class _Functions:
    def __init__(self, contract):
        self._contract = contract

    def __getattr__(self, name):
        impl = getattr(self._contract, name)

        def build(*args):
            return FakeCall(name, impl, args)

        return build


class FakeContract:
    def __init__(self, chain, address):
        self.chain = chain
        self.address = address
        self.functions = _Functions(self)


class FakeFactory(FakeContract):
    def getPool(self, token_a, token_b, fee):
        pool = self.chain.pool
        pair = {token_a.lower(), token_b.lower()}
        if pair == {pool.token0.address.lower(), pool.token1.address.lower()} and fee == pool.fee:
            return POOL_ADDRESS
        return ZERO_ADDRESS


class FakePool(FakeContract):
    def slot0(self):
        return (self.chain.sqrt_price_x96, self.chain.tick, 0, 1, 1, 0, True)

    def feeGrowthGlobal0X128(self):
        return self.chain.fee_growth[0]

    def feeGrowthGlobal1X128(self):
        return self.chain.fee_growth[1]


class FakeERC20(FakeContract):
    def balanceOf(self, account):
        if account.lower() != self.chain.address.lower():
            return 0
        return self.chain.balances[self.address.lower()]

    def allowance(self, owner, spender):
        return self.chain.allowances.get((self.address.lower(), spender.lower()), 0)

    def approve(self, spender, amount):
        self.chain.allowances[(self.address.lower(), spender.lower())] = amount
        return True


class _IncreaseLiquidityEvent:
    def process_receipt(self, receipt, errors=None):
        return [entry for entry in receipt["logs"] if entry["event"] == "IncreaseLiquidity"]


class _Events:
    def IncreaseLiquidity(self):
        return _IncreaseLiquidityEvent()


class FakePositionManager(FakeContract):
    def __init__(self, chain, address):
        super().__init__(chain, address)
        self.events = _Events()
        self.records = {}
        self.next_id = 1000
        # when set, collect pays out at most this much of each token
        self.collect_limit = None

    def add_position(self, tick_lower, tick_upper, liquidity=0, owed0=0, owed1=0, owner=None):
        token_id = self.next_id
        self.next_id += 1
        pool = self.chain.pool
        self.records[token_id] = {
            "owner": owner or self.chain.address,
            "token0": pool.token0.address,
            "token1": pool.token1.address,
            "fee": pool.fee,
            "tick_lower": tick_lower,
            "tick_upper": tick_upper,
            "liquidity": liquidity,
            "owed0": owed0,
            "owed1": owed1,
        }
        return token_id

    def _record(self, token_id):
        if token_id not in self.records:
            raise ContractLogicError("execution reverted: Invalid token ID")
        return self.records[token_id]

    def positions(self, token_id):
        rec = self._record(token_id)
        return (
            0, ZERO_ADDRESS, rec["token0"], rec["token1"], rec["fee"],
            rec["tick_lower"], rec["tick_upper"], rec["liquidity"],
            0, 0, rec["owed0"], rec["owed1"],
        )

    def ownerOf(self, token_id):
        return self._record(token_id)["owner"]

    def _owned(self, owner):
        return sorted(i for i, rec in self.records.items() if rec["owner"].lower() == owner.lower())

    def balanceOf(self, owner):
        return len(self._owned(owner))

    def tokenOfOwnerByIndex(self, owner, index):
        return self._owned(owner)[index]

    def _liquidity_for(self, lower, upper, amount0, amount1):
        sqrt_a = Decimal(sqrt_price_x96_from_tick(lower)) / Q96
        sqrt_b = Decimal(sqrt_price_x96_from_tick(upper)) / Q96
        sqrt_p = Decimal(self.chain.sqrt_price_x96) / Q96
        amount0, amount1 = Decimal(amount0), Decimal(amount1)
        if sqrt_p <= sqrt_a:
            liquidity = amount0 * sqrt_a * sqrt_b / (sqrt_b - sqrt_a)
        elif sqrt_p >= sqrt_b:
            liquidity = amount1 / (sqrt_b - sqrt_a)
        else:
            liquidity = min(amount0 * sqrt_p * sqrt_b / (sqrt_b - sqrt_p), amount1 / (sqrt_p - sqrt_a))
        liquidity = int(liquidity)
        if liquidity == 0:
            raise ContractLogicError("execution reverted")
        return liquidity

    def _deposit(self, token0, token1, lower, upper, amount0, amount1):
        liquidity = self._liquidity_for(lower, upper, amount0, amount1)
        used0, used1 = amounts_for_liquidity(liquidity, self.chain.sqrt_price_x96, lower, upper)
        self.chain.debit(token0, used0)
        self.chain.debit(token1, used1)
        return liquidity, used0, used1

    def mint(self, params):
        lower, upper = params["tickLower"], params["tickUpper"]
        liquidity, used0, used1 = self._deposit(
            params["token0"], params["token1"], lower, upper, params["amount0Desired"], params["amount1Desired"]
        )
        token_id = self.add_position(lower, upper, liquidity, owner=params["recipient"])
        return [{
            "event": "IncreaseLiquidity",
            "args": {"tokenId": token_id, "liquidity": liquidity, "amount0": used0, "amount1": used1},
        }]

    def increaseLiquidity(self, params):
        token_id = params["tokenId"]
        rec = self._record(token_id)
        liquidity, used0, used1 = self._deposit(
            rec["token0"], rec["token1"], rec["tick_lower"], rec["tick_upper"],
            params["amount0Desired"], params["amount1Desired"],
        )
        rec["liquidity"] += liquidity
        return [{
            "event": "IncreaseLiquidity",
            "args": {"tokenId": token_id, "liquidity": liquidity, "amount0": used0, "amount1": used1},
        }]

    def decreaseLiquidity(self, params):
        rec = self._record(params["tokenId"])
        liquidity = params["liquidity"]
        if liquidity == 0 or liquidity > rec["liquidity"]:
            raise ContractLogicError("execution reverted")
        amount0, amount1 = amounts_for_liquidity(
            liquidity, self.chain.sqrt_price_x96, rec["tick_lower"], rec["tick_upper"]
        )
        rec["liquidity"] -= liquidity
        rec["owed0"] += amount0
        rec["owed1"] += amount1
        return []

    def collect(self, params):
        rec = self._record(params["tokenId"])
        cap0, cap1 = params["amount0Max"], params["amount1Max"]
        if self.collect_limit is not None:
            cap0, cap1 = min(cap0, self.collect_limit), min(cap1, self.collect_limit)
        paid0, paid1 = min(rec["owed0"], cap0), min(rec["owed1"], cap1)
        rec["owed0"] -= paid0
        rec["owed1"] -= paid1
        self.chain.credit(rec["token0"], paid0)
        self.chain.credit(rec["token1"], paid1)
        return []

    def burn(self, token_id):
        rec = self._record(token_id)
        if rec["liquidity"] or rec["owed0"] or rec["owed1"]:
            raise ContractLogicError("execution reverted: Not cleared")
        del self.records[token_id]
        return []


class FakeRouter(FakeContract):
    def exactInputSingle(self, params):
        chain = self.chain
        pool = chain.pool
        price = pool.price_at(chain.tick)
        amount_in = params["amountIn"]
        if params["tokenIn"].lower() == pool.token0.address.lower():
            out = pool.to_human(amount_in, pool.token0) * price * Decimal(10) ** pool.token1.decimals
        else:
            out = pool.to_human(amount_in, pool.token1) / price * Decimal(10) ** pool.token0.decimals
        out = int(out)
        if out < params["amountOutMinimum"]:
            raise ContractLogicError("execution reverted: Too little received")
        chain.debit(params["tokenIn"], amount_in)
        chain.credit(params["tokenOut"], out)
        return []


class FakeChain:
    def __init__(self, pool: Pool, tick: int = 0, balance0: int = 0, balance1: int = 0):
        self.pool = pool
        self.address = OWNER
        self.tick = tick
        self.sqrt_price_x96 = sqrt_price_x96_from_tick(tick)
        self.balances = {pool.token0.address.lower(): balance0, pool.token1.address.lower(): balance1}
        self.allowances = {}
        self.fee_growth = [0, 0]
        self.sent = []
        self.fail = {}
        # mined, then the receipt wait fails with this exception
        self.lost_receipts = {}

        self.npm = FakePositionManager(self, NPM_ADDRESS)
        self.router = FakeRouter(self, ROUTER_ADDRESS)
        self.contracts = {
            FACTORY_ADDRESS.lower(): FakeFactory(self, FACTORY_ADDRESS),
            POOL_ADDRESS.lower(): FakePool(self, POOL_ADDRESS),
            NPM_ADDRESS.lower(): self.npm,
            ROUTER_ADDRESS.lower(): self.router,
            pool.token0.address.lower(): FakeERC20(self, pool.token0.address),
            pool.token1.address.lower(): FakeERC20(self, pool.token1.address),
        }

    @staticmethod
    def load_abi(name):
        return []

    def get_contract(self, address, abi):
        return self.contracts[address.lower()]

    def call(self, fn, **kwargs):
        with rpc_errors(f"call {fn.fn_name}"):
            return fn.call(**kwargs)

    def send_transaction(self, fn, error_cls=TransactionReverted):
        self.sent.append(fn.fn_name)
        failure = self.fail.pop(fn.fn_name, None)
        if failure == "revert":
            raise error_cls(f"{fn.fn_name} transaction failed", tx_hash="0xdead")
        if failure is not None:
            raise failure
        with rpc_errors(fn.fn_name):
            logs = fn.execute()
        lost = self.lost_receipts.pop(fn.fn_name, None)
        if lost is not None:
            raise lost
        return {
            "status": 1,
            "transactionHash": b"\x01" * 32,
            "blockNumber": len(self.sent),
            "logs": logs if isinstance(logs, list) else [],
        }

    # --- test helpers ---

    def set_tick(self, tick: int) -> None:
        self.tick = tick
        self.sqrt_price_x96 = sqrt_price_x96_from_tick(tick)

    def debit(self, token: str, amount: int) -> None:
        key = token.lower()
        if self.balances[key] < amount:
            raise ContractLogicError("execution reverted: STF")
        self.balances[key] -= amount

    def credit(self, token: str, amount: int) -> None:
        self.balances[token.lower()] += amount

    def holdings(self) -> WalletHoldings:
        return WalletHoldings(
            self.balances[self.pool.token0.address.lower()],
            self.balances[self.pool.token1.address.lower()],
        )

    @property
    def mutations(self) -> list:
        return [name for name in self.sent if name != "approve"]
