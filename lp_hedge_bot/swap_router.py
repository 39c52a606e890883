"""
Single-hop exact-input swaps through SwapRouter02.
"""
import structlog
from web3 import Web3

log = structlog.get_logger()


class SwapRouterClient:
    def __init__(self, client, address: str):
        self.client = client
        self.address = Web3.to_checksum_address(address)
        self.contract = client.get_contract(address, client.load_abi("SwapRouter02"))
        self._log = log.bind(component="swap_router")

    def exact_input_single(
        self,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        recipient: str,
        min_amount_out: int,
        sqrt_price_limit_x96: int = 0,
    ):
        """Swap ``amount_in`` of ``token_in`` and wait for the receipt.

        The router must already be approved for ``amount_in``. A
        ``min_amount_out`` of 0 accepts any output.
        """
        if amount_in <= 0:
            raise ValueError(f"amount_in must be positive, got {amount_in}")
        if min_amount_out == 0:
            self._log.warning("swap_unbounded_slippage", token_in=token_in, amount_in=amount_in)
        params = {
            "tokenIn": Web3.to_checksum_address(token_in),
            "tokenOut": Web3.to_checksum_address(token_out),
            "fee": fee,
            "recipient": Web3.to_checksum_address(recipient),
            "amountIn": amount_in,
            "amountOutMinimum": min_amount_out,
            "sqrtPriceLimitX96": sqrt_price_limit_x96,
        }
        receipt = self.client.send_transaction(self.contract.functions.exactInputSingle(params))
        self._log.info(
            "swap_executed",
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
        )
        return receipt
