"""
Chain Access Module
===================

Thin async wrapper over the JSON-RPC node and the contracts the sniper uses.

Every write takes the signing account explicitly: there are no contract
handles bound to a signer. Each sent transaction waits for one confirmation
and raises TransactionError if it reverted.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from eth_account.signers.local import LocalAccount
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, wait_fixed
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .abis import (
    ERC20_ABI,
    MINT_EVENT_TOPIC,
    SWAP_ROUTER_ABI,
    UNISWAP_V3_FACTORY_ABI,
    UNISWAP_V3_POOL_ABI,
)
from .utils import TransactionError, format_tx_hash, logger

T = TypeVar("T")

# Used when the node does not report a priority fee (0.1 gwei)
DEFAULT_PRIORITY_FEE = 100_000_000

DRY_RUN_HASH = "0xDRYRUN"


@dataclass(frozen=True)
class FeeQuote:
    """EIP-1559 fee pair in wei."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def scaled(self, priority_multiplier: int, max_multiplier: int) -> "FeeQuote":
        """Multiply both components; max fee never drops below the priority fee."""
        priority = self.max_priority_fee_per_gas * priority_multiplier
        max_fee = max(self.max_fee_per_gas * max_multiplier, priority)
        return FeeQuote(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)

    def as_tx_fields(self) -> Dict[str, int]:
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


@dataclass(frozen=True)
class TxResult:
    """A mined (or dry-run) transaction."""
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class NonceCounter:
    """
    Locally owned nonce stream for one sender.

    Seeded once from the chain, then incremented in process. Only one
    logical thread of control may hold it.
    """

    def __init__(self, address: str, start: int):
        self.address = address
        self._next = start

    @classmethod
    async def sync(cls, chain: "ChainClient", address: str) -> "NonceCounter":
        return cls(address, await chain.pending_nonce(address))

    @property
    def peek(self) -> int:
        return self._next

    def take(self) -> int:
        nonce = self._next
        self._next += 1
        return nonce


async def retry_forever(read: Callable[[], Awaitable[T]], interval: float) -> T:
    """Retry a read on every tick until it succeeds (transient RPC errors)."""
    async for attempt in AsyncRetrying(
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(Exception),
        before_sleep=before_sleep_log(logger.raw, logging.DEBUG),
        reraise=True,
    ):
        with attempt:
            return await read()


class ChainClient:
    """
    Async collaborator for the node, ERC-20 tokens, the V3 factory/pool and
    the swap router.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        chain_id: int = 8453,
        confirmation_timeout: int = 120,
        dry_run: bool = False,
    ):
        self.w3 = w3
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.dry_run = dry_run
        self._contracts: Dict[tuple, Any] = {}

    @classmethod
    def connect(cls, rpc_url: str, **kwargs) -> "ChainClient":
        """Create a client for an HTTP JSON-RPC endpoint (no I/O yet)."""
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), **kwargs)

    async def is_connected(self) -> bool:
        return await self.w3.is_connected()

    def _contract(self, address: str, abi: list):
        key = (address.lower(), id(abi))
        if key not in self._contracts:
            self._contracts[key] = self.w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=abi
            )
        return self._contracts[key]

    # Reads

    async def native_balance(self, address: str) -> int:
        return await self.w3.eth.get_balance(Web3.to_checksum_address(address))

    async def token_balance(self, token: str, owner: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        return await contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        return await contract.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()

    async def get_pool(self, factory: str, token_a: str, token_b: str, fee: int) -> str:
        contract = self._contract(factory, UNISWAP_V3_FACTORY_ABI)
        return await contract.functions.getPool(
            Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b), fee
        ).call()

    async def pool_liquidity(self, pool: str) -> int:
        return await self._contract(pool, UNISWAP_V3_POOL_ABI).functions.liquidity().call()

    async def pool_sqrt_price_x96(self, pool: str) -> int:
        slot0 = await self._contract(pool, UNISWAP_V3_POOL_ABI).functions.slot0().call()
        return slot0[0]

    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    async def mint_logs(self, pool: str, from_block: int, to_block: int) -> List[Any]:
        return await self.w3.eth.get_logs({
            "address": Web3.to_checksum_address(pool),
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [MINT_EVENT_TOPIC],
        })

    async def pending_nonce(self, address: str) -> int:
        return await self.w3.eth.get_transaction_count(
            Web3.to_checksum_address(address), "pending"
        )

    async def fee_quote(self) -> FeeQuote:
        """Current EIP-1559 estimate: max fee = 2 x base fee + priority fee."""
        latest = await self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas", 0) or 0
        try:
            priority = await self.w3.eth.max_priority_fee
        except Exception as e:
            logger.debug(f"max_priority_fee unavailable ({e}), using default")
            priority = DEFAULT_PRIORITY_FEE
        return FeeQuote(max_fee_per_gas=base_fee * 2 + priority, max_priority_fee_per_gas=priority)

    # Writes

    async def _sign_and_send(self, account: LocalAccount, tx: Dict[str, Any]) -> TxResult:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would send tx from {account.address} to {tx.get('to')}")
            return TxResult(tx_hash=DRY_RUN_HASH)

        signed = account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hex = Web3.to_hex(tx_hash)
        logger.debug(f"Sent {format_tx_hash(tx_hex)} from {account.address}")

        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.confirmation_timeout
        )
        if receipt["status"] != 1:
            raise TransactionError(f"Transaction reverted: {tx_hex}")
        return TxResult(
            tx_hash=tx_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt.get("gasUsed"),
        )

    async def _base_tx(
        self,
        account: LocalAccount,
        gas: int,
        nonce: Optional[int],
        fees: Optional[FeeQuote],
        value: int = 0,
    ) -> Dict[str, Any]:
        if nonce is None:
            nonce = await self.pending_nonce(account.address)
        if fees is None:
            fees = await self.fee_quote()
        tx = {
            "from": account.address,
            "value": value,
            "gas": gas,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        tx.update(fees.as_tx_fields())
        return tx

    async def send_native(
        self,
        account: LocalAccount,
        to: str,
        value: int,
        gas: int = 21000,
        nonce: Optional[int] = None,
        fees: Optional[FeeQuote] = None,
    ) -> TxResult:
        tx = await self._base_tx(account, gas, nonce, fees, value=value)
        tx["to"] = Web3.to_checksum_address(to)
        return await self._sign_and_send(account, tx)

    async def transfer_token(
        self,
        account: LocalAccount,
        token: str,
        to: str,
        amount: int,
        gas: int = 100000,
        nonce: Optional[int] = None,
        fees: Optional[FeeQuote] = None,
    ) -> TxResult:
        base = await self._base_tx(account, gas, nonce, fees)
        tx = await self._contract(token, ERC20_ABI).functions.transfer(
            Web3.to_checksum_address(to), amount
        ).build_transaction(base)
        return await self._sign_and_send(account, tx)

    async def approve(
        self,
        account: LocalAccount,
        token: str,
        spender: str,
        amount: int,
        gas: int = 100000,
        nonce: Optional[int] = None,
        fees: Optional[FeeQuote] = None,
    ) -> TxResult:
        base = await self._base_tx(account, gas, nonce, fees)
        tx = await self._contract(token, ERC20_ABI).functions.approve(
            Web3.to_checksum_address(spender), amount
        ).build_transaction(base)
        return await self._sign_and_send(account, tx)

    async def swap_exact_input_single(
        self,
        account: LocalAccount,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        amount_out_minimum: int = 0,
        value: int = 0,
        gas: int = 300000,
        nonce: Optional[int] = None,
        fees: Optional[FeeQuote] = None,
    ) -> TxResult:
        """Single-hop exact-input swap; recipient is the sender."""
        params = {
            "tokenIn": Web3.to_checksum_address(token_in),
            "tokenOut": Web3.to_checksum_address(token_out),
            "fee": fee,
            "recipient": account.address,
            "amountIn": amount_in,
            "amountOutMinimum": amount_out_minimum,
            "sqrtPriceLimitX96": 0,
        }
        base = await self._base_tx(account, gas, nonce, fees, value=value)
        tx = await self._contract(router, SWAP_ROUTER_ABI).functions.exactInputSingle(
            params
        ).build_transaction(base)
        return await self._sign_and_send(account, tx)
