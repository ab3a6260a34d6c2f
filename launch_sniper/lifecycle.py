"""
Lifecycle Operations
====================

Commands that act on the derived fleet outside the snipe pipeline:

- inspect_balances: capital, gas and trade-token balances (plus the funder)
- sell_position: sell a fiat-denominated slice from one randomly chosen account
- sweep: consolidate trade token and capital back to the funder
- convert_idle: swap native balance above the gas reserve into capital

Every operation re-derives nothing itself; it takes the accounts produced by
the deriver. A failure on one account is logged with its index and the loop
moves on.
"""

import asyncio
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from .abis import MAX_UINT256, ZERO_ADDRESS
from .chain import ChainClient, TxResult
from .deriver import DerivedAccount
from .executor import SwapOutcome
from .pricing import min_amount_out, spot_price
from .utils import (
    InsufficientFundsError,
    PlanningError,
    PoolNotFoundError,
    format_tx_hash,
    format_units,
    logger,
)


@dataclass
class AccountBalances:
    index: Optional[int]
    address: str
    capital: int
    gas: int
    trade: int
    error: Optional[str] = None


@dataclass
class BalanceReport:
    accounts: List[AccountBalances]
    funder: Optional[AccountBalances] = None

    @property
    def total_capital(self) -> int:
        return sum(a.capital for a in self.accounts)

    @property
    def total_gas(self) -> int:
        return sum(a.gas for a in self.accounts)

    @property
    def total_trade(self) -> int:
        return sum(a.trade for a in self.accounts)


@dataclass
class SellResult:
    account_index: int
    amount_in: int
    price: Decimal
    tx_hash: str
    block_number: Optional[int]
    trade_balance_after: int
    capital_balance_after: int


@dataclass
class SweepReport:
    transfers: List[TxResult] = field(default_factory=list)
    swept: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class FleetOperations:
    """Balance, sell, sweep and convert over the derived accounts."""

    def __init__(
        self,
        chain: ChainClient,
        accounts: Sequence[DerivedAccount],
        capital_token: str,
        trade_token: str,
        weth: str,
        factory: str,
        router: str,
        pool_fee: int = 10000,
        weth_pool_fee: int = 500,
        capital_decimals: int = 6,
        trade_decimals: int = 18,
        gas_reserve: int = 0,
        slippage_percent: Optional[float] = None,
        token_transfer_gas: int = 100000,
        approve_gas: int = 100000,
        swap_gas: int = 300000,
        convert_gas: int = 200000,
    ):
        self.chain = chain
        self.accounts = list(accounts)
        self.capital_token = capital_token
        self.trade_token = trade_token
        self.weth = weth
        self.factory = factory
        self.router = router
        self.pool_fee = pool_fee
        self.weth_pool_fee = weth_pool_fee
        self.capital_decimals = capital_decimals
        self.trade_decimals = trade_decimals
        self.gas_reserve = gas_reserve
        self.slippage_percent = slippage_percent
        self.token_transfer_gas = token_transfer_gas
        self.approve_gas = approve_gas
        self.swap_gas = swap_gas
        self.convert_gas = convert_gas

    @classmethod
    def from_config(cls, config, chain: ChainClient, accounts: Sequence[DerivedAccount]) -> "FleetOperations":
        return cls(
            chain,
            accounts,
            capital_token=config.capital_token,
            trade_token=config.trade_token,
            weth=config.weth_address,
            factory=config.factory_address,
            router=config.router_address,
            pool_fee=config.pool_fee,
            weth_pool_fee=config.weth_pool_fee,
            capital_decimals=config.capital_decimals,
            trade_decimals=config.trade_decimals,
            gas_reserve=config.gas_reserve_wei,
            slippage_percent=config.slippage_percent,
            token_transfer_gas=config.token_transfer_gas,
            approve_gas=config.approve_gas,
            swap_gas=config.swap_gas,
            convert_gas=config.convert_gas,
        )

    # Balances

    async def _read_balances(self, index: Optional[int], address: str) -> AccountBalances:
        try:
            capital, gas, trade = await asyncio.gather(
                self.chain.token_balance(self.capital_token, address),
                self.chain.native_balance(address),
                self.chain.token_balance(self.trade_token, address),
            )
        except Exception as e:
            logger.error(f"  [{index}] Balance read failed: {e}")
            return AccountBalances(index, address, 0, 0, 0, error=str(e))
        return AccountBalances(index, address, capital, gas, trade)

    async def inspect_balances(self, funder_address: Optional[str] = None) -> BalanceReport:
        rows = await asyncio.gather(
            *(self._read_balances(a.index, a.address) for a in self.accounts)
        )
        report = BalanceReport(accounts=list(rows))
        if funder_address:
            report.funder = await self._read_balances(None, funder_address)
        return report

    # Sell

    async def current_price(self, base: str, quote: str, fee: int,
                            base_decimals: int, quote_decimals: int) -> Decimal:
        """Spot price of ``base`` in ``quote`` from the pool's slot0."""
        pool = await self.chain.get_pool(self.factory, base, quote, fee)
        if not pool or pool.lower() == ZERO_ADDRESS:
            raise PoolNotFoundError(f"No pool for {base}/{quote} at fee {fee}")
        sqrt_price_x96 = await self.chain.pool_sqrt_price_x96(pool)
        if sqrt_price_x96 == 0:
            raise PlanningError(f"Pool {pool} has no price yet")
        return spot_price(sqrt_price_x96, base, quote, base_decimals, quote_decimals)

    async def sell_position(self, fiat_amount, rng: Optional[random.Random] = None) -> SellResult:
        """
        Sell roughly ``fiat_amount`` of capital worth of the trade token from a
        single account.

        Raises:
            PoolNotFoundError: if the trade pool does not exist
            PlanningError: if the amount is not positive or rounds to zero tokens
            InsufficientFundsError: if no single account holds enough
            TransactionError: if the approval or swap reverts
        """
        fiat = Decimal(str(fiat_amount))
        if fiat <= 0:
            raise PlanningError(f"Sell amount must be positive, got {fiat_amount}")

        price = await self.current_price(
            self.trade_token, self.capital_token, self.pool_fee,
            self.trade_decimals, self.capital_decimals,
        )

        whole_tokens = int(fiat / price)
        if whole_tokens == 0:
            raise PlanningError(
                f"{fiat} is worth less than one whole token at {price:.6E} per token"
            )
        amount_in = whole_tokens * 10 ** self.trade_decimals
        logger.info(f"Price: ~{price:.4E} per token, selling {whole_tokens:,} tokens")

        order = list(self.accounts)
        (rng or random.Random()).shuffle(order)

        chosen = None
        for account in order:
            try:
                balance = await self.chain.token_balance(self.trade_token, account.address)
            except Exception as e:
                logger.error(f"  [{account.index}] Balance read failed: {e}")
                continue
            if balance >= amount_in:
                chosen = account
                break
        if chosen is None:
            raise InsufficientFundsError(
                "No single account has enough of the trade token for this sell amount"
            )
        logger.info(f"Using account [{chosen.index}]: {chosen.address}")

        allowance = await self.chain.allowance(self.trade_token, chosen.address, self.router)
        if allowance < amount_in:
            logger.info("Approving trade token for the router...")
            await self.chain.approve(
                chosen.account, self.trade_token, self.router, MAX_UINT256, gas=self.approve_gas
            )

        expected = int(Decimal(whole_tokens) * price * 10 ** self.capital_decimals)
        result = await self.chain.swap_exact_input_single(
            chosen.account,
            self.router,
            self.trade_token,
            self.capital_token,
            self.pool_fee,
            amount_in,
            amount_out_minimum=min_amount_out(expected, self.slippage_percent),
            gas=self.swap_gas,
        )
        logger.info(f"Sell confirmed in block {result.block_number} ({format_tx_hash(result.tx_hash)})")

        trade_after = await self.chain.token_balance(self.trade_token, chosen.address)
        capital_after = await self.chain.token_balance(self.capital_token, chosen.address)
        return SellResult(
            account_index=chosen.index,
            amount_in=amount_in,
            price=price,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            trade_balance_after=trade_after,
            capital_balance_after=capital_after,
        )

    # Sweep

    async def sweep(self, funder_address: str) -> SweepReport:
        """Move every non-zero trade-token and capital balance to the funder."""
        report = SweepReport()
        for account in self.accounts:
            moved = False
            try:
                for token, decimals, label in (
                    (self.trade_token, self.trade_decimals, "trade token"),
                    (self.capital_token, self.capital_decimals, "capital"),
                ):
                    balance = await self.chain.token_balance(token, account.address)
                    if balance == 0:
                        continue
                    result = await self.chain.transfer_token(
                        account.account, token, funder_address, balance, gas=self.token_transfer_gas
                    )
                    report.transfers.append(result)
                    moved = True
                    logger.info(f"  [{account.index}] Swept {format_units(balance, decimals)} {label}")
            except Exception as e:
                logger.error(f"  [{account.index}] Sweep failed: {e}")
                report.failed.append(account.index)
                continue

            if moved:
                report.swept.append(account.index)
            else:
                logger.info(f"  [{account.index}] Nothing to sweep")
                report.skipped.append(account.index)
        return report

    # Convert

    async def convert_idle(self) -> List[SwapOutcome]:
        """
        Swap native balance above the gas reserve into capital, one account at
        a time. The swap's own gas is paid from the reserve.
        """
        price = None
        if self.slippage_percent is not None:
            price = await self.current_price(
                self.weth, self.capital_token, self.weth_pool_fee, 18, self.capital_decimals
            )

        outcomes = []
        for account in self.accounts:
            try:
                balance = await self.chain.native_balance(account.address)
            except Exception as e:
                logger.error(f"  [{account.index}] Balance read failed: {e}")
                outcomes.append(SwapOutcome(account_index=account.index, submitted=False, error=str(e)))
                continue

            if balance <= self.gas_reserve:
                logger.info(
                    f"  [{account.index:2d}] {format_units(balance, 18, 6)} gas token, not enough, skipping"
                )
                outcomes.append(SwapOutcome(account_index=account.index, submitted=False))
                continue

            amount_in = balance - self.gas_reserve
            minimum = 0
            if price is not None:
                expected = int(Decimal(amount_in) / Decimal(10 ** 18) * price * 10 ** self.capital_decimals)
                minimum = min_amount_out(expected, self.slippage_percent)

            try:
                result = await self.chain.swap_exact_input_single(
                    account.account,
                    self.router,
                    self.weth,
                    self.capital_token,
                    self.weth_pool_fee,
                    amount_in,
                    amount_out_minimum=minimum,
                    value=amount_in,
                    gas=self.convert_gas,
                )
            except Exception as e:
                logger.error(f"  [{account.index:2d}] Convert failed: {str(e)[:60]}")
                outcomes.append(SwapOutcome(
                    account_index=account.index, submitted=True, error=str(e), amount_in=amount_in
                ))
                continue

            logger.info(
                f"  [{account.index:2d}] {format_units(amount_in, 18, 6)} gas token converted "
                f"(block {result.block_number})"
            )
            outcomes.append(SwapOutcome(
                account_index=account.index,
                submitted=True,
                success=True,
                tx_hash=result.tx_hash,
                block_number=result.block_number,
                amount_in=amount_in,
            ))
        return outcomes
