"""
Parallel Execution Engine
=========================

Pre-caches each account's spendable balance, then fires one exact-input
swap per account concurrently the moment the pool is ready.

- Fee estimate is read once and scaled (priority and max fee multipliers)
- Submission for one account never waits on another
- A revert or RPC error is recorded on that account's outcome only
- Final totals come from a serial balance scan, not a running tally
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .chain import ChainClient, FeeQuote, retry_forever
from .deriver import DerivedAccount
from .logging_utils import MetricsCollector
from .utils import format_tx_hash, logger


@dataclass
class SwapOutcome:
    """Result of one account's swap attempt."""
    account_index: int
    submitted: bool
    success: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    block_number: Optional[int] = None
    latency_ms: Optional[float] = None
    amount_in: int = 0


@dataclass(frozen=True)
class SwapParams:
    """Everything fire_all needs besides the accounts and amounts."""
    router: str
    token_in: str
    token_out: str
    fee: int
    gas: int = 300000
    priority_fee_multiplier: int = 3
    max_fee_multiplier: int = 2
    min_out_per_input: Decimal = Decimal("0")


@dataclass
class RunSummary:
    outcomes: List[SwapOutcome]
    final_balances: Dict[int, int] = field(default_factory=dict)

    @property
    def total_acquired(self) -> int:
        return sum(self.final_balances.values())

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.submitted)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if o.submitted and not o.success)


def floor_to_whole_units(amount: int, decimals: int) -> int:
    unit = 10 ** decimals
    return (amount // unit) * unit


async def precache_swap_amounts(
    chain: ChainClient,
    accounts: Sequence[DerivedAccount],
    token: str,
    decimals: int,
    retry_interval: float = 0.5,
) -> List[int]:
    """
    Read each account's balance of ``token`` ahead of the watch loop, floored
    to whole tokens. Transient read errors are retried on every tick.
    """
    amounts = []
    for account in accounts:
        raw = await retry_forever(
            lambda a=account: chain.token_balance(token, a.address), retry_interval
        )
        amount = floor_to_whole_units(raw, decimals)
        amounts.append(amount)
        logger.info(f"  [{account.index:2d}] {amount // 10 ** decimals} cached")
    return amounts


def min_out_for(amount_in: int, min_out_per_input: Decimal) -> int:
    return int(Decimal(amount_in) * min_out_per_input)


async def fire_all(
    chain: ChainClient,
    accounts: Sequence[DerivedAccount],
    amounts: Sequence[int],
    params: SwapParams,
    metrics: Optional[MetricsCollector] = None,
    retry_interval: float = 0.5,
) -> List[SwapOutcome]:
    """
    Submit one swap per account concurrently and await every receipt.

    Zero-amount accounts are not submitted and are not failures. The fee
    read is retried on every tick until it succeeds.
    """
    base_fees = await retry_forever(chain.fee_quote, retry_interval)
    fees: FeeQuote = base_fees.scaled(params.priority_fee_multiplier, params.max_fee_multiplier)
    logger.info(
        f"Fees: priority {fees.max_priority_fee_per_gas} wei, max {fees.max_fee_per_gas} wei"
    )

    async def fire_one(account: DerivedAccount, amount: int) -> SwapOutcome:
        if amount == 0:
            logger.info(f"  [{account.index}] Nothing to swap, skipping")
            return SwapOutcome(account_index=account.index, submitted=False)

        metric = metrics.start("swap", account.index) if metrics else None
        started = time.perf_counter()
        try:
            result = await chain.swap_exact_input_single(
                account.account,
                params.router,
                params.token_in,
                params.token_out,
                params.fee,
                amount,
                amount_out_minimum=min_out_for(amount, params.min_out_per_input),
                gas=params.gas,
                fees=fees,
            )
        except Exception as e:
            latency = (time.perf_counter() - started) * 1000
            logger.error(f"  [{account.index}] Swap failed: {str(e)[:80]}")
            if metric:
                metric.finalize(success=False, error=str(e))
            return SwapOutcome(
                account_index=account.index,
                submitted=True,
                success=False,
                error=str(e),
                latency_ms=latency,
                amount_in=amount,
            )

        latency = (time.perf_counter() - started) * 1000
        logger.info(
            f"  [{account.index}] Included in block {result.block_number} "
            f"({format_tx_hash(result.tx_hash)})"
        )
        if metric:
            metric.tx_hash = result.tx_hash
            metric.block_number = result.block_number
            metric.finalize(success=True)
        return SwapOutcome(
            account_index=account.index,
            submitted=True,
            success=True,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            latency_ms=latency,
            amount_in=amount,
        )

    return list(await asyncio.gather(*(fire_one(a, n) for a, n in zip(accounts, amounts))))


async def summarize_run(
    chain: ChainClient,
    accounts: Sequence[DerivedAccount],
    outcomes: List[SwapOutcome],
    trade_token: str,
) -> RunSummary:
    """Serial final-state scan of each account's trade-token balance."""
    summary = RunSummary(outcomes=outcomes)
    for account in accounts:
        try:
            summary.final_balances[account.index] = await chain.token_balance(
                trade_token, account.address
            )
        except Exception as e:
            logger.error(f"  [{account.index}] Balance read failed: {e}")
    return summary
