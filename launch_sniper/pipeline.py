"""
Snipe pipeline: derive -> plan -> fund -> approve -> pre-cache -> watch -> fire -> summarize.

Configuration, derivation and planning errors abort before any capital
moves. A dry run stops after the funding preview.
"""

import asyncio
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional, Tuple

from eth_account.signers.local import LocalAccount

from .chain import ChainClient
from .config import SniperConfig
from .deriver import DerivedAccount, child_keys, derive_accounts, funding_account
from .executor import RunSummary, SwapParams, fire_all, precache_swap_amounts, summarize_run
from .funding import FundingDistributor
from .logging_utils import MetricsCollector
from .planner import AllocationPlan, plan_allocation
from .utils import format_units, logger
from .watcher import ReadinessResult, ReadinessWatcher


@dataclass
class Fleet:
    funder: LocalAccount
    accounts: List[DerivedAccount]


def build_fleet(config: SniperConfig) -> Fleet:
    """Derive the funder and fleet accounts and register their keys for redaction."""
    funder = funding_account(config.funder_private_key)
    accounts = derive_accounts(config.funder_private_key, config.num_wallets, config.derivation_tag)
    logger.register_secret(config.funder_private_key)
    for key in child_keys(accounts):
        logger.register_secret(key)
    return Fleet(funder=funder, accounts=accounts)


def build_plan(config: SniperConfig) -> AllocationPlan:
    return plan_allocation(
        config.total_capital,
        config.num_wallets,
        config.capital_decimals,
        seed=config.allocation_seed,
    )


def build_distributor(config: SniperConfig, chain: ChainClient, funder: LocalAccount) -> FundingDistributor:
    return FundingDistributor(
        chain,
        funder,
        config.capital_token,
        gas_reserve=config.gas_reserve_wei,
        funder_gas_buffer=config.funder_gas_buffer_wei,
        capital_decimals=config.capital_decimals,
        native_transfer_gas=config.native_transfer_gas,
        token_transfer_gas=config.token_transfer_gas,
        approve_gas=config.approve_gas,
        dry_run=config.dry_run,
        retry_interval=config.poll_interval_seconds,
    )


def build_watcher(config: SniperConfig, chain: ChainClient) -> ReadinessWatcher:
    return ReadinessWatcher(
        chain,
        config.factory_address,
        config.trade_token,
        config.capital_token,
        config.pool_fee,
        poll_interval=config.poll_interval_seconds,
        mint_lookback_blocks=config.mint_lookback_blocks,
    )


def swap_params(config: SniperConfig) -> SwapParams:
    return SwapParams(
        router=config.router_address,
        token_in=config.capital_token,
        token_out=config.trade_token,
        fee=config.pool_fee,
        gas=config.swap_gas,
        priority_fee_multiplier=config.priority_fee_multiplier,
        max_fee_multiplier=config.max_fee_multiplier,
        min_out_per_input=config.min_out_per_input,
    )


@contextmanager
def sigint_sets(event: Optional[asyncio.Event]):
    """Route SIGINT to ``event.set`` for the duration of the block (no-op for None)."""
    loop = asyncio.get_running_loop()
    installed = False
    if event is not None:
        try:
            loop.add_signal_handler(signal.SIGINT, event.set)
            installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGINT handler unavailable, Ctrl-C will stop the process")
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def run_snipe(
    config: SniperConfig,
    chain: ChainClient,
    cancel_event: Optional[asyncio.Event] = None,
    metrics: Optional[MetricsCollector] = None,
    watch_timeout: Optional[float] = None,
    sigint_cancels_watch: bool = False,
) -> Optional[RunSummary]:
    """
    Execute the full snipe.

    Returns:
        RunSummary, or None for a dry run

    Raises:
        ConfigError, PlanningError: before any I/O
        InsufficientFundsError: before any transfer
        TransactionError: if a funder transfer reverts
        WatchCancelled: if ``cancel_event`` fires during the watch
        asyncio.TimeoutError: if ``watch_timeout`` elapses before the pool is ready

    With ``sigint_cancels_watch``, Ctrl-C while watching sets the cancel
    event instead of interrupting the process. Every other phase keeps the
    default SIGINT behaviour.
    """
    config.validate()
    fleet = build_fleet(config)
    plan = build_plan(config)
    logger.info(
        f"Plan: {format_units(plan.total, config.capital_decimals)} over {len(plan)} accounts "
        f"({format_units(plan.smallest, config.capital_decimals)} - "
        f"{format_units(plan.largest, config.capital_decimals)} each)"
    )

    distributor = build_distributor(config, chain, fleet.funder)
    logger.info("Funding accounts...")
    await distributor.ensure_funded(fleet.accounts, plan.amounts)
    if config.dry_run:
        logger.info("[DRY RUN] Stopping before approvals and swaps")
        return None

    logger.info("Approving router...")
    approvals = await distributor.ensure_approvals(fleet.accounts, plan.amounts, config.router_address)
    if approvals.failed:
        logger.warning(f"Approval failed for accounts {approvals.failed}; their swaps will likely revert")

    logger.info("Pre-reading swap amounts...")
    amounts = await precache_swap_amounts(
        chain,
        fleet.accounts,
        config.capital_token,
        config.capital_decimals,
        retry_interval=config.poll_interval_seconds,
    )
    logger.info(f"Total to swap: {format_units(sum(amounts), config.capital_decimals, 0)}")

    if sigint_cancels_watch and cancel_event is None:
        cancel_event = asyncio.Event()
    with sigint_sets(cancel_event if sigint_cancels_watch else None):
        watching = watch_pool(config, chain, cancel_event)
        if watch_timeout is not None:
            ready = await asyncio.wait_for(watching, timeout=watch_timeout)
        else:
            ready = await watching
    logger.info(f"Pool {ready.pool_address} tradeable ({ready.witness.value}), firing {len(amounts)} swaps")

    outcomes = await fire_all(
        chain,
        fleet.accounts,
        amounts,
        swap_params(config),
        metrics=metrics,
        retry_interval=config.poll_interval_seconds,
    )
    return await summarize_run(chain, fleet.accounts, outcomes, config.trade_token)


async def watch_pool(
    config: SniperConfig,
    chain: ChainClient,
    cancel_event: Optional[asyncio.Event] = None,
) -> ReadinessResult:
    return await build_watcher(config, chain).watch(cancel_event)


def preview(config: SniperConfig) -> Tuple[Fleet, AllocationPlan]:
    """Pure part of the pipeline, for the banner and dry runs."""
    config.validate()
    return build_fleet(config), build_plan(config)
