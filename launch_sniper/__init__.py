"""
Launch Sniper for Base

Funds a deterministic fleet of derived wallets, watches a Uniswap V3 pool
for tradeable liquidity and fires one swap per wallet concurrently.

Usage:
    from launch_sniper import SniperConfig, ChainClient, run_snipe

    # Or from the shell: launch-sniper --help
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import SniperConfig, load_config
from .chain import ChainClient, FeeQuote, NonceCounter, TxResult
from .deriver import DerivedAccount, derive_account, derive_accounts, funding_account
from .planner import AllocationPlan, plan_allocation
from .funding import FundingDistributor, FundingReport, ApprovalReport
from .watcher import PoolReadiness, ReadyWitness, ReadinessResult, ReadinessWatcher
from .executor import RunSummary, SwapOutcome, SwapParams, fire_all, precache_swap_amounts
from .lifecycle import BalanceReport, FleetOperations, SweepReport
from .pipeline import run_snipe
from .utils import (
    logger,
    setup_logging,
    ConfigError,
    PlanningError,
    TransactionError,
    InsufficientFundsError,
    InsufficientCapitalError,
    InsufficientGasError,
    PoolNotFoundError,
    WatchCancelled,
)

__all__ = [
    "SniperConfig",
    "load_config",
    "ChainClient",
    "FeeQuote",
    "NonceCounter",
    "TxResult",
    "DerivedAccount",
    "derive_account",
    "derive_accounts",
    "funding_account",
    "AllocationPlan",
    "plan_allocation",
    "FundingDistributor",
    "FundingReport",
    "ApprovalReport",
    "PoolReadiness",
    "ReadyWitness",
    "ReadinessResult",
    "ReadinessWatcher",
    "RunSummary",
    "SwapOutcome",
    "SwapParams",
    "fire_all",
    "precache_swap_amounts",
    "BalanceReport",
    "FleetOperations",
    "SweepReport",
    "run_snipe",
    "logger",
    "setup_logging",
    "ConfigError",
    "PlanningError",
    "TransactionError",
    "InsufficientFundsError",
    "InsufficientCapitalError",
    "InsufficientGasError",
    "PoolNotFoundError",
    "WatchCancelled",
]
