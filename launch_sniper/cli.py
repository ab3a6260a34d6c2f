#!/usr/bin/env python3
"""
Launch Sniper CLI
=================

Commands:
- snipe: fund the fleet, watch for the pool and fire every swap (default)
- balances: show capital, gas and trade-token balances for the fleet
- sell AMOUNT: sell ~AMOUNT of capital worth of the trade token from one account
- sweep: move trade token and capital from every account back to the funder
- convert: swap gas token above the reserve into capital on every account
- init-config: write a default config file

Usage:
    launch-sniper --dry-run
    launch-sniper snipe --watch-timeout 600
    launch-sniper balances
    launch-sniper sell 50
    launch-sniper sweep
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich import box
from rich.panel import Panel
from rich.table import Table

from .chain import ChainClient
from .config import DEFAULT_CONFIG, SniperConfig, load_config
from .executor import RunSummary
from .lifecycle import BalanceReport, FleetOperations, SellResult
from .logging_utils import MetricsCollector
from .pipeline import build_fleet, preview, run_snipe
from .planner import AllocationPlan
from .utils import (
    ConfigError,
    InsufficientFundsError,
    PlanningError,
    PoolNotFoundError,
    TransactionError,
    WatchCancelled,
    console,
    format_units,
    setup_logging,
)

FATAL_ERRORS = (
    ConfigError,
    PlanningError,
    InsufficientFundsError,
    TransactionError,
    PoolNotFoundError,
    WatchCancelled,
    asyncio.TimeoutError,
)


def print_banner(config: SniperConfig, plan: AllocationPlan, funder_address: str):
    """Startup summary with the allocation range."""
    decimals = config.capital_decimals
    body = (
        f"Token:    {config.trade_token}\n"
        f"Capital:  {format_units(plan.total, decimals)} over {len(plan)} wallets\n"
        f"Range:    {format_units(plan.smallest, decimals)} - {format_units(plan.largest, decimals)} per wallet\n"
        f"Pool fee: {config.pool_fee / 10000:.2f}%\n"
        f"Funder:   {funder_address}"
    )
    if config.dry_run:
        body += "\n[yellow]DRY RUN: no transactions will be sent[/yellow]"
    console.print(Panel(body, title="Launch Sniper", style="bold cyan", box=box.DOUBLE))


def print_plan(plan: AllocationPlan, fleet_addresses, decimals: int):
    table = Table(title="Allocation", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Address", style="dim")
    table.add_column("Capital", style="green", justify="right")
    for index, (address, amount) in enumerate(zip(fleet_addresses, plan)):
        table.add_row(str(index), address, format_units(amount, decimals))
    console.print(table)


def print_run_summary(summary: RunSummary, config: SniperConfig):
    table = Table(title="Results", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Status", width=8)
    table.add_column("Tx", style="dim")
    table.add_column("Tokens", style="yellow", justify="right")

    for outcome in summary.outcomes:
        if not outcome.submitted:
            status = "[dim]skipped[/dim]"
        elif outcome.success:
            status = "[green]✓[/green]"
        else:
            status = "[red]✗[/red]"
        balance = summary.final_balances.get(outcome.account_index)
        table.add_row(
            str(outcome.account_index),
            status,
            outcome.tx_hash or (outcome.error or "")[:40],
            format_units(balance, config.trade_decimals) if balance is not None else "?",
        )
    console.print(table)
    console.print(
        f"Total acquired: [bold]{format_units(summary.total_acquired, config.trade_decimals)}[/bold]  "
        f"Succeeded: {summary.success_count}/{len(summary.outcomes)}  "
        f"Skipped: {summary.skipped_count}"
    )


def print_balances(report: BalanceReport, config: SniperConfig):
    table = Table(title="Wallet Balances", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=6)
    table.add_column("Address", style="dim")
    table.add_column("Trade token", style="yellow", justify="right")
    table.add_column("Capital", style="green", justify="right")
    table.add_column("Gas", style="blue", justify="right")

    def row(label, balances):
        if balances.error:
            table.add_row(label, balances.address, "[red]error[/red]", "", "")
            return
        table.add_row(
            label,
            balances.address,
            format_units(balances.trade, config.trade_decimals, 0),
            format_units(balances.capital, config.capital_decimals),
            format_units(balances.gas, 18, 4),
        )

    for balances in report.accounts:
        row(str(balances.index), balances)
    if report.funder is not None:
        table.add_section()
        row("Funder", report.funder)
    console.print(table)
    console.print(
        f"Total trade token: {format_units(report.total_trade, config.trade_decimals, 0)}  "
        f"Total capital: {format_units(report.total_capital, config.capital_decimals)}"
    )


def print_sell(result: SellResult, config: SniperConfig):
    console.print(Panel(
        f"Wallet [{result.account_index}] after sell\n"
        f"Trade token: {format_units(result.trade_balance_after, config.trade_decimals, 0)}\n"
        f"Capital:     {format_units(result.capital_balance_after, config.capital_decimals)}\n"
        f"Tx:          https://basescan.org/tx/{result.tx_hash}",
        border_style="green",
    ))


async def connect(config: SniperConfig) -> ChainClient:
    chain = ChainClient.connect(
        config.rpc_url,
        chain_id=config.chain_id,
        confirmation_timeout=config.confirmation_timeout,
        dry_run=config.dry_run,
    )
    if not await chain.is_connected():
        raise ConfigError(f"Failed to connect to {config.rpc_url}")
    return chain


async def snipe_command(config: SniperConfig, args) -> Optional[RunSummary]:
    fleet, plan = preview(config)
    print_banner(config, plan, fleet.funder.address)
    if config.dry_run:
        print_plan(plan, [a.address for a in fleet.accounts], config.capital_decimals)

    chain = await connect(config)
    metrics = MetricsCollector()

    summary = await run_snipe(
        config,
        chain,
        metrics=metrics,
        watch_timeout=args.watch_timeout,
        sigint_cancels_watch=True,
    )
    if summary is None:
        console.print("[yellow]Dry run complete. No transactions were sent.[/yellow]")
        return None
    print_run_summary(summary, config)
    metrics.print_summary(console)
    console.print("Tokens stay in each wallet. Use 'sell AMOUNT' to sell, 'balances' to check.")
    return summary


async def fleet_command(config: SniperConfig, args):
    config.validate(require_trade_token=args.command != "convert")
    fleet = build_fleet(config)
    chain = await connect(config)
    ops = FleetOperations.from_config(config, chain, fleet.accounts)

    if args.command == "balances":
        print_balances(await ops.inspect_balances(fleet.funder.address), config)

    elif args.command == "sell":
        console.print(f"[bold cyan]Selling ~{args.sell_amount} worth of the trade token[/bold cyan]")
        print_sell(await ops.sell_position(args.sell_amount), config)

    elif args.command == "sweep":
        console.print("[bold cyan]Sweeping to funder[/bold cyan]")
        report = await ops.sweep(fleet.funder.address)
        console.print(
            f"Transfers: {len(report.transfers)}  Swept: {len(report.swept)}  "
            f"Skipped: {len(report.skipped)}  Failed: {len(report.failed)}"
        )
        funder_trade = await chain.token_balance(config.trade_token, fleet.funder.address)
        console.print(f"[green]Funder trade token: {format_units(funder_trade, config.trade_decimals, 0)}[/green]")

    elif args.command == "convert":
        console.print(Panel(
            f"Convert gas token -> capital on all wallets\n"
            f"Gas reserve: {config.gas_reserve_eth} per wallet",
            style="bold cyan",
        ))
        outcomes = await ops.convert_idle()
        converted = sum(1 for o in outcomes if o.success)
        console.print(f"[green]Converted on {converted} wallets. Run 'balances' to verify.[/green]")


def init_config_command(args):
    path = Path(args.config)
    if path.exists() and not args.force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/red]")
        sys.exit(1)
    path.write_text(DEFAULT_CONFIG + "\n")
    console.print(f"[green]Wrote {path}[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="launch-sniper",
        description="Fund a derived wallet fleet and snipe a token launch on a Uniswap V3 pool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview the plan and funding without sending anything
  launch-sniper --dry-run

  # Snipe with 20 wallets and 100 USDC, give up after 10 minutes
  launch-sniper --wallets 20 --amount 100 snipe --watch-timeout 600

  # Sell ~$50 of the position from one wallet
  launch-sniper sell 50
        """
    )

    parser.add_argument('--config', default='./sniper_config.yaml', help='Path to YAML config')
    parser.add_argument('--rpc', help='JSON-RPC URL (overrides config and BASE_RPC_URL)')
    parser.add_argument('--wallets', type=int, help='Number of fleet wallets')
    parser.add_argument('--amount', help='Total capital to distribute (capital token units)')
    parser.add_argument('--dry-run', action='store_true', help='Plan and preview without sending transactions')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    snipe_parser = subparsers.add_parser('snipe', help='Fund, watch and fire (default)')
    snipe_parser.add_argument('--watch-timeout', type=float, help='Give up if the pool is not ready in SECONDS')

    subparsers.add_parser('balances', help='Show fleet balances')

    sell_parser = subparsers.add_parser('sell', help='Sell ~AMOUNT of capital worth from one wallet')
    sell_parser.add_argument('sell_amount', metavar='AMOUNT', type=float, help='Capital-denominated amount to sell')

    subparsers.add_parser('sweep', help='Consolidate trade token and capital to the funder')
    subparsers.add_parser('convert', help='Swap gas token above the reserve into capital')

    init_parser = subparsers.add_parser('init-config', help='Write a default config file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    return parser


def apply_overrides(config: SniperConfig, args) -> SniperConfig:
    if args.rpc:
        config.rpc_url = args.rpc
    if args.wallets is not None:
        config.num_wallets = args.wallets
    if args.amount is not None:
        config = SniperConfig.from_dict({**config.to_dict(), "total_capital": args.amount,
                                         "funder_private_key": config.funder_private_key})
    if args.dry_run:
        config.dry_run = True
    if args.log_level:
        config.log_level = args.log_level
    return config


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = 'snipe'
        args.watch_timeout = None

    if args.command == 'init-config':
        init_config_command(args)
        return

    try:
        config = apply_overrides(load_config(Path(args.config)), args)
        setup_logging(config.log_level, config.log_file)

        if args.command == 'snipe':
            asyncio.run(snipe_command(config, args))
        else:
            asyncio.run(fleet_command(config, args))
    except FATAL_ERRORS as e:
        console.print(f"[red]Error: {e or type(e).__name__}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(1)


if __name__ == '__main__':
    main()
