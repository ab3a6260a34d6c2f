"""
Funding Distributor
===================

Brings every fleet account up to its planned capital plus the gas reserve,
then grants the swap router spending approval.

Safety:
- Reads all balances first and only tops up the shortfall
- Verifies the funder can cover every shortfall before sending anything
- Funder transfers are strictly sequential on one owned nonce stream
- Approvals run concurrently (each account is its own sender)
- Re-running after a partial failure only sends what is still missing
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from eth_account.signers.local import LocalAccount

from .abis import MAX_UINT256
from .chain import ChainClient, NonceCounter, TxResult, retry_forever
from .deriver import DerivedAccount
from .utils import (
    InsufficientCapitalError,
    InsufficientGasError,
    PlanningError,
    TransactionError,
    format_units,
    logger,
)


@dataclass(frozen=True)
class TopUp:
    """Shortfall for one account (zero means already funded)."""
    index: int
    address: str
    gas: int
    capital: int

    @property
    def needed(self) -> bool:
        return self.gas > 0 or self.capital > 0


@dataclass
class FundingReport:
    """Outcome of one ensure_funded call."""
    top_ups: List[TopUp] = field(default_factory=list)
    transfers: List[TxResult] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    capital_required: int = 0
    gas_required: int = 0
    dry_run: bool = False

    @property
    def transfer_count(self) -> int:
        return len(self.transfers)


@dataclass
class ApprovalReport:
    approved: List[int] = field(default_factory=list)
    already_approved: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class FundingDistributor:
    """
    Idempotent funder for the fleet.

    The distributor owns the funder's NonceCounter; nothing else may send
    from the funder while it is in use.
    """

    def __init__(
        self,
        chain: ChainClient,
        funder: LocalAccount,
        capital_token: str,
        gas_reserve: int,
        funder_gas_buffer: int,
        capital_decimals: int = 6,
        native_transfer_gas: int = 21000,
        token_transfer_gas: int = 100000,
        approve_gas: int = 100000,
        dry_run: bool = False,
        retry_interval: float = 0.5,
    ):
        self.chain = chain
        self.funder = funder
        self.capital_token = capital_token
        self.gas_reserve = gas_reserve
        self.funder_gas_buffer = funder_gas_buffer
        self.capital_decimals = capital_decimals
        self.native_transfer_gas = native_transfer_gas
        self.token_transfer_gas = token_transfer_gas
        self.approve_gas = approve_gas
        self.dry_run = dry_run
        self.retry_interval = retry_interval
        self.nonces: Optional[NonceCounter] = None

    async def _read(self, read, *args) -> int:
        return await retry_forever(lambda: read(*args), self.retry_interval)

    async def plan_top_ups(
        self, accounts: Sequence[DerivedAccount], plan: Sequence[int]
    ) -> List[TopUp]:
        """Read each account once and compute its gas and capital shortfall."""
        if len(accounts) != len(plan):
            raise PlanningError(f"Plan has {len(plan)} amounts for {len(accounts)} accounts")

        top_ups = []
        for account, planned in zip(accounts, plan):
            gas_balance = await self._read(self.chain.native_balance, account.address)
            capital_balance = await self._read(self.chain.token_balance, self.capital_token, account.address)
            top_up = TopUp(
                index=account.index,
                address=account.address,
                gas=max(self.gas_reserve - gas_balance, 0),
                capital=max(planned - capital_balance, 0),
            )
            if not top_up.needed:
                logger.info(f"  [{account.index}] Already funded, skipping")
            top_ups.append(top_up)
        return top_ups

    async def check_funder(self, top_ups: Sequence[TopUp]):
        """
        Fail fast if the funder cannot cover every shortfall.

        The requirement is the sum of outstanding top-ups, not the full
        plan plus a reserve per account: capital and gas already sitting in
        the fleet from an earlier partial run count as delivered.

        Raises:
            InsufficientCapitalError: not enough capital token
            InsufficientGasError: not enough native token for top-ups plus own gas
        """
        capital_needed = sum(t.capital for t in top_ups)
        gas_needed = sum(t.gas for t in top_ups)

        if capital_needed > 0:
            have = await self._read(self.chain.token_balance, self.capital_token, self.funder.address)
            if have < capital_needed:
                raise InsufficientCapitalError(
                    f"Not enough capital. Have {format_units(have, self.capital_decimals)}, "
                    f"need {format_units(capital_needed, self.capital_decimals)}"
                )

        gas_with_buffer = gas_needed + self.funder_gas_buffer
        have_gas = await self._read(self.chain.native_balance, self.funder.address)
        if have_gas < gas_with_buffer:
            raise InsufficientGasError(
                f"Not enough gas token for distribution + own gas. "
                f"Have {format_units(have_gas, 18, 6)}, need {format_units(gas_with_buffer, 18, 6)}"
            )

    async def ensure_funded(
        self, accounts: Sequence[DerivedAccount], plan: Sequence[int]
    ) -> FundingReport:
        """
        Top up every account to its planned capital and the gas reserve.

        Raises:
            InsufficientFundsError: before any transfer, if the funder is short
            TransactionError: if a funder transfer reverts
        """
        top_ups = await self.plan_top_ups(accounts, plan)
        report = FundingReport(
            top_ups=top_ups,
            skipped=[t.index for t in top_ups if not t.needed],
            capital_required=sum(t.capital for t in top_ups),
            gas_required=sum(t.gas for t in top_ups),
            dry_run=self.dry_run,
        )

        if report.capital_required == 0 and report.gas_required == 0:
            logger.info("All accounts already funded")
            return report

        await self.check_funder(top_ups)

        if self.dry_run:
            logger.info(
                f"[DRY RUN] Would send {format_units(report.capital_required, self.capital_decimals)} "
                f"capital and {format_units(report.gas_required, 18, 6)} gas token "
                f"to {len(top_ups) - len(report.skipped)} accounts"
            )
            return report

        self.nonces = await NonceCounter.sync(self.chain, self.funder.address)

        # Gas first so every account can pay for its approval
        for top_up in top_ups:
            if top_up.gas == 0:
                continue
            result = await self._send(
                self.chain.send_native(
                    self.funder,
                    top_up.address,
                    top_up.gas,
                    gas=self.native_transfer_gas,
                    nonce=self.nonces.take(),
                ),
                top_up.index,
            )
            report.transfers.append(result)
            logger.info(f"  [{top_up.index}] Sent {format_units(top_up.gas, 18, 6)} gas token")

        for top_up in top_ups:
            if top_up.capital == 0:
                continue
            result = await self._send(
                self.chain.transfer_token(
                    self.funder,
                    self.capital_token,
                    top_up.address,
                    top_up.capital,
                    gas=self.token_transfer_gas,
                    nonce=self.nonces.take(),
                ),
                top_up.index,
            )
            report.transfers.append(result)
            logger.info(
                f"  [{top_up.index}] Sent {format_units(top_up.capital, self.capital_decimals)} capital"
            )

        logger.info(f"Funding complete: {report.transfer_count} transfers")
        return report

    async def _send(self, pending, index: int) -> TxResult:
        try:
            return await pending
        except TransactionError:
            logger.error(f"  [{index}] Funding transfer reverted")
            raise
        except Exception as e:
            logger.error(f"  [{index}] Funding transfer failed: {e}")
            raise TransactionError(f"Funding transfer to account {index} failed: {e}") from e

    async def ensure_approvals(
        self,
        accounts: Sequence[DerivedAccount],
        plan: Sequence[int],
        spender: str,
    ) -> ApprovalReport:
        """
        Approve ``spender`` for the capital token on every account, concurrently.

        Accounts whose allowance already covers the plan are skipped. A
        failure on one account is recorded and does not affect the others.
        """
        report = ApprovalReport()

        async def approve_one(account: DerivedAccount, planned: int):
            try:
                allowance = await self.chain.allowance(self.capital_token, account.address, spender)
                if allowance >= planned:
                    logger.info(f"  [{account.index}] Already approved")
                    report.already_approved.append(account.index)
                    return
                await self.chain.approve(
                    account.account,
                    self.capital_token,
                    spender,
                    MAX_UINT256,
                    gas=self.approve_gas,
                )
                logger.info(f"  [{account.index}] Approved")
                report.approved.append(account.index)
            except Exception as e:
                logger.error(f"  [{account.index}] Approval failed: {e}")
                report.failed.append(account.index)

        await asyncio.gather(*(approve_one(a, p) for a, p in zip(accounts, plan)))
        return report
