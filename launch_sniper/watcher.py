"""
Readiness Watcher
=================

Two-stage gate in front of the swap engine:

1. NOT_FOUND: poll the factory until the pool for (token_a, token_b, fee)
   exists.
2. FOUND_NOT_TRADEABLE: poll the pool until it has in-range liquidity, or a
   Mint event landed in the trailing block window (single-sided position).

A failed poll is never fatal: the error is logged at debug level and the
same check runs again on the next tick. There is no built-in timeout; pass
a cancel event or wrap ``watch`` in ``asyncio.wait_for``.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .abis import ZERO_ADDRESS
from .chain import ChainClient
from .utils import WatchCancelled, format_address, logger


class PoolReadiness(Enum):
    NOT_FOUND = "not_found"
    FOUND_NOT_TRADEABLE = "found_not_tradeable"
    TRADEABLE = "tradeable"


class ReadyWitness(Enum):
    """Which signal made the pool tradeable (informational only)."""
    IN_RANGE = "in-range"
    SINGLE_SIDED = "single-sided"


@dataclass(frozen=True)
class ReadinessResult:
    pool_address: str
    witness: ReadyWitness
    polls_for_pool: int
    polls_for_liquidity: int


class ReadinessWatcher:
    """Polls the factory and pool until the pool can be traded against."""

    def __init__(
        self,
        chain: ChainClient,
        factory: str,
        token_a: str,
        token_b: str,
        fee: int,
        poll_interval: float = 0.5,
        mint_lookback_blocks: int = 50,
    ):
        self.chain = chain
        self.factory = factory
        self.token_a = token_a
        self.token_b = token_b
        self.fee = fee
        self.poll_interval = poll_interval
        self.mint_lookback_blocks = mint_lookback_blocks
        self.state = PoolReadiness.NOT_FOUND
        self.transitions: List[PoolReadiness] = [PoolReadiness.NOT_FOUND]

    def _advance(self, state: PoolReadiness):
        order = list(PoolReadiness)
        if order.index(state) <= order.index(self.state):
            raise RuntimeError(f"Illegal readiness transition {self.state.name} -> {state.name}")
        self.state = state
        self.transitions.append(state)

    async def _tick(self, cancel_event: Optional[asyncio.Event]):
        if cancel_event is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return
        raise WatchCancelled(f"Watch cancelled in state {self.state.name}")

    def _check_cancel(self, cancel_event: Optional[asyncio.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise WatchCancelled(f"Watch cancelled in state {self.state.name}")

    async def poll_pool(self) -> Optional[str]:
        """One factory lookup; None while the pool does not exist or on error."""
        try:
            pool = await self.chain.get_pool(self.factory, self.token_a, self.token_b, self.fee)
        except Exception as e:
            logger.debug(f"getPool failed, retrying: {e}")
            return None
        if not pool or pool.lower() == ZERO_ADDRESS:
            return None
        return pool

    async def poll_liquidity(self, pool: str) -> Optional[ReadyWitness]:
        """One readiness check; None while not tradeable or on error."""
        try:
            if await self.chain.pool_liquidity(pool) > 0:
                return ReadyWitness.IN_RANGE

            head = await self.chain.block_number()
            start = max(0, head - self.mint_lookback_blocks)
            if await self.chain.mint_logs(pool, start, head):
                return ReadyWitness.SINGLE_SIDED
        except Exception as e:
            logger.debug(f"Liquidity check failed, retrying: {e}")
        return None

    async def wait_for_pool(self, cancel_event: Optional[asyncio.Event] = None) -> tuple:
        """Block until the pool exists. Returns (pool_address, polls)."""
        polls = 0
        while True:
            self._check_cancel(cancel_event)
            polls += 1
            pool = await self.poll_pool()
            if pool is not None:
                self._advance(PoolReadiness.FOUND_NOT_TRADEABLE)
                logger.info(f"Pool detected: {pool} (after {polls} polls)")
                return pool, polls
            await self._tick(cancel_event)

    async def wait_for_liquidity(self, pool: str, cancel_event: Optional[asyncio.Event] = None) -> tuple:
        """Block until the pool is tradeable. Returns (witness, polls)."""
        polls = 0
        while True:
            self._check_cancel(cancel_event)
            polls += 1
            witness = await self.poll_liquidity(pool)
            if witness is not None:
                self._advance(PoolReadiness.TRADEABLE)
                logger.info(f"Liquidity detected ({witness.value}) after {polls} polls")
                return witness, polls
            await self._tick(cancel_event)

    async def watch(self, cancel_event: Optional[asyncio.Event] = None) -> ReadinessResult:
        """
        Run both stages to completion.

        Raises:
            WatchCancelled: if ``cancel_event`` is set before the pool is ready
        """
        logger.info(f"Watching for pool {format_address(self.token_a)}/{format_address(self.token_b)} fee {self.fee}")
        pool, polls_for_pool = await self.wait_for_pool(cancel_event)
        logger.info("Watching for liquidity (single-sided or in-range)...")
        witness, polls_for_liquidity = await self.wait_for_liquidity(pool, cancel_event)
        return ReadinessResult(
            pool_address=pool,
            witness=witness,
            polls_for_pool=polls_for_pool,
            polls_for_liquidity=polls_for_liquidity,
        )
