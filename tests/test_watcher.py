"""
Readiness watcher tests.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from launch_sniper.abis import ZERO_ADDRESS
from launch_sniper.utils import WatchCancelled
from launch_sniper.watcher import (
    PoolReadiness,
    ReadinessWatcher,
    ReadyWitness,
)

from conftest import FACTORY, POOL, TOKEN, USDC


def make_watcher(chain, interval=0):
    return ReadinessWatcher(chain, FACTORY, TOKEN, USDC, 10000, poll_interval=interval)


def mock_chain():
    chain = AsyncMock()
    chain.get_pool.return_value = POOL
    chain.pool_liquidity.return_value = 0
    chain.block_number.return_value = 1000
    chain.mint_logs.return_value = []
    return chain


class TestWaitForPool:
    def test_pool_after_eleven_polls(self):
        chain = mock_chain()
        chain.get_pool.side_effect = [ZERO_ADDRESS] * 10 + [POOL]
        chain.pool_liquidity.return_value = 5
        watcher = make_watcher(chain)

        result = asyncio.run(watcher.watch())

        assert result.polls_for_pool == 11
        assert chain.get_pool.await_count == 11
        assert result.pool_address == POOL
        # Liquidity is only checked once the pool exists
        assert chain.pool_liquidity.await_count == 1

    def test_errors_are_retried(self):
        chain = mock_chain()
        chain.get_pool.side_effect = [ConnectionError("timeout"), ZERO_ADDRESS, ValueError("bad"), POOL]
        chain.pool_liquidity.return_value = 1
        watcher = make_watcher(chain)

        pool, polls = asyncio.run(watcher.wait_for_pool())

        assert pool == POOL
        assert polls == 4


class TestWaitForLiquidity:
    def test_in_range_witness(self):
        chain = mock_chain()
        chain.pool_liquidity.side_effect = [0, 0, 42]
        result = asyncio.run(make_watcher(chain).watch())

        assert result.witness == ReadyWitness.IN_RANGE
        assert result.polls_for_liquidity == 3

    def test_single_sided_witness(self, chain):
        chain.pools[(frozenset((TOKEN.lower(), USDC.lower())), 10000)] = POOL
        chain.mints[POOL.lower()] = [chain.head - 10]

        result = asyncio.run(make_watcher(chain).watch())

        assert result.witness == ReadyWitness.SINGLE_SIDED
        assert result.polls_for_liquidity == 1

    def test_mint_window(self):
        chain = mock_chain()
        chain.pool_liquidity.side_effect = [0, 3]
        watcher = ReadinessWatcher(chain, FACTORY, TOKEN, USDC, 10000, poll_interval=0, mint_lookback_blocks=50)

        asyncio.run(watcher.watch())

        chain.mint_logs.assert_awaited_once_with(POOL, 950, 1000)

    def test_window_clamped_at_genesis(self):
        chain = mock_chain()
        chain.block_number.return_value = 20
        chain.pool_liquidity.side_effect = [0, 3]

        asyncio.run(make_watcher(chain).watch())

        chain.mint_logs.assert_awaited_once_with(POOL, 0, 20)

    def test_liquidity_errors_are_retried(self):
        chain = mock_chain()
        chain.pool_liquidity.side_effect = [ConnectionError("reset"), 0, 9]
        result = asyncio.run(make_watcher(chain).watch())

        assert result.witness == ReadyWitness.IN_RANGE
        assert result.polls_for_liquidity == 3


class TestTransitions:
    def test_monotonic(self):
        chain = mock_chain()
        chain.get_pool.side_effect = [ZERO_ADDRESS, ZERO_ADDRESS, POOL]
        chain.pool_liquidity.side_effect = [0, 0, 1]
        watcher = make_watcher(chain)

        asyncio.run(watcher.watch())

        assert watcher.transitions == [
            PoolReadiness.NOT_FOUND,
            PoolReadiness.FOUND_NOT_TRADEABLE,
            PoolReadiness.TRADEABLE,
        ]
        assert watcher.state == PoolReadiness.TRADEABLE

    def test_no_backward_edge(self):
        watcher = make_watcher(mock_chain())
        watcher._advance(PoolReadiness.FOUND_NOT_TRADEABLE)
        with pytest.raises(RuntimeError):
            watcher._advance(PoolReadiness.NOT_FOUND)
        assert watcher.transitions == [PoolReadiness.NOT_FOUND, PoolReadiness.FOUND_NOT_TRADEABLE]


class TestCancel:
    def test_cancel_before_start(self):
        chain = mock_chain()

        async def run():
            event = asyncio.Event()
            event.set()
            await make_watcher(chain).watch(event)

        with pytest.raises(WatchCancelled):
            asyncio.run(run())
        chain.get_pool.assert_not_awaited()

    def test_cancel_while_waiting(self):
        chain = mock_chain()
        chain.get_pool.return_value = ZERO_ADDRESS
        watcher = make_watcher(chain, interval=0.01)

        async def run():
            event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, event.set)
            await watcher.watch(event)

        with pytest.raises(WatchCancelled):
            asyncio.run(run())
        assert watcher.state == PoolReadiness.NOT_FOUND

    def test_wait_for_timeout(self):
        chain = mock_chain()
        chain.get_pool.return_value = ZERO_ADDRESS

        async def run():
            await asyncio.wait_for(make_watcher(chain, interval=0.01).watch(), timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(run())
