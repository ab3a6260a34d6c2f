"""
Chain client tests (mocked AsyncWeb3).
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from launch_sniper.chain import (
    DEFAULT_PRIORITY_FEE,
    DRY_RUN_HASH,
    ChainClient,
    FeeQuote,
    NonceCounter,
    retry_forever,
)
from launch_sniper.deriver import funding_account
from launch_sniper.utils import TransactionError

from conftest import FUNDER_SECRET, TOKEN

RECIPIENT = "0x000000000000000000000000000000000000dEaD"
FEES = FeeQuote(max_fee_per_gas=2_000_000_000, max_priority_fee_per_gas=100_000_000)


async def resolved(value):
    return value


async def failing(exc):
    raise exc


def mock_w3(status=1):
    w3 = MagicMock()
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x12" * 32)
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        return_value={"status": status, "blockNumber": 77, "gasUsed": 21000}
    )
    w3.eth.get_transaction_count = AsyncMock(return_value=9)
    w3.eth.get_block = AsyncMock(return_value={"baseFeePerGas": 1_000})
    return w3


class TestFeeQuote:
    def test_scaled(self):
        scaled = FeeQuote(1_000, 100).scaled(3, 2)
        assert scaled.max_priority_fee_per_gas == 300
        assert scaled.max_fee_per_gas == 2_000

    def test_max_fee_covers_priority(self):
        scaled = FeeQuote(100, 100).scaled(3, 2)
        assert scaled.max_fee_per_gas == 300

    def test_tx_fields(self):
        assert FEES.as_tx_fields() == {
            "maxFeePerGas": 2_000_000_000,
            "maxPriorityFeePerGas": 100_000_000,
        }


class TestNonceCounter:
    def test_take_increments(self):
        counter = NonceCounter("0xabc", 5)
        assert [counter.take(), counter.take(), counter.take()] == [5, 6, 7]
        assert counter.peek == 8

    def test_sync_from_pending(self):
        chain = AsyncMock()
        chain.pending_nonce.return_value = 42
        counter = asyncio.run(NonceCounter.sync(chain, "0xabc"))
        assert counter.peek == 42


class TestRetryForever:
    def test_retries_until_success(self):
        read = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), 7])
        assert asyncio.run(retry_forever(read, 0)) == 7
        assert read.await_count == 3


class TestFeeEstimate:
    def test_base_fee_doubled_plus_priority(self):
        w3 = mock_w3()
        client = ChainClient(w3)

        async def run():
            w3.eth.max_priority_fee = resolved(50)
            return await client.fee_quote()

        quote = asyncio.run(run())
        assert quote.max_priority_fee_per_gas == 50
        assert quote.max_fee_per_gas == 2_050

    def test_priority_fallback(self):
        w3 = mock_w3()
        client = ChainClient(w3)

        async def run():
            w3.eth.max_priority_fee = failing(ValueError("method not found"))
            return await client.fee_quote()

        quote = asyncio.run(run())
        assert quote.max_priority_fee_per_gas == DEFAULT_PRIORITY_FEE


class TestSend:
    def test_send_native_signs_and_waits(self):
        w3 = mock_w3()
        client = ChainClient(w3)
        account = funding_account(FUNDER_SECRET)

        result = asyncio.run(client.send_native(account, RECIPIENT, 10**15, nonce=3, fees=FEES))

        assert result.tx_hash == "0x" + "12" * 32
        assert result.block_number == 77
        w3.eth.send_raw_transaction.assert_awaited_once()
        w3.eth.wait_for_transaction_receipt.assert_awaited_once()

    def test_nonce_from_chain_when_not_given(self):
        w3 = mock_w3()
        client = ChainClient(w3)
        account = funding_account(FUNDER_SECRET)

        asyncio.run(client.send_native(account, RECIPIENT, 1, fees=FEES))

        w3.eth.get_transaction_count.assert_awaited_once_with(account.address, "pending")

    def test_revert_raises(self):
        client = ChainClient(mock_w3(status=0))
        account = funding_account(FUNDER_SECRET)

        with pytest.raises(TransactionError):
            asyncio.run(client.send_native(account, RECIPIENT, 1, nonce=0, fees=FEES))

    def test_dry_run_sends_nothing(self):
        w3 = mock_w3()
        client = ChainClient(w3, dry_run=True)
        account = funding_account(FUNDER_SECRET)

        result = asyncio.run(client.send_native(account, RECIPIENT, 1, nonce=0, fees=FEES))

        assert result.tx_hash == DRY_RUN_HASH
        w3.eth.send_raw_transaction.assert_not_awaited()


class TestReads:
    def test_token_balance(self):
        w3 = mock_w3()
        contract = MagicMock()
        contract.functions.balanceOf.return_value.call = AsyncMock(return_value=123)
        w3.eth.contract.return_value = contract
        client = ChainClient(w3)

        balance = asyncio.run(client.token_balance(TOKEN, RECIPIENT))

        assert balance == 123
        contract.functions.balanceOf.assert_called_once_with(RECIPIENT)

    def test_contract_cached(self):
        w3 = mock_w3()
        contract = MagicMock()
        contract.functions.balanceOf.return_value.call = AsyncMock(return_value=1)
        w3.eth.contract.return_value = contract
        client = ChainClient(w3)

        async def run():
            await client.token_balance(TOKEN, RECIPIENT)
            await client.token_balance(TOKEN, RECIPIENT)

        asyncio.run(run())
        assert w3.eth.contract.call_count == 1

    def test_mint_logs_filter(self):
        w3 = mock_w3()
        w3.eth.get_logs = AsyncMock(return_value=[{"blockNumber": 990}])
        client = ChainClient(w3)

        logs = asyncio.run(client.mint_logs(TOKEN, 950, 1000))

        assert logs == [{"blockNumber": 990}]
        params = w3.eth.get_logs.await_args.args[0]
        assert params["fromBlock"] == 950
        assert params["toBlock"] == 1000
        assert len(params["topics"]) == 1
