"""
Shared fixtures: an in-memory chain that implements the ChainClient surface.
"""

from collections import defaultdict
from decimal import Decimal

import pytest

from launch_sniper.abis import ZERO_ADDRESS
from launch_sniper.chain import FeeQuote, TxResult
from launch_sniper.deriver import derive_accounts, funding_account
from launch_sniper.utils import TransactionError

FUNDER_SECRET = "0x" + "11" * 32
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
WETH = "0x4200000000000000000000000000000000000006"
TOKEN = "0x1111111111111111111111111111111111111111"
FACTORY = "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
ROUTER = "0x2626664c2603336E57B271c5C0b26F421741e481"
POOL = "0x2222222222222222222222222222222222222222"


class FakeChain:
    """
    Stateful stand-in for ChainClient.

    Balances are keyed by lower-case address. Every write is appended to
    ``sent`` as a dict so tests can assert on ordering and nonces.
    """

    def __init__(self):
        self.native = defaultdict(int)
        self.tokens = defaultdict(lambda: defaultdict(int))
        self.allowances = defaultdict(int)
        self.nonces = defaultdict(int)
        self.sent = []
        self.fail_senders = set()
        self.pools = {}
        self.liquidity = defaultdict(int)
        self.sqrt_price = {}
        self.mints = defaultdict(list)
        self.head = 1000
        self.fees = FeeQuote(max_fee_per_gas=2_000_000_000, max_priority_fee_per_gas=100_000_000)
        # token_out per token_in, applied to swaps
        self.swap_rate = Decimal("1")

    # Setup helpers

    def fund(self, address, native=0, **tokens):
        self.native[address.lower()] += native
        for token, amount in tokens.items():
            self.tokens[token.lower()][address.lower()] += amount

    def set_token(self, token, address, amount):
        self.tokens[token.lower()][address.lower()] = amount

    def balance_of(self, token, address):
        return self.tokens[token.lower()][address.lower()]

    # Reads

    async def native_balance(self, address):
        return self.native[address.lower()]

    async def token_balance(self, token, owner):
        return self.tokens[token.lower()][owner.lower()]

    async def allowance(self, token, owner, spender):
        return self.allowances[(token.lower(), owner.lower(), spender.lower())]

    async def get_pool(self, factory, token_a, token_b, fee):
        key = (frozenset((token_a.lower(), token_b.lower())), fee)
        return self.pools.get(key, ZERO_ADDRESS)

    async def pool_liquidity(self, pool):
        return self.liquidity[pool.lower()]

    async def pool_sqrt_price_x96(self, pool):
        return self.sqrt_price[pool.lower()]

    async def block_number(self):
        return self.head

    async def mint_logs(self, pool, from_block, to_block):
        return [b for b in self.mints[pool.lower()] if from_block <= b <= to_block]

    async def pending_nonce(self, address):
        return self.nonces[address.lower()]

    async def fee_quote(self):
        return self.fees

    # Writes

    def _record(self, kind, account, nonce, **details):
        sender = account.address.lower()
        if sender in self.fail_senders:
            raise TransactionError(f"Transaction reverted: {kind} from {account.address}")
        if nonce is None:
            nonce = self.nonces[sender]
        self.nonces[sender] = max(self.nonces[sender], nonce + 1)
        entry = {"kind": kind, "sender": sender, "nonce": nonce}
        entry.update(details)
        self.sent.append(entry)
        return TxResult(tx_hash="0x%064x" % len(self.sent), block_number=self.head)

    async def send_native(self, account, to, value, gas=21000, nonce=None, fees=None):
        result = self._record("native", account, nonce, to=to.lower(), value=value, gas=gas)
        self.native[account.address.lower()] -= value
        self.native[to.lower()] += value
        return result

    async def transfer_token(self, account, token, to, amount, gas=100000, nonce=None, fees=None):
        result = self._record("transfer", account, nonce, token=token.lower(), to=to.lower(),
                              amount=amount, gas=gas)
        self.tokens[token.lower()][account.address.lower()] -= amount
        self.tokens[token.lower()][to.lower()] += amount
        return result

    async def approve(self, account, token, spender, amount, gas=100000, nonce=None, fees=None):
        result = self._record("approve", account, nonce, token=token.lower(), spender=spender.lower(),
                              amount=amount, gas=gas)
        self.allowances[(token.lower(), account.address.lower(), spender.lower())] = amount
        return result

    async def swap_exact_input_single(self, account, router, token_in, token_out, fee, amount_in,
                                      amount_out_minimum=0, value=0, gas=300000, nonce=None, fees=None):
        result = self._record("swap", account, nonce, token_in=token_in.lower(), token_out=token_out.lower(),
                              fee=fee, amount_in=amount_in, amount_out_minimum=amount_out_minimum,
                              value=value, gas=gas, fees=fees)
        sender = account.address.lower()
        if value:
            self.native[sender] -= value
        else:
            self.tokens[token_in.lower()][sender] -= amount_in
        self.tokens[token_out.lower()][sender] += int(amount_in * self.swap_rate)
        return result

    def sent_of(self, kind):
        return [s for s in self.sent if s["kind"] == kind]


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def funder():
    return funding_account(FUNDER_SECRET)


@pytest.fixture
def accounts():
    return derive_accounts(FUNDER_SECRET, 4)
