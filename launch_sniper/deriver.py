"""
Deterministic Wallet Deriver
============================

Derives the fleet of child signing accounts from the funding key.

Key for index i:
    keccak256(encodePacked(string tag, bytes32 funderKey, uint256 i))

Nothing is stored: the same (key, tag, index) always yields the same
account, so every command (snipe, balances, sell, sweep, convert) addresses
the same wallets across runs. An empty tag gives the untagged
keccak256(funderKey || uint256 i) layout.
"""

from dataclasses import dataclass, field
from typing import List

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .utils import ConfigError, validate_private_key

DERIVATION_TAG = "launch-sniper/fleet/v1"


@dataclass(frozen=True)
class DerivedAccount:
    """A fleet account: index, address, and the signer that controls it."""
    index: int
    address: str
    account: LocalAccount = field(repr=False, compare=False)


def _key_bytes(funding_secret: str) -> bytes:
    if not validate_private_key(funding_secret):
        raise ConfigError("Funding secret must be 64 hex characters")
    key_hex = funding_secret[2:] if funding_secret.startswith("0x") else funding_secret
    return bytes.fromhex(key_hex)


def funding_account(funding_secret: str) -> LocalAccount:
    """The root identity that funds the fleet."""
    return Account.from_key(_key_bytes(funding_secret))


def derive_key(funding_secret: str, index: int, tag: str = DERIVATION_TAG) -> bytes:
    """One-way, domain-separated child key for ``index``."""
    if index < 0:
        raise ValueError(f"Index must be non-negative, got {index}")
    if tag:
        packed = encode_packed(["string", "bytes32", "uint256"], [tag, _key_bytes(funding_secret), index])
    else:
        packed = encode_packed(["bytes32", "uint256"], [_key_bytes(funding_secret), index])
    return bytes(Web3.keccak(packed))


def derive_account(funding_secret: str, index: int, tag: str = DERIVATION_TAG) -> DerivedAccount:
    account = Account.from_key(derive_key(funding_secret, index, tag))
    return DerivedAccount(index=index, address=account.address, account=account)


def derive_accounts(funding_secret: str, count: int, tag: str = DERIVATION_TAG) -> List[DerivedAccount]:
    """
    Derive ``count`` fleet accounts.

    Raises:
        ValueError: if count is not positive
        ConfigError: if the funding secret is malformed
    """
    if count <= 0:
        raise ValueError(f"Fleet size must be positive, got {count}")
    return [derive_account(funding_secret, i, tag) for i in range(count)]


def child_keys(accounts: List[DerivedAccount]) -> List[bytes]:
    """Raw keys of the fleet, for registering with the log redactor."""
    return [bytes(a.account.key) for a in accounts]
