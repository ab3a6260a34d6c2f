"""
Configuration Management Module

Loads sniper settings from an optional YAML file and the environment.
The funding secret is read from the environment (or the YAML file) and is
never written back out; ``to_dict`` omits it.
"""

import logging
import os
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from web3 import Web3

from .utils import ConfigError, validate_private_key

logger = logging.getLogger(__name__)

# Environment variable -> config field
ENV_OVERRIDES = {
    "SNIPER_PRIVATE_KEY": "funder_private_key",
    "SNIPE_AMOUNT_USDC": "total_capital",
    "SNIPE_WALLETS": "num_wallets",
    "BASE_RPC_URL": "rpc_url",
    "SNIPE_TOKEN": "trade_token",
}

DECIMAL_FIELDS = (
    "total_capital",
    "gas_reserve_eth",
    "funder_gas_buffer_eth",
    "min_out_per_input",
)

SECRET_FIELDS = ("funder_private_key",)


@dataclass
class SniperConfig:
    """Sniper configuration settings."""

    # Network
    rpc_url: str = "https://mainnet.base.org"
    chain_id: int = 8453

    # Funding identity (only persisted secret; supplied externally)
    funder_private_key: Optional[str] = None

    # Fleet
    num_wallets: int = 20
    total_capital: Decimal = Decimal("100")
    allocation_seed: int = 42
    derivation_tag: str = "launch-sniper/fleet/v1"

    # Token addresses (Base network)
    capital_token: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"  # USDC
    capital_decimals: int = 6
    trade_token: Optional[str] = None
    trade_decimals: int = 18
    weth_address: str = "0x4200000000000000000000000000000000000006"

    # Uniswap V3 contracts on Base
    factory_address: str = "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
    router_address: str = "0x2626664c2603336E57B271c5C0b26F421741e481"
    pool_fee: int = 10000       # 1% tier for the launch pool
    weth_pool_fee: int = 500    # WETH/USDC, used by convert

    # Gas settings
    gas_reserve_eth: Decimal = Decimal("0.0005")        # per derived account
    funder_gas_buffer_eth: Decimal = Decimal("0.001")   # funder's own gas
    priority_fee_multiplier: int = 3
    max_fee_multiplier: int = 2
    native_transfer_gas: int = 21000
    token_transfer_gas: int = 100000
    approve_gas: int = 100000
    swap_gas: int = 300000
    convert_gas: int = 200000
    confirmation_timeout: int = 120

    # Watcher
    poll_interval_seconds: float = 0.5
    mint_lookback_blocks: int = 50

    # Output floors (0 / None means no floor)
    min_out_per_input: Decimal = Decimal("0")
    slippage_percent: Optional[float] = None

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def gas_reserve_wei(self) -> int:
        return int(Web3.to_wei(self.gas_reserve_eth, "ether"))

    @property
    def funder_gas_buffer_wei(self) -> int:
        return int(Web3.to_wei(self.funder_gas_buffer_eth, "ether"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding sensitive data)."""
        data = asdict(self)
        for name in SECRET_FIELDS:
            data.pop(name, None)
        for name in DECIMAL_FIELDS:
            data[name] = str(data[name])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SniperConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for name in DECIMAL_FIELDS:
            if name in valid_fields and valid_fields[name] is not None:
                try:
                    valid_fields[name] = Decimal(str(valid_fields[name]))
                except InvalidOperation:
                    raise ConfigError(f"{name} must be a number, got {valid_fields[name]!r}")
        return cls(**valid_fields)

    def validate(self, require_trade_token: bool = True):
        """
        Validate settings before any network I/O.

        Raises:
            ConfigError: on the first invalid setting
        """
        if not self.funder_private_key:
            raise ConfigError("SNIPER_PRIVATE_KEY not set")
        if not validate_private_key(self.funder_private_key):
            raise ConfigError("Funder private key must be 64 hex characters")
        if not self.rpc_url:
            raise ConfigError("RPC URL not set")
        if self.num_wallets <= 0:
            raise ConfigError(f"num_wallets must be positive, got {self.num_wallets}")
        if self.total_capital <= 0:
            raise ConfigError(f"total_capital must be positive, got {self.total_capital}")
        if self.poll_interval_seconds < 0:
            raise ConfigError("poll_interval_seconds cannot be negative")
        if self.priority_fee_multiplier < 1 or self.max_fee_multiplier < 1:
            raise ConfigError("fee multipliers must be at least 1")
        if self.min_out_per_input < 0:
            raise ConfigError("min_out_per_input cannot be negative")
        if self.slippage_percent is not None and not 0 <= self.slippage_percent < 100:
            raise ConfigError(f"slippage_percent must be in [0, 100), got {self.slippage_percent}")

        addresses = {
            "capital_token": self.capital_token,
            "weth_address": self.weth_address,
            "factory_address": self.factory_address,
            "router_address": self.router_address,
        }
        if require_trade_token:
            if not self.trade_token:
                raise ConfigError("trade_token not set (SNIPE_TOKEN)")
        if self.trade_token:
            addresses["trade_token"] = self.trade_token
        for name, address in addresses.items():
            if not Web3.is_address(address):
                raise ConfigError(f"{name} is not a valid address: {address}")


def load_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    load_env_file: bool = True,
) -> SniperConfig:
    """
    Build a SniperConfig from YAML (if present) and environment overrides.

    Environment wins over the file. Nothing is validated here; call
    ``validate()`` before touching the network.
    """
    data: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "r") as f:
                data.update(yaml.safe_load(f) or {})
            logger.info(f"Configuration loaded from {path}")
        else:
            logger.info(f"No config file at {path}, using defaults")

    if env is None:
        if load_env_file:
            load_dotenv()
        env = os.environ

    for var, name in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data[name] = value

    if "num_wallets" in data:
        try:
            data["num_wallets"] = int(data["num_wallets"])
        except (TypeError, ValueError):
            raise ConfigError(f"num_wallets must be an integer, got {data['num_wallets']!r}")

    config = SniperConfig.from_dict(data)
    return config


# Default configuration template
DEFAULT_CONFIG = """
# Launch sniper configuration
# The funder key is read from SNIPER_PRIVATE_KEY; do not store it here.

rpc_url: https://mainnet.base.org
chain_id: 8453

# Fleet
num_wallets: 20
total_capital: "100"
allocation_seed: 42

# Tokens
capital_token: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
capital_decimals: 6
trade_token: null
trade_decimals: 18

# Uniswap V3
factory_address: "0x33128a8fC17869897dcE68Ed026d694621f6FDfD"
router_address: "0x2626664c2603336E57B271c5C0b26F421741e481"
pool_fee: 10000
weth_pool_fee: 500

# Gas
gas_reserve_eth: "0.0005"
funder_gas_buffer_eth: "0.001"
priority_fee_multiplier: 3
max_fee_multiplier: 2

# Watcher
poll_interval_seconds: 0.5
mint_lookback_blocks: 50

# Output floors
min_out_per_input: "0"
slippage_percent: null

# Operation
dry_run: false
log_level: INFO
log_file: null
""".strip()
