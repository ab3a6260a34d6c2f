"""
Utility Module

Exceptions, secure logging, and formatting helpers shared by the sniper.

Logging:
- Rich console output for the operator
- Optional rotating JSON log file (see logging_utils)
- Registered secrets are redacted from every message
"""

import logging
import logging.handlers
import re
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

from .logging_utils import JSONFormatter

LOGGER_NAME = "launch_sniper"

console = Console()

HEX_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class ConfigError(Exception):
    """Raised when configuration is missing or invalid (checked before any I/O)."""
    pass


class PlanningError(ValueError):
    """Raised when an allocation plan cannot satisfy its constraints."""
    pass


class TransactionError(Exception):
    """A transaction reverted, timed out, or could not be sent."""
    pass


class InsufficientFundsError(Exception):
    """The funder or an account cannot cover a planned transfer or sell."""
    pass


class InsufficientCapitalError(InsufficientFundsError):
    """Funder does not hold enough of the capital token."""
    pass


class InsufficientGasError(InsufficientFundsError):
    """Funder does not hold enough native gas token."""
    pass


class PoolNotFoundError(Exception):
    """The factory returned the zero address for the requested pool."""
    pass


class WatchCancelled(Exception):
    """The readiness watch was aborted by the operator."""
    pass


class SecureLogger:
    """
    Logger that redacts sensitive data from log messages.

    Secrets registered through ``register_secret`` are replaced verbatim,
    with or without a 0x prefix and in any case. A small set of
    ``name=value`` patterns is redacted as well. Transaction hashes and
    addresses are left intact.
    """

    SENSITIVE_PATTERNS = [
        (re.compile(r'password["\']?\s*[:=]\s*\S+', re.IGNORECASE), "password=[REDACTED]"),
        (re.compile(r'private[_-]?key["\']?\s*[:=]\s*\S+', re.IGNORECASE), "private_key=[REDACTED]"),
        (re.compile(r'(?:api|rpc)[_-]?key["\']?\s*[:=]\s*\S+', re.IGNORECASE), "api_key=[REDACTED]"),
    ]

    def __init__(self, base: logging.Logger):
        self._logger = base
        self._secrets: List[str] = []

    @property
    def raw(self) -> logging.Logger:
        """The wrapped logger, for libraries that want a plain ``logging.Logger``."""
        return self._logger

    def register_secret(self, secret: Union[str, bytes]):
        """Redact this exact value from now on."""
        if isinstance(secret, bytes):
            secret = secret.hex()
        value = secret[2:] if secret.startswith("0x") else secret
        if value and value.lower() not in self._secrets:
            self._secrets.append(value.lower())

    def _sanitize(self, msg) -> str:
        text = str(msg)
        for secret in self._secrets:
            text = re.sub(r"(0x)?" + re.escape(secret), "[SECRET_REDACTED]", text, flags=re.IGNORECASE)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def log(self, level: int, msg, *args, **kwargs):
        self._logger.log(level, self._sanitize(msg), *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backups: int = 5,
) -> SecureLogger:
    """
    Attach console and (optionally) file handlers to the package logger.

    Safe to call more than once; existing handlers are replaced. The file
    handler always records DEBUG so poll errors from the watcher end up in
    the run log even when the console is at INFO.
    """
    level = getattr(logging, log_level.upper())
    base = logging.getLogger(LOGGER_NAME)
    base.setLevel(logging.DEBUG if log_file else level)
    base.handlers = []
    base.propagate = False

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    base.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        run_log = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backups
        )
        run_log.setLevel(logging.DEBUG)
        run_log.setFormatter(JSONFormatter())
        base.addHandler(run_log)

    return logger


# Package-wide secure logger; handlers are attached by setup_logging()
logger = SecureLogger(logging.getLogger(LOGGER_NAME))


def format_address(address: str, keep: int = 6) -> str:
    """0x833589...A02913"""
    if len(address) <= keep * 2 + 2:
        return address
    return f"{address[:keep + 2]}...{address[-keep:]}"


def format_tx_hash(tx_hash: str, keep: int = 10) -> str:
    if len(tx_hash) <= keep * 2:
        return tx_hash
    return f"{tx_hash[:keep]}...{tx_hash[-keep:]}"


def to_minor_units(amount: Union[int, float, str, Decimal], decimals: int) -> int:
    """Convert a human amount to integer minor units, flooring any excess precision."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def format_units(raw: int, decimals: int, places: int = 2) -> str:
    """Render integer minor units as a fixed-point string."""
    value = Decimal(raw) / (Decimal(10) ** decimals)
    return f"{value:,.{places}f}"


def validate_private_key(key: Optional[str]) -> bool:
    """True for 32 bytes of hex, with or without the 0x prefix."""
    return bool(key) and HEX_KEY_RE.match(key) is not None
