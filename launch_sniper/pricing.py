"""
Spot price helpers for Uniswap V3 pools.

The pool stores sqrt(token1/token0) as a Q64.96 fixed point number, where
token0 is the token with the lower address.
"""

from decimal import Decimal, localcontext
from typing import Optional, Union

Q96 = 2**96

# sqrtPriceX96 squared needs more than the default 28 digits
PRICE_PRECISION = 78


def is_token0(token: str, other: str) -> bool:
    """True if ``token`` sorts before ``other`` (and so is the pool's token0)."""
    return int(token, 16) < int(other, 16)


def sqrt_price_x96_to_price(sqrt_price_x96: int, token0_decimals: int, token1_decimals: int) -> Decimal:
    """
    Convert sqrtPriceX96 to a human-readable price.

    Price = (sqrtPriceX96 / Q96)^2 * 10^(token0_decimals - token1_decimals)

    Returns:
        Price as Decimal (token1 per token0)
    """
    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        sqrt_price = Decimal(sqrt_price_x96) / Decimal(Q96)
        return sqrt_price ** 2 * (Decimal(10) ** (token0_decimals - token1_decimals))


def spot_price(
    sqrt_price_x96: int,
    base_token: str,
    quote_token: str,
    base_decimals: int,
    quote_decimals: int,
) -> Decimal:
    """
    Price of one ``base_token`` in ``quote_token`` units.

    Raises:
        ValueError: if the pool has no price yet
    """
    if sqrt_price_x96 <= 0:
        raise ValueError("Pool price is not initialized")

    if is_token0(base_token, quote_token):
        return sqrt_price_x96_to_price(sqrt_price_x96, base_decimals, quote_decimals)
    inverse = sqrt_price_x96_to_price(sqrt_price_x96, quote_decimals, base_decimals)
    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        return 1 / inverse


def min_amount_out(expected_amount: int, slippage_percent: Optional[Union[float, Decimal]]) -> int:
    """Minimum output with slippage protection; no floor when slippage is unset."""
    if slippage_percent is None:
        return 0
    slippage_factor = 1 - (Decimal(str(slippage_percent)) / 100)
    return int(Decimal(expected_amount) * slippage_factor)
