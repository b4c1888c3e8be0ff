"""EIP-1559 base fee forecasting.

The next block's base fee moves by at most one eighth of the current base fee,
in proportion to how far the block's gas usage sat from the gas target (half
the gas limit). See https://www.blocknative.com/blog/eip-1559-fees.

All quantities are unsigned 256-bit integers on chain. Python integers do not
wrap, so every input, intermediate product, and result is checked against the
256-bit range and an overflow raises instead of silently producing a value the
chain could never report.

Examples
--------
>>> next_block_base_fee_structural(20_000_000, 30_000_000, 100_000_000_000)
104166666666

"""

from __future__ import annotations

import random
import typing as typ

U256_MAX = 2**256 - 1

# EIP-1559 BASE_FEE_MAX_CHANGE_DENOMINATOR
BASE_FEE_CHANGE_DENOMINATOR = 8
ELASTICITY_MULTIPLIER = 2

# Upper bound (exclusive) of the jitter added to every forecast.
PERTURBATION_BOUND = 9


class _RandomSource(typ.Protocol):
    def randrange(self, stop: int, /) -> int: ...


class BaseFeeOverflowError(OverflowError):
    """Raised when a fee computation leaves the unsigned 256-bit range."""

    @classmethod
    def for_input(cls, name: str, value: int) -> BaseFeeOverflowError:
        """Return an error for an input above ``U256_MAX``."""
        return cls(f"{name}={value} exceeds the uint256 range")

    @classmethod
    def for_result(cls, stage: str) -> BaseFeeOverflowError:
        """Return an error for an intermediate or final value overflow."""
        return cls(f"base fee computation overflowed uint256 at {stage}")


def _check_u256(name: str, value: int) -> int:
    if value < 0:
        msg = f"{name} must be non-negative, got {value}"
        raise ValueError(msg)
    if value > U256_MAX:
        raise BaseFeeOverflowError.for_input(name, value)
    return value


def _checked(stage: str, value: int) -> int:
    if value > U256_MAX:
        raise BaseFeeOverflowError.for_result(stage)
    return value


def next_block_base_fee_structural(
    gas_used: int,
    gas_limit: int,
    base_fee_per_gas: int,
) -> int:
    """Return the EIP-1559 base fee for the following block, without jitter.

    Parameters
    ----------
    gas_used
        Gas consumed by the current block. Not validated against
        ``gas_limit``.
    gas_limit
        Gas limit of the current block. A limit below two yields a target of
        one so the division is always defined.
    base_fee_per_gas
        Base fee of the current block.

    Returns
    -------
    int
        The forecast base fee.

    Raises
    ------
    ValueError
        If any input is negative.
    BaseFeeOverflowError
        If any input or intermediate value exceeds ``U256_MAX``.

    """
    _check_u256("gas_used", gas_used)
    _check_u256("gas_limit", gas_limit)
    _check_u256("base_fee_per_gas", base_fee_per_gas)

    target = gas_limit // ELASTICITY_MULTIPLIER or 1

    if gas_used > target:
        product = _checked("delta product", base_fee_per_gas * (gas_used - target))
        delta = (product // target) // BASE_FEE_CHANGE_DENOMINATOR
        return _checked("base fee increase", base_fee_per_gas + delta)

    # delta <= base_fee_per_gas / 8 here, so the subtraction cannot underflow
    product = _checked("delta product", base_fee_per_gas * (target - gas_used))
    delta = (product // target) // BASE_FEE_CHANGE_DENOMINATOR
    return base_fee_per_gas - delta


def calculate_next_block_base_fee(
    gas_used: int,
    gas_limit: int,
    base_fee_per_gas: int,
    *,
    rng: _RandomSource | None = None,
) -> int:
    """Forecast the next block's base fee, including a 0-8 wei jitter.

    The jitter is uniform over ``[0, PERTURBATION_BOUND)`` and carries no
    economic meaning. Pass ``rng`` (for example ``random.Random(seed)``) to
    make it reproducible.
    """
    structural = next_block_base_fee_structural(gas_used, gas_limit, base_fee_per_gas)
    source = rng if rng is not None else random
    jitter = source.randrange(PERTURBATION_BOUND)  # noqa: S311 - not cryptographic
    return _checked("perturbation", structural + jitter)


__all__ = [
    "BASE_FEE_CHANGE_DENOMINATOR",
    "PERTURBATION_BOUND",
    "U256_MAX",
    "BaseFeeOverflowError",
    "calculate_next_block_base_fee",
    "next_block_base_fee_structural",
]
