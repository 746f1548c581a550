"""
Share ledger: converts pool shares to underlying amounts and back.

Supply side (margin_state::supply_shares_to_amount):
    ratio   = FLOAT_SCALING                              if total_shares == 0
            = total_supply * FLOAT_SCALING // total_shares otherwise
    balance = shares * ratio // FLOAT_SCALING

Every division floors, so repeated conversions can only lose dust to the
pool, never credit it to the user.
"""

from __future__ import annotations

from config.params import FLOAT_SCALING
from models.fixed_point import check_u64, mul_div
from models.types import PoolState, Position


def share_ratio(total_amount: int, total_shares: int, scale: int = FLOAT_SCALING) -> int:
    """Amount per share at `scale`; 1:1 for a pool with no shares."""
    total_amount = check_u64(total_amount, "total_amount")
    total_shares = check_u64(total_shares, "total_shares")
    if total_shares == 0:
        return scale
    return mul_div(total_amount, scale, total_shares)


def shares_to_balance(shares: int, total_supply: int, total_shares: int,
                      scale: int = FLOAT_SCALING) -> int:
    """Underlying amount owed for `shares`, floored."""
    shares = check_u64(shares, "shares")
    ratio = share_ratio(total_supply, total_shares, scale)
    return mul_div(shares, ratio, scale)


def balance_to_shares(balance: int, total_supply: int, total_shares: int,
                      scale: int = FLOAT_SCALING) -> int:
    """Shares minted for depositing `balance`, floored."""
    balance = check_u64(balance, "balance")
    ratio = share_ratio(total_supply, total_shares, scale)
    if ratio == 0:
        # Pool with shares but no supply; a deposit cannot be priced.
        return 0
    return mul_div(balance, scale, ratio)


def supply_shares_to_amount(shares: int, state: PoolState) -> int:
    return shares_to_balance(shares, state.supply, state.supply_shares)


def borrow_shares_to_amount(shares: int, state: PoolState) -> int:
    """Debt owed for borrow shares; same floor policy as the supply side."""
    return shares_to_balance(shares, state.borrow, state.borrow_shares)


def position_balance(position: Position, state: PoolState) -> int:
    return supply_shares_to_amount(position.shares, state)


def interest_earned(position: Position, state: PoolState) -> int | None:
    """
    Current value minus the supplied cost basis, native units.

    Returns None while the cost basis is unknown. The result can be
    negative by a few units of dust because both sides are floored.
    """
    if position.cost_basis is None:
        return None
    cost_basis = check_u64(position.cost_basis, "cost_basis")
    return position_balance(position, state) - cost_basis
