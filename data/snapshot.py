"""
Snapshot decoding boundary.

Turns already-decoded on-chain objects (dicts of u64 fields, as delivered
by the chain-data collaborator or dumped to JSON) into validated frozen
types. Every field has one scale and it is checked here:

- state.supply / borrow / supply_shares / borrow_shares: native units, u64
- interest_config.*: FLOAT_SCALING, optimal_utilization <= 1
- margin_pool_config.max_utilization_rate: FLOAT_SCALING, <= 1
- margin_pool_config.protocol_spread: FLOAT_SCALING, < 1
- risk_ratios.liquidation_risk_ratio: FLOAT_SCALING, > 0
- user/pool_liquidation_reward: FLOAT_SCALING, sum < 1

u64 values may arrive as ints or decimal strings (JSON-RPC encodes u64 as
strings). Nothing is rescaled or guessed: a field at the wrong scale fails
validation instead of being silently reinterpreted.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from config.params import FLOAT_SCALING
from models.fixed_point import check_u64
from models.results import CoreError, InvalidSnapshotError
from models.types import (
    AssetAmount,
    InterestConfig,
    MarginPool,
    MarginPosition,
    MarketSnapshot,
    PoolConfig,
    PoolState,
    Position,
    PriceQuote,
)

LOGGER = logging.getLogger(__name__)

MAX_DECIMALS = 38


def _field(raw: Mapping[str, Any], name: str, context: str):
    if not isinstance(raw, Mapping):
        raise InvalidSnapshotError(f"{context}: expected an object, got {type(raw).__name__}")
    if name not in raw:
        raise InvalidSnapshotError(f"{context}: missing field {name!r}")
    return raw[name]


def _u64(raw: Mapping[str, Any], name: str, context: str) -> int:
    value = _field(raw, name, context)
    if isinstance(value, str):
        try:
            value = int(value, 10)
        except ValueError as exc:
            raise InvalidSnapshotError(f"{context}.{name}: not an integer: {value!r}") from exc
    return check_u64(value, f"{context}.{name}")


def _fraction(raw: Mapping[str, Any], name: str, context: str,
              inclusive: bool = True) -> int:
    value = _u64(raw, name, context)
    if value > FLOAT_SCALING or (not inclusive and value == FLOAT_SCALING):
        bound = "<=" if inclusive else "<"
        raise InvalidSnapshotError(
            f"{context}.{name}={value} must be {bound} {FLOAT_SCALING} (9-decimal fraction)"
        )
    return value


def _decimals(raw: Mapping[str, Any], name: str, context: str) -> int:
    value = _u64(raw, name, context)
    if value > MAX_DECIMALS:
        raise InvalidSnapshotError(f"{context}.{name}={value} is not a plausible decimals value")
    return value


def _str(raw: Mapping[str, Any], name: str, context: str) -> str:
    value = _field(raw, name, context)
    if not isinstance(value, str) or not value:
        raise InvalidSnapshotError(f"{context}.{name} must be a non-empty string")
    return value


def parse_pool_state(raw: Mapping[str, Any], context: str = "state") -> PoolState:
    state = PoolState(
        supply=_u64(raw, "supply", context),
        borrow=_u64(raw, "borrow", context),
        supply_shares=_u64(raw, "supply_shares", context),
        borrow_shares=_u64(raw, "borrow_shares", context),
        last_update_timestamp=_u64(raw, "last_update_timestamp", context)
        if "last_update_timestamp" in raw else 0,
    )
    if state.borrow > state.supply:
        raise InvalidSnapshotError(
            f"{context}: borrow {state.borrow} exceeds supply {state.supply}"
        )
    return state


def parse_interest_config(raw: Mapping[str, Any],
                          context: str = "interest_config") -> InterestConfig:
    return InterestConfig(
        base_rate=_u64(raw, "base_rate", context),
        base_slope=_u64(raw, "base_slope", context),
        optimal_utilization=_fraction(raw, "optimal_utilization", context),
        excess_slope=_u64(raw, "excess_slope", context),
    )


def parse_pool_config(raw: Mapping[str, Any],
                      context: str = "margin_pool_config") -> PoolConfig:
    """
    Only protocol_spread is read as the spread. referral_spread is a
    different quantity and is never substituted for it.
    """
    return PoolConfig(
        supply_cap=_u64(raw, "supply_cap", context),
        max_utilization_rate=_fraction(raw, "max_utilization_rate", context),
        protocol_spread=_fraction(raw, "protocol_spread", context, inclusive=False),
        min_borrow=_u64(raw, "min_borrow", context),
    )


def parse_margin_pool(raw: Mapping[str, Any]) -> MarginPool:
    """
    Expected shape:
        {"pool_id", "asset_id", "decimals", "state": {...},
         "config": {"margin_pool_config": {...}, "interest_config": {...}}}
    """
    pool_id = _str(raw, "pool_id", "pool")
    context = f"pool {pool_id}"
    config = _field(raw, "config", context)
    return MarginPool(
        pool_id=pool_id,
        asset_id=_str(raw, "asset_id", context),
        decimals=_decimals(raw, "decimals", context),
        state=parse_pool_state(_field(raw, "state", context), f"{context}.state"),
        config=parse_pool_config(_field(config, "margin_pool_config", context),
                                 f"{context}.margin_pool_config"),
        interest_config=parse_interest_config(_field(config, "interest_config", context),
                                              f"{context}.interest_config"),
    )


def parse_price(raw: Mapping[str, Any]) -> PriceQuote:
    asset_id = _str(raw, "asset_id", "price")
    context = f"price {asset_id}"
    return PriceQuote(
        asset_id=asset_id,
        usd_price=_u64(raw, "usd_price", context),
        price_decimals=_decimals(raw, "price_decimals", context),
        as_of_timestamp=_u64(raw, "as_of_timestamp", context),
    )


def parse_supply_position(raw: Mapping[str, Any]) -> Position:
    context = "supply position"
    cost_basis = raw.get("cost_basis") if isinstance(raw, Mapping) else None
    return Position(
        shares=_u64(raw, "shares", context),
        referral=raw.get("referral") or None,
        owner=str(raw.get("owner", "")),
        pool_id=str(raw.get("pool_id", "")),
        cost_basis=None if cost_basis is None else _u64(raw, "cost_basis", context),
    )


def _holding(raw: Mapping[str, Any], amount_field: str, asset_field: str,
             decimals_field: str, context: str) -> AssetAmount:
    return AssetAmount(
        asset_id=_str(raw, asset_field, context),
        amount=_u64(raw, amount_field, context),
        decimals=_decimals(raw, decimals_field, context),
    )


def parse_margin_position(raw: Mapping[str, Any],
                          pool_config: Mapping[str, Any]) -> MarginPosition:
    """
    One margin manager plus the deepbook pool config it trades under.

    raw: {"manager_id", "base_asset_id", "quote_asset_id", "base_decimals",
          "quote_decimals", "base_asset", "quote_asset", "base_debt",
          "quote_debt"}
    pool_config: {"base_margin_pool_id", "quote_margin_pool_id",
                  "risk_ratios": {"liquidation_risk_ratio"},
                  "user_liquidation_reward", "pool_liquidation_reward"}
    """
    manager_id = _str(raw, "manager_id", "margin manager")
    context = f"manager {manager_id}"
    collateral = (
        _holding(raw, "base_asset", "base_asset_id", "base_decimals", context),
        _holding(raw, "quote_asset", "quote_asset_id", "quote_decimals", context),
    )
    debt = (
        _holding(raw, "base_debt", "base_asset_id", "base_decimals", context),
        _holding(raw, "quote_debt", "quote_asset_id", "quote_decimals", context),
    )

    cfg_context = f"{context}.pool_config"
    risk_ratios = _field(pool_config, "risk_ratios", cfg_context)
    threshold = _u64(risk_ratios, "liquidation_risk_ratio", f"{cfg_context}.risk_ratios")
    if threshold == 0:
        raise InvalidSnapshotError(f"{cfg_context}: liquidation_risk_ratio is zero")
    user_reward = _fraction(pool_config, "user_liquidation_reward", cfg_context)
    pool_reward = _fraction(pool_config, "pool_liquidation_reward", cfg_context)
    if user_reward + pool_reward >= FLOAT_SCALING:
        raise InvalidSnapshotError(f"{cfg_context}: liquidation rewards sum to 100% or more")

    return MarginPosition(
        manager_id=manager_id,
        base_asset_id=collateral[0].asset_id,
        quote_asset_id=collateral[1].asset_id,
        collateral=collateral,
        debt=debt,
        liquidation_threshold=threshold,
        user_liquidation_reward=user_reward,
        pool_liquidation_reward=pool_reward,
        base_margin_pool_id=str(pool_config.get("base_margin_pool_id", "")),
        quote_margin_pool_id=str(pool_config.get("quote_margin_pool_id", "")),
    )


def _parse_all(items: Iterable[Any], parse, what: str, strict: bool) -> tuple:
    parsed = []
    for i, item in enumerate(items):
        try:
            parsed.append(parse(item))
        except CoreError as exc:
            if strict:
                raise
            LOGGER.warning("Skipping invalid %s #%d: %s", what, i, exc)
    return tuple(parsed)


def load_snapshot(raw: Mapping[str, Any], strict: bool = True) -> MarketSnapshot:
    """
    Build a MarketSnapshot from one poll's decoded objects.

    raw: {"as_of_timestamp", "pools": [...], "prices": [...],
          "supplies": [...], "pool_configs": {deepbook_pool_id: {...}},
          "margin_managers": [{..., "deepbook_pool_id"}]}

    With strict=False, invalid entries are logged and dropped; the rest of
    the snapshot still comes from the same poll.
    """
    as_of = _u64(raw, "as_of_timestamp", "snapshot")
    pool_configs = raw.get("pool_configs", {}) or {}

    def _position(item):
        key = _str(item, "deepbook_pool_id", "margin manager")
        if key not in pool_configs:
            raise InvalidSnapshotError(f"no pool config for deepbook pool {key}")
        return parse_margin_position(item, pool_configs[key])

    return MarketSnapshot(
        as_of_timestamp=as_of,
        pools=_parse_all(raw.get("pools", ()), parse_margin_pool, "pool", strict),
        positions=_parse_all(raw.get("margin_managers", ()), _position,
                             "margin manager", strict),
        supplies=_parse_all(raw.get("supplies", ()), parse_supply_position,
                            "supply position", strict),
        prices=_parse_all(raw.get("prices", ()), parse_price, "price", strict),
    )


def load_snapshot_json(path: str | Path, strict: bool = True) -> MarketSnapshot:
    """Read a JSON dump of one poll (see load_snapshot for the shape)."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return load_snapshot(raw, strict=strict)
