"""Command table for the vault engine.

Usage:
  poetry run arca to-raw 1.5 --decimals 18
  poetry run arca parse-amount 50% --decimals 6 --available 5000000
  poetry run arca range 8388608 --width 51
  poetry run arca --config config.json snapshot ws-usdc --price wS=0.42 --price USDC=1
  poetry run arca --config config.json queue-status ws-usdc --user 0x...
"""

from __future__ import annotations

import asyncio
import functools
import json
import sys
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal, InvalidOperation
from typing import Any

import click
from loguru import logger

from arca_vault.adapters.vault_reader_adapter.adapter import VaultReaderAdapter
from arca_vault.core.config import (
    CONFIG,
    get_engine_settings,
    get_vault_config,
    load_config,
)
from arca_vault.core.constants import (
    DEFAULT_BIN_SLIPPAGE,
    DEFAULT_TICK_SLIPPAGE,
    ZERO_ADDRESS,
)
from arca_vault.core.errors import VaultEngineError
from arca_vault.core.utils.units import format_units, format_units_fixed, to_raw
from arca_vault.engine.amounts import amount_suggestions, is_stablecoin, parse_amount
from arca_vault.engine.pipeline import run_pipeline
from arca_vault.engine.prices import (
    check_price_bounds,
    cross_price,
    format_deviation_threshold,
    format_oracle_price,
    invert_price,
    is_within_deviation,
    oracle_amount_y_for_one_x,
    price_deviation,
    price_to_tick,
    sqrt_price_x96_to_amount_y,
    sqrt_price_x96_to_price,
    tick_to_price,
)
from arca_vault.engine.queue import available_shares, queue_status
from arca_vault.engine.rebalance import (
    PriceContext,
    build_range_proposal,
    default_range,
    deposit_plan,
    encode_distribution,
    optimal_ratio,
    render_range,
    snap_range,
)
from arca_vault.engine.types import PriceQuote, TokenAmount, WithdrawalRound


class DecimalParamType(click.ParamType):
    name = "decimal"

    def convert(self, value: Any, param: Any, ctx: Any) -> Decimal:
        if isinstance(value, Decimal):
            return value
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            self.fail(f"{value!r} is not a decimal number", param, ctx)
        if not parsed.is_finite():
            self.fail(f"{value!r} is not a finite number", param, ctx)
        return parsed


DECIMAL = DecimalParamType()


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _ok(result: Any) -> None:
    _echo_json({"ok": True, "result": result})


def _fail(error: str, details: Any) -> None:
    _echo_json({"ok": False, "error": error, "details": details})
    sys.exit(1)


def _engine_command(fn: Callable) -> Callable:
    """Report typed engine failures as JSON instead of a traceback."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except VaultEngineError as exc:
            failure = exc.to_dict()
            _fail(failure["error"], {"message": failure["message"], **failure["details"]})

    return wrapper


def _amount_json(amount: TokenAmount) -> dict[str, Any]:
    return {"raw": amount.raw, "formatted": str(amount)}


def _parse_prices(price_args: tuple[str, ...], now_ms: int) -> dict[str, PriceQuote]:
    quotes: dict[str, PriceQuote] = {}
    for item in price_args:
        symbol, sep, value = item.partition("=")
        if not sep or not symbol.strip():
            raise click.BadParameter(
                f"expected SYMBOL=USD, got {item!r}", param_hint="--price"
            )
        usd = DECIMAL.convert(value, None, None)
        quotes[symbol.strip()] = PriceQuote(
            symbol=symbol.strip(), usd=usd, last_updated_ms=now_ms, source="cli"
        )
    return quotes


def _vault_or_usage_error(name: str):
    try:
        return get_vault_config(name)
    except KeyError as exc:
        raise click.UsageError(str(exc.args[0])) from exc


@click.group(name="arca", help="Dual-token vault accounting and queue tools.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Config JSON (defaults to $ARCA_CONFIG_PATH or ./config.json).",
)
def arca(log_level: str, config_path: str | None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    if config_path is not None:
        load_config(config_path, require_exists=True)


# ── units & amounts ──


@arca.command(name="to-raw", help="Convert a human amount to its raw integer.")
@click.argument("amount")
@click.option("--decimals", type=int, required=True)
@_engine_command
def to_raw_cmd(amount: str, decimals: int) -> None:
    _ok({"raw": to_raw(amount, decimals)})


@arca.command(name="format", help="Format a raw integer amount for display.")
@click.argument("raw", type=int)
@click.option("--decimals", type=int, required=True)
@click.option("--places", type=int, default=None, help="Fixed fractional digits.")
@_engine_command
def format_cmd(raw: int, decimals: int, places: int | None) -> None:
    if places is None:
        _ok({"formatted": format_units(raw, decimals)})
    else:
        _ok({"formatted": format_units_fixed(raw, decimals, places)})


@arca.command(
    name="parse-amount",
    help="Parse '1.5', 'max', '50%' or '123 wei' against an available balance.",
)
@click.argument("text")
@click.option("--decimals", type=int, required=True)
@click.option("--available", type=int, required=True, help="Raw available balance.")
@click.option("--allow-zero/--no-allow-zero", default=False, show_default=True)
@click.option("--symbol", default="", help="Token symbol for suggestions.")
@click.option("--first-deposit/--no-first-deposit", default=False, show_default=True)
@_engine_command
def parse_amount_cmd(
    text: str,
    decimals: int,
    available: int,
    allow_zero: bool,
    symbol: str,
    first_deposit: bool,
) -> None:
    raw = parse_amount(text, decimals, available, allow_zero=allow_zero)
    suggestions = amount_suggestions(
        symbol,
        decimals,
        is_stablecoin=is_stablecoin(symbol),
        is_first_deposit=first_deposit,
    )
    _ok(
        {
            "raw": raw,
            "formatted": format_units(raw, decimals),
            "suggestions": [{"label": s.label, "raw": s.raw} for s in suggestions],
        }
    )


# ── prices ──


@arca.command(name="oracle-price", help="Decode a 128.128 oracle price.")
@click.argument("price_x128", type=int)
@click.option("--decimals-x", type=int, required=True)
@click.option("--decimals-y", type=int, required=True)
@_engine_command
def oracle_price_cmd(price_x128: int, decimals_x: int, decimals_y: int) -> None:
    amount_y = oracle_amount_y_for_one_x(price_x128, decimals_x)
    result: dict[str, Any] = {
        "price": format_oracle_price(price_x128, decimals_x, decimals_y),
        "amount_y_for_one_x": amount_y,
        "inverse": None,
    }
    if amount_y > 0:
        result["inverse"] = format_units_fixed(
            invert_price(amount_y, decimals_x, decimals_y), decimals_x
        )
    _ok(result)


@arca.command(name="sqrt-price", help="Decode a pool sqrtPriceX96.")
@click.argument("sqrt_price_x96", type=int)
@click.option("--decimals-x", type=int, required=True)
@click.option("--decimals-y", type=int, required=True)
@_engine_command
def sqrt_price_cmd(sqrt_price_x96: int, decimals_x: int, decimals_y: int) -> None:
    price = sqrt_price_x96_to_price(sqrt_price_x96, decimals_x, decimals_y)
    _ok(
        {
            "price": str(price.normalize()),
            "tick": price_to_tick(price, decimals_x, decimals_y),
        }
    )


@arca.command(name="tick-price", help="Human price at a tick.")
@click.argument("tick", type=int)
@click.option("--decimals-x", type=int, required=True)
@click.option("--decimals-y", type=int, required=True)
@_engine_command
def tick_price_cmd(tick: int, decimals_x: int, decimals_y: int) -> None:
    _ok({"price": str(tick_to_price(tick, decimals_x, decimals_y).normalize())})


@arca.command(
    name="cross-price", help="Raw Y per whole X from two native-token prices."
)
@click.argument("price_x_native", type=int)
@click.argument("price_y_native", type=int)
@click.option("--decimals-y", type=int, required=True)
@_engine_command
def cross_price_cmd(price_x_native: int, price_y_native: int, decimals_y: int) -> None:
    raw = cross_price(price_x_native, price_y_native, decimals_y)
    _ok({"raw": raw, "formatted": format_units(raw, decimals_y)})


# ── rebalance ──


@arca.command(name="range", help="Default (or snapped) range around the active point.")
@click.argument("active", type=int)
@click.option(
    "--tick-spacing",
    type=int,
    default=None,
    help="Tick spacing (concentrated liquidity); omit for bin pools.",
)
@click.option("--width", type=float, default=None, help="Percent (ticks) or bin count.")
@click.option("--lower", type=int, default=None, help="Explicit lower bound to check.")
@click.option("--upper", type=int, default=None, help="Explicit upper bound to check.")
@_engine_command
def range_cmd(
    active: int,
    tick_spacing: int | None,
    width: float | None,
    lower: int | None,
    upper: int | None,
) -> None:
    kind = "bin" if tick_spacing is None else "tick"
    if (lower is None) != (upper is None):
        raise click.UsageError("--lower and --upper must be given together")
    if lower is not None and upper is not None:
        if tick_spacing is not None:
            lower, upper = snap_range(lower, upper, tick_spacing)
    else:
        lower, upper = default_range(active, tick_spacing, width)
    _ok(
        {
            "kind": kind,
            "lower": lower,
            "upper": upper,
            "render": render_range(lower, upper, active, kind),
        }
    )


@arca.command(name="distribution", help="Uniform rebalance weights for a range.")
@click.argument("lower", type=int)
@click.argument("upper", type=int)
@click.option("--active", type=int, default=None, help="Desired active point.")
@click.option("--slippage", type=int, default=0, show_default=True)
@click.option("--total", type=int, default=None, help="Per-side weight total.")
@click.option("--encode/--no-encode", default=False, show_default=True)
@_engine_command
def distribution_cmd(
    lower: int,
    upper: int,
    active: int | None,
    slippage: int,
    total: int | None,
    encode: bool,
) -> None:
    settings = get_engine_settings()
    proposal = build_range_proposal(
        lower,
        upper,
        (lower + upper) // 2 if active is None else active,
        slippage,
        total=settings.distribution_total if total is None else total,
    )
    result: dict[str, Any] = {
        "lower": proposal.lower,
        "upper": proposal.upper,
        "desired_active_point": proposal.desired_active_point,
        "slippage": proposal.slippage,
        "distribution_x": proposal.distribution_x,
        "distribution_y": proposal.distribution_y,
    }
    if encode:
        result["encoded"] = "0x" + encode_distribution(proposal).hex()
    _ok(result)


@arca.command(name="ratio", help="Deposit ratio matching the vault's balances by value.")
@click.argument("balance_x")
@click.argument("balance_y")
@click.option("--decimals-x", type=int, required=True)
@click.option("--decimals-y", type=int, required=True)
@click.option("--price-x", type=DECIMAL, default=None, help="USD price of X.")
@click.option("--price-y", type=DECIMAL, default=None, help="USD price of Y.")
@click.option("--symbol-x", default="X", show_default=True)
@click.option("--symbol-y", default="Y", show_default=True)
@_engine_command
def ratio_cmd(
    balance_x: str,
    balance_y: str,
    decimals_x: int,
    decimals_y: int,
    price_x: Decimal | None,
    price_y: Decimal | None,
    symbol_x: str,
    symbol_y: str,
) -> None:
    suggestion = optimal_ratio(
        TokenAmount.parse(balance_x, decimals_x, symbol_x),
        TokenAmount.parse(balance_y, decimals_y, symbol_y),
        price_x,
        price_y,
    )
    _ok(
        {
            "ratio_x": suggestion.ratio_x,
            "ratio_y": suggestion.ratio_y,
            "message": suggestion.message,
        }
    )


@arca.command(name="deposit-plan", help="Amounts to deploy from idle balances.")
@click.argument("idle_x")
@click.argument("idle_y")
@click.option("--decimals-x", type=int, required=True)
@click.option("--decimals-y", type=int, required=True)
@click.option("--reserve", type=int, default=None, help="Percent held back per side.")
@click.option("--current-tick", type=int, default=None)
@click.option("--tick-lower", type=int, default=None)
@click.option("--tick-upper", type=int, default=None)
@click.option("--expected-shares", type=int, default=None)
@click.option("--slippage-bps", type=int, default=None)
@_engine_command
def deposit_plan_cmd(
    idle_x: str,
    idle_y: str,
    decimals_x: int,
    decimals_y: int,
    reserve: int | None,
    current_tick: int | None,
    tick_lower: int | None,
    tick_upper: int | None,
    expected_shares: int | None,
    slippage_bps: int | None,
) -> None:
    settings = get_engine_settings()
    ticks = (current_tick, tick_lower, tick_upper)
    if any(t is not None for t in ticks) and any(t is None for t in ticks):
        raise click.UsageError(
            "--current-tick, --tick-lower and --tick-upper must be given together"
        )
    context = None
    if current_tick is not None and tick_lower is not None and tick_upper is not None:
        context = PriceContext(current_tick, tick_lower, tick_upper)
    plan = deposit_plan(
        TokenAmount.parse(idle_x, decimals_x, "X"),
        TokenAmount.parse(idle_y, decimals_y, "Y"),
        settings.reserve_percent if reserve is None else reserve,
        context,
        expected_shares=expected_shares,
        slippage_bps=settings.slippage_bps if slippage_bps is None else slippage_bps,
    )
    _ok(
        {
            "amount_x": _amount_json(plan.amount_x),
            "amount_y": _amount_json(plan.amount_y),
            "reserve_x": _amount_json(plan.reserve_x),
            "reserve_y": _amount_json(plan.reserve_y),
            "min_shares": plan.min_shares,
        }
    )


# ── withdrawal queue ──


@arca.command(
    name="available-shares",
    help="Share balance minus the user's queued shares in rounds 0..n.",
)
@click.argument("balance", type=int)
@click.argument("queued", type=int, nargs=-1)
@_engine_command
def available_shares_cmd(balance: int, queued: tuple[int, ...]) -> None:
    rounds = [
        WithdrawalRound(
            index=i,
            total_queued_shares=amount,
            per_user_queued_shares={ZERO_ADDRESS: amount} if amount else {},
        )
        for i, amount in enumerate(queued)
    ]
    _ok({"available": available_shares(balance, rounds, ZERO_ADDRESS)})


# ── on-chain ──


async def _read_snapshot(
    adapter: VaultReaderAdapter, block: int | None
) -> tuple[bool, Any]:
    ok, state = await adapter.get_vault_state(block_identifier=block)
    if not ok or adapter.user_address is None:
        return ok, (state, None)
    ok, user_state = await adapter.get_user_state(
        block_identifier=state["block_number"]
    )
    if not ok:
        return False, (user_state, None)
    return True, (state, user_state["position"])


@arca.command(name="snapshot", help="Read a vault at one block and compute metrics.")
@click.argument("vault_name")
@click.option("--user", default=None, help="Include this user's position.")
@click.option("--price", "price_args", multiple=True, help="SYMBOL=USD (repeatable).")
@click.option("--deposited-usd", type=DECIMAL, default=None)
@click.option("--block", type=int, default=None, help="Block to read (default latest).")
@_engine_command
def snapshot_cmd(
    vault_name: str,
    user: str | None,
    price_args: tuple[str, ...],
    deposited_usd: Decimal | None,
    block: int | None,
) -> None:
    vault = _vault_or_usage_error(vault_name)
    now_ms = int(time.time() * 1000)
    prices = _parse_prices(price_args, now_ms)
    adapter = VaultReaderAdapter(vault, config=CONFIG.get("reader"), user_address=user)

    ok, (state, raw_user) = asyncio.run(_read_snapshot(adapter, block))
    if not ok:
        _fail("read_failed", state)
    if raw_user is not None and deposited_usd is not None:
        raw_user["total_deposited_usd"] = str(deposited_usd)

    _ok(
        run_pipeline(
            state,
            prices,
            now_ms=now_ms,
            raw_user=raw_user,
            settings=get_engine_settings(),
        )
    )


async def _read_at_state_block(
    adapter: VaultReaderAdapter,
    block: int | None,
    read: Callable[..., Awaitable[tuple[bool, Any]]],
) -> tuple[bool, Any]:
    """Vault state, then ``read`` pinned to the block the state came from."""
    ok, state = await adapter.get_vault_state(block_identifier=block)
    if not ok:
        return False, (state, None)
    ok, data = await read(block_identifier=state["block_number"])
    if not ok:
        return False, (data, None)
    return True, (state, data)


@arca.command(name="queue-status", help="Withdrawal rounds and redeemable amounts.")
@click.argument("vault_name")
@click.option("--user", required=True)
@click.option("--block", type=int, default=None, help="Block to read (default latest).")
@_engine_command
def queue_status_cmd(vault_name: str, user: str, block: int | None) -> None:
    vault = _vault_or_usage_error(vault_name)
    adapter = VaultReaderAdapter(vault, config=CONFIG.get("reader"), user_address=user)

    ok, (state, queue) = asyncio.run(
        _read_at_state_block(adapter, block, adapter.get_queue_state)
    )
    if not ok:
        _fail("read_failed", state)

    rows = queue_status(
        queue["rounds"],
        user,
        queue["current_round"],
        TokenAmount.zero(state["decimals_x"], state["symbol_x"]),
        TokenAmount.zero(state["decimals_y"], state["symbol_y"]),
        redeemable_amounts=queue["redeemable"],
    )
    _ok(
        {
            "block_number": queue["block_number"],
            "current_round": queue["current_round"],
            "available_shares": available_shares(
                queue["share_balance"], queue["rounds"], user
            ),
            "rounds": [
                {
                    "round": row.round,
                    "state": row.state.value,
                    "total_queued_shares": row.total_queued_shares,
                    "user_queued_shares": row.user_queued_shares,
                    "redeemable_x": _amount_json(row.redeemable.amount_x),
                    "redeemable_y": _amount_json(row.redeemable.amount_y),
                }
                for row in rows
            ],
        }
    )


@arca.command(
    name="rebalance-plan",
    help="Default range, deposit amounts and weights from the strategy's idle balances.",
)
@click.argument("vault_name")
@click.option("--width", type=float, default=None, help="Percent (ticks) or bin count.")
@click.option("--slippage", type=int, default=None, help="Active point slippage (ticks or bins).")
@click.option("--reserve", type=int, default=None, help="Percent of idle balances held back.")
@click.option("--expected-shares", type=int, default=None)
@click.option("--block", type=int, default=None, help="Block to read (default latest).")
@_engine_command
def rebalance_plan_cmd(
    vault_name: str,
    width: float | None,
    slippage: int | None,
    reserve: int | None,
    expected_shares: int | None,
    block: int | None,
) -> None:
    vault = _vault_or_usage_error(vault_name)
    if not vault.pool or not vault.strategy:
        raise click.UsageError(f"vault {vault.name} needs a pool and a strategy configured")
    settings = get_engine_settings()
    adapter = VaultReaderAdapter(vault, config=CONFIG.get("reader"))

    ok, (state, pool) = asyncio.run(
        _read_at_state_block(adapter, block, adapter.get_pool_state)
    )
    if not ok:
        _fail("read_failed", state)

    active = pool["active"]
    if vault.kind == "cl":
        kind = "tick"
        lower, upper = default_range(
            active,
            pool["spacing"],
            settings.tick_range_width_percent if width is None else width,
        )
        context = PriceContext(active, lower, upper, sqrt_price_x96=pool["sqrt_price_x96"])
        slippage = DEFAULT_TICK_SLIPPAGE if slippage is None else slippage
    else:
        kind = "bin"
        lower, upper = default_range(
            active, None, settings.bin_range_count if width is None else width
        )
        context = None
        slippage = DEFAULT_BIN_SLIPPAGE if slippage is None else slippage

    plan = deposit_plan(
        TokenAmount(pool["idle_x"], state["decimals_x"], state["symbol_x"]),
        TokenAmount(pool["idle_y"], state["decimals_y"], state["symbol_y"]),
        settings.reserve_percent if reserve is None else reserve,
        context,
        expected_shares=expected_shares,
        slippage_bps=settings.slippage_bps,
    )
    result: dict[str, Any] = {
        "block_number": pool["block_number"],
        "kind": kind,
        "active": active,
        "current_range": list(pool["range"]),
        "lower": lower,
        "upper": upper,
        "desired_active_point": active,
        "slippage": slippage,
        "render": render_range(lower, upper, active, kind),
        "amount_x": _amount_json(plan.amount_x),
        "amount_y": _amount_json(plan.amount_y),
        "reserve_x": _amount_json(plan.reserve_x),
        "reserve_y": _amount_json(plan.reserve_y),
        "min_shares": plan.min_shares,
    }
    # Bin strategies take per-bin weights; tick strategies only take the range
    if kind == "bin":
        proposal = build_range_proposal(
            lower, upper, active, slippage, total=settings.distribution_total
        )
        result["distribution_x"] = proposal.distribution_x
        result["distribution_y"] = proposal.distribution_y
        result["encoded"] = "0x" + encode_distribution(proposal).hex()
    _ok(result)


async def _read_oracle(
    adapter: VaultReaderAdapter, block: int | None, with_pool: bool
) -> tuple[bool, Any]:
    ok, result = await _read_at_state_block(adapter, block, adapter.get_oracle_state)
    if not ok or not with_pool:
        return ok, (*result, None)
    state, _ = result
    ok, pool = await adapter.get_pool_state(block_identifier=state["block_number"])
    if not ok:
        return False, (pool, None, None)
    return True, (*result, pool)


@arca.command(name="oracle", help="Oracle helper price, parameters and sanity checks.")
@click.argument("vault_name")
@click.option("--block", type=int, default=None, help="Block to read (default latest).")
@_engine_command
def oracle_cmd(vault_name: str, block: int | None) -> None:
    vault = _vault_or_usage_error(vault_name)
    if not vault.oracle_helper:
        raise click.UsageError(f"vault {vault.name} has no oracle helper configured")
    adapter = VaultReaderAdapter(vault, config=CONFIG.get("reader"))
    with_pool = vault.kind == "cl" and bool(vault.pool)

    ok, (state, oracle, pool) = asyncio.run(_read_oracle(adapter, block, with_pool))
    if not ok:
        _fail("read_failed", state)

    decimals_x, decimals_y = state["decimals_x"], state["decimals_y"]
    params = oracle["parameters"]
    amount_y = oracle_amount_y_for_one_x(oracle["price_x128"], decimals_x)
    within_bounds = check_price_bounds(amount_y, params)
    if not within_bounds:
        logger.warning(
            f"Oracle price {amount_y} is outside [{params.min_price}, {params.max_price}]"
        )

    result: dict[str, Any] = {
        "block_number": oracle["block_number"],
        "pair": f"{state['symbol_x']}/{state['symbol_y']}",
        "price": format_oracle_price(oracle["price_x128"], decimals_x, decimals_y),
        "amount_y_for_one_x": amount_y,
        "inverse": None,
        "within_bounds": within_bounds,
        "parameters": {
            "min_price": format_units(params.min_price, decimals_y),
            "max_price": format_units(params.max_price, decimals_y),
            "heartbeat_x_s": params.heartbeat_x,
            "heartbeat_y_s": params.heartbeat_y,
            "deviation_threshold": format_deviation_threshold(params.deviation_threshold),
            "twap_check_enabled": params.twap_check_enabled,
            "twap_interval_s": params.twap_interval,
        },
        "pool_price": None,
        "pool_deviation": None,
        "within_deviation": None,
    }
    if amount_y > 0:
        result["inverse"] = format_units_fixed(
            invert_price(amount_y, decimals_x, decimals_y), decimals_x
        )
        if pool is not None:
            spot = sqrt_price_x96_to_amount_y(pool["sqrt_price_x96"], decimals_x)
            result["pool_price"] = format_units_fixed(spot, decimals_y)
            result["pool_deviation"] = format_deviation_threshold(
                price_deviation(spot, amount_y)
            )
            result["within_deviation"] = is_within_deviation(
                spot, amount_y, params.deviation_threshold
            )
    _ok(result)


def main():
    arca(standalone_mode=True)


if __name__ == "__main__":
    main()
