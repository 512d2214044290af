"""Tests for the arca command table."""

from __future__ import annotations

import copy
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from loguru import logger

import arca_vault.core.config as config
from arca_vault.cli import arca
from arca_vault.engine.prices import OracleParameters, encode_oracle_price
from arca_vault.engine.types import WithdrawalRound

USER = "0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"
VAULT = "0x1111111111111111111111111111111111111111"


@pytest.fixture(autouse=True)
def restore_global_config():
    original = copy.deepcopy(config.CONFIG)
    config.set_config({})
    yield
    config.set_config(original)
    # The group callback points loguru at CliRunner's stderr
    logger.remove()
    logger.add(sys.stderr)


def _invoke(*args: str):
    result = CliRunner().invoke(arca, ["--log-level", "ERROR", *args])
    return result, json.loads(result.output)


# --- units & amounts ---


def test_to_raw():
    result, payload = _invoke("to-raw", "1.5", "--decimals", "18")
    assert result.exit_code == 0
    assert payload == {"ok": True, "result": {"raw": 1_500_000_000_000_000_000}}


def test_to_raw_rejects_excess_precision():
    result, payload = _invoke("to-raw", "1.1234567", "--decimals", "6")
    assert result.exit_code == 1
    assert payload["ok"] is False
    assert payload["error"] == "parse_error"
    assert "message" in payload["details"]


def test_format_fixed_places():
    _, payload = _invoke("format", "1500000", "--decimals", "6", "--places", "2")
    assert payload["result"]["formatted"] == "1.50"


def test_parse_amount_percent_with_suggestions():
    _, payload = _invoke(
        "parse-amount",
        "50%",
        "--decimals",
        "6",
        "--available",
        "5000000",
        "--symbol",
        "USDC",
        "--first-deposit",
    )
    result = payload["result"]
    assert result["raw"] == 2_500_000
    assert result["formatted"] == "2.5"
    assert [s["label"] for s in result["suggestions"]] == ["$100", "$10", "$1"]


def test_to_raw_tiny_exponent_fails_fast():
    result, payload = _invoke("to-raw", "1e-999999999", "--decimals", "18")
    assert result.exit_code == 1
    assert payload["error"] == "parse_error"


def test_parse_amount_huge_negative_is_typed():
    result, payload = _invoke(
        "parse-amount", "--decimals", "18", "--available", "1000", "--", "-1e999999999"
    )
    assert result.exit_code == 1
    assert payload["error"] == "non_positive_amount"


def test_parse_amount_exceeding_available():
    result, payload = _invoke(
        "parse-amount", "150%", "--decimals", "6", "--available", "5000000"
    )
    assert result.exit_code == 1
    assert payload["error"] == "exceeds_available"
    assert payload["details"]["amount"] == 7_500_000
    assert payload["details"]["available"] == 5_000_000


# --- prices ---


def test_oracle_price():
    price = encode_oracle_price(1, 18, 6)
    _, payload = _invoke(
        "oracle-price", str(price), "--decimals-x", "18", "--decimals-y", "6"
    )
    result = payload["result"]
    assert result["price"] == "1.000000"
    assert result["amount_y_for_one_x"] == 1_000_000
    assert result["inverse"] == "1.000000000000000000"


def test_sqrt_price_at_parity():
    _, payload = _invoke(
        "sqrt-price", str(2**96), "--decimals-x", "18", "--decimals-y", "18"
    )
    assert payload["result"] == {"price": "1", "tick": 0}


def test_cross_price_division_by_zero():
    result, payload = _invoke("cross-price", "5", "0", "--decimals-y", "6")
    assert result.exit_code == 1
    assert payload["error"] == "division_by_zero"


# --- rebalance ---


def test_default_bin_range():
    _, payload = _invoke("range", "8388608", "--width", "51")
    result = payload["result"]
    assert result["kind"] == "bin"
    assert (result["lower"], result["upper"]) == (8_388_583, 8_388_633)
    assert "in range" in result["render"]


def test_bin_range_needs_three_bins():
    result, payload = _invoke("range", "100", "--width", "2")
    assert result.exit_code == 1
    assert payload["error"] == "range_invalid"


def test_default_tick_range():
    _, payload = _invoke("range", "0", "--tick-spacing", "60")
    result = payload["result"]
    assert (result["lower"], result["upper"]) == (-540, 540)


def test_explicit_range_is_snapped():
    _, payload = _invoke(
        "range", "0", "--tick-spacing", "60", "--lower", "-500", "--upper", "500"
    )
    assert (payload["result"]["lower"], payload["result"]["upper"]) == (-540, 540)


def test_range_requires_both_bounds():
    result = CliRunner().invoke(arca, ["range", "0", "--lower", "-5"])
    assert result.exit_code == 2


def test_distribution_with_encoding():
    _, payload = _invoke("distribution", "100", "102", "--encode")
    result = payload["result"]
    assert result["distribution_x"] == [3333, 3333, 3334]
    assert result["distribution_y"] == [3333, 3333, 3334]
    assert result["desired_active_point"] == 101
    assert result["encoded"].startswith("0x")


def test_distribution_total_from_config():
    config.set_config({"engine": {"distribution_total": 10**18}})
    _, payload = _invoke("distribution", "1", "2")
    assert sum(payload["result"]["distribution_x"]) == 10**18


def test_ratio_requires_prices():
    result, payload = _invoke(
        "ratio", "100", "50", "--decimals-x", "18", "--decimals-y", "6"
    )
    assert result.exit_code == 1
    assert payload["error"] == "price_unavailable"


def test_ratio():
    _, payload = _invoke(
        "ratio",
        "100",
        "50",
        "--decimals-x",
        "18",
        "--decimals-y",
        "6",
        "--price-x",
        "0.5",
        "--price-y",
        "1",
    )
    assert payload["result"]["ratio_x"] == 50
    assert payload["result"]["ratio_y"] == 50


def test_deposit_plan_holds_back_reserve():
    _, payload = _invoke(
        "deposit-plan",
        "100",
        "200",
        "--decimals-x",
        "18",
        "--decimals-y",
        "6",
        "--reserve",
        "10",
    )
    result = payload["result"]
    assert result["amount_x"]["raw"] == 90 * 10**18
    assert result["amount_y"]["formatted"] == "180.0 Y"
    assert result["reserve_y"]["raw"] == 20 * 10**6
    assert result["min_shares"] == 0


def test_deposit_plan_range_above_price_takes_only_x():
    _, payload = _invoke(
        "deposit-plan",
        "100",
        "200",
        "--decimals-x",
        "18",
        "--decimals-y",
        "6",
        "--reserve",
        "0",
        "--current-tick",
        "-100",
        "--tick-lower",
        "0",
        "--tick-upper",
        "60",
        "--expected-shares",
        "10000",
        "--slippage-bps",
        "50",
    )
    result = payload["result"]
    assert result["amount_x"]["raw"] == 100 * 10**18
    assert result["amount_y"]["raw"] == 0
    assert result["min_shares"] == 9_950


# --- withdrawal queue ---


def test_available_shares():
    _, payload = _invoke("available-shares", "1000", "200", "100")
    assert payload["result"] == {"available": 700}


def test_available_shares_over_queued():
    result, payload = _invoke("available-shares", "100", "200")
    assert result.exit_code == 1
    assert payload["error"] == "inconsistent_state"


# --- on-chain commands ---


RAW_STATE = {
    "symbol_x": "wS",
    "symbol_y": "USDC",
    "decimals_x": 18,
    "decimals_y": 6,
    "balance_x": 1_000 * 10**18,
    "balance_y": 500 * 10**6,
    "total_supply": 2_000 * 10**18,
    "share_decimals": 18,
    "price_per_share_x": 11 * 10**17,
    "price_per_share_y": 105 * 10**16,
    "block_number": 42,
}


@pytest.fixture
def vault_config():
    config.set_config(
        {"vaults": {"ws-usdc": {"chain_id": 146, "kind": "lb", "vault": VAULT}}}
    )


@pytest.fixture
def mock_adapter():
    adapter = MagicMock()
    adapter.get_vault_state = AsyncMock(return_value=(True, dict(RAW_STATE)))
    with patch("arca_vault.cli.VaultReaderAdapter", return_value=adapter) as cls:
        adapter.cls = cls
        yield adapter


def test_snapshot(vault_config, mock_adapter):
    mock_adapter.user_address = USER
    mock_adapter.get_user_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "position": {"shares_x": 10**20, "shares_y": 5 * 10**19},
                "share_balance": 0,
            },
        )
    )

    _, payload = _invoke(
        "snapshot",
        "ws-usdc",
        "--user",
        USER,
        "--price",
        "wS=0.5",
        "--price",
        "USDC=1",
        "--deposited-usd",
        "100",
    )

    result = payload["result"]
    assert result["block_number"] == 42
    assert result["tvl_usd"] == 1000.0
    assert result["user_value_usd"] == 107.5
    assert result["roi_percent"] == 7.5
    mock_adapter.get_user_state.assert_awaited_once_with(block_identifier=42)
    vault_arg = mock_adapter.cls.call_args.args[0]
    assert vault_arg.name == "ws-usdc"


def test_snapshot_without_prices(vault_config, mock_adapter):
    mock_adapter.user_address = None
    _, payload = _invoke("snapshot", "ws-usdc")
    assert payload["result"]["price_data_available"] is False
    assert payload["result"]["tvl_usd"] is None


def test_snapshot_read_failure(vault_config, mock_adapter):
    mock_adapter.user_address = None
    mock_adapter.get_vault_state = AsyncMock(return_value=(False, "rpc down"))
    result, payload = _invoke("snapshot", "ws-usdc")
    assert result.exit_code == 1
    assert payload == {"ok": False, "error": "read_failed", "details": "rpc down"}


def test_snapshot_bad_price_argument(vault_config, mock_adapter):
    result = CliRunner().invoke(
        arca, ["--log-level", "ERROR", "snapshot", "ws-usdc", "--price", "wS"]
    )
    assert result.exit_code == 2


def test_snapshot_unknown_vault():
    result = CliRunner().invoke(arca, ["--log-level", "ERROR", "snapshot", "nope"])
    assert result.exit_code == 2
    assert "nope" in result.output


def test_queue_status(vault_config, mock_adapter):
    mock_adapter.get_queue_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "current_round": 1,
                "share_balance": 1_000,
                "rounds": [
                    WithdrawalRound(0, 500, {USER: 200}),
                    WithdrawalRound(1, 100, {USER: 100}),
                ],
                "redeemable": {0: (4 * 10**17, 2_000_000), 1: (0, 0)},
            },
        )
    )

    _, payload = _invoke("queue-status", "ws-usdc", "--user", USER)

    result = payload["result"]
    assert result["available_shares"] == 700
    assert [r["round"] for r in result["rounds"]] == [0, 1]
    assert result["rounds"][0]["state"] == "closed"
    assert result["rounds"][0]["redeemable_x"] == {
        "raw": 4 * 10**17,
        "formatted": "0.4 wS",
    }
    assert result["rounds"][1]["state"] == "open"
    assert result["rounds"][1]["redeemable_y"]["raw"] == 0
    mock_adapter.get_queue_state.assert_awaited_once_with(block_identifier=42)


STRATEGY = "0x2222222222222222222222222222222222222222"
POOL = "0x3333333333333333333333333333333333333333"
ORACLE = "0x4444444444444444444444444444444444444444"


def _pool_vault(kind: str) -> None:
    config.set_config(
        {
            "vaults": {
                "ws-usdc": {
                    "chain_id": 146,
                    "kind": kind,
                    "vault": VAULT,
                    "strategy": STRATEGY,
                    "pool": POOL,
                    "oracle_helper": ORACLE,
                }
            }
        }
    )


def test_rebalance_plan_bins(mock_adapter):
    _pool_vault("lb")
    mock_adapter.get_pool_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "kind": "lb",
                "active": 8_388_608,
                "bin_step": 25,
                "range": (8_388_500, 8_388_600),
                "idle_x": 10 * 10**18,
                "idle_y": 100 * 10**6,
            },
        )
    )

    _, payload = _invoke("rebalance-plan", "ws-usdc")

    result = payload["result"]
    assert (result["lower"], result["upper"]) == (8_388_583, 8_388_633)
    assert result["current_range"] == [8_388_500, 8_388_600]
    assert result["slippage"] == 10
    assert result["amount_x"]["raw"] == 9 * 10**18
    assert result["reserve_y"]["raw"] == 10 * 10**6
    assert len(result["distribution_x"]) == 51
    assert sum(result["distribution_x"]) == 10_000
    assert result["distribution_x"][-1] == 200
    assert result["encoded"].startswith("0x")
    mock_adapter.get_pool_state.assert_awaited_once_with(block_identifier=42)


def test_rebalance_plan_ticks(mock_adapter):
    _pool_vault("cl")
    mock_adapter.get_vault_state = AsyncMock(
        return_value=(True, dict(RAW_STATE, decimals_y=18))
    )
    mock_adapter.get_pool_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "kind": "cl",
                "sqrt_price_x96": 2**96,
                "active": 0,
                "spacing": 60,
                "range": (-600, 600),
                "idle_x": 10**18,
                "idle_y": 10**18,
            },
        )
    )

    _, payload = _invoke("rebalance-plan", "ws-usdc", "--expected-shares", "1000")

    result = payload["result"]
    assert (result["lower"], result["upper"]) == (-540, 540)
    assert result["kind"] == "tick"
    assert result["slippage"] == 100
    assert result["amount_x"]["raw"] > 0 and result["amount_y"]["raw"] > 0
    assert result["reserve_x"]["raw"] >= 10**17
    assert result["min_shares"] == 995
    assert "distribution_x" not in result


def test_rebalance_plan_read_failure(mock_adapter):
    _pool_vault("lb")
    mock_adapter.get_pool_state = AsyncMock(return_value=(False, "rpc down"))
    result, payload = _invoke("rebalance-plan", "ws-usdc")
    assert result.exit_code == 1
    assert payload == {"ok": False, "error": "read_failed", "details": "rpc down"}


def test_rebalance_plan_needs_strategy(vault_config, mock_adapter):
    result = CliRunner().invoke(
        arca, ["--log-level", "ERROR", "rebalance-plan", "ws-usdc"]
    )
    assert result.exit_code == 2


def test_oracle_with_pool_deviation(mock_adapter):
    _pool_vault("cl")
    mock_adapter.get_vault_state = AsyncMock(
        return_value=(True, dict(RAW_STATE, decimals_x=6, decimals_y=6))
    )
    mock_adapter.get_oracle_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "price_x128": encode_oracle_price("1.02", 6, 6),
                "parameters": OracleParameters(
                    min_price=900_000,
                    max_price=1_100_000,
                    heartbeat_x=86_400,
                    heartbeat_y=3_600,
                    deviation_threshold=5 * 10**16,
                    twap_check_enabled=True,
                    twap_interval=600,
                ),
            },
        )
    )
    mock_adapter.get_pool_state = AsyncMock(
        return_value=(True, {"block_number": 42, "kind": "cl", "sqrt_price_x96": 2**96})
    )

    _, payload = _invoke("oracle", "ws-usdc")

    result = payload["result"]
    assert result["price"] == "1.020000"
    assert result["amount_y_for_one_x"] == 1_020_000
    assert result["inverse"] == "0.980392"
    assert result["within_bounds"] is True
    assert result["parameters"]["min_price"] == "0.9"
    assert result["parameters"]["deviation_threshold"] == "5.00%"
    assert result["pool_price"] == "1.000000"
    assert result["pool_deviation"] == "1.96%"
    assert result["within_deviation"] is True
    mock_adapter.get_oracle_state.assert_awaited_once_with(block_identifier=42)
    mock_adapter.get_pool_state.assert_awaited_once_with(block_identifier=42)


def test_oracle_out_of_bounds_bin_vault(mock_adapter):
    _pool_vault("lb")
    mock_adapter.get_oracle_state = AsyncMock(
        return_value=(
            True,
            {
                "block_number": 42,
                "price_x128": encode_oracle_price("2", 18, 6),
                "parameters": OracleParameters(1, 1_000_000, 0, 0, 10**16, False, 0),
            },
        )
    )
    mock_adapter.get_pool_state = AsyncMock()

    _, payload = _invoke("oracle", "ws-usdc")

    result = payload["result"]
    assert result["amount_y_for_one_x"] == 2_000_000
    assert result["within_bounds"] is False
    assert result["pool_price"] is None
    mock_adapter.get_pool_state.assert_not_awaited()


def test_oracle_requires_helper(vault_config, mock_adapter):
    result = CliRunner().invoke(arca, ["--log-level", "ERROR", "oracle", "ws-usdc"])
    assert result.exit_code == 2
