"""JSON config for RPC endpoints, vault addresses and engine tunables.

Looked up at ``$ARCA_CONFIG_PATH`` / ``$ARCA_CONFIG`` (relative paths resolve
against the project root), else ``config.json`` at the project root.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from arca_vault.core.constants import (
    DEFAULT_BIN_RANGE_COUNT,
    DEFAULT_RESERVE_PERCENT,
    DEFAULT_TICK_RANGE_WIDTH_PERCENT,
    DISTRIBUTION_TOTAL_BPS,
    PRICE_CACHE_TTL_S,
    PRICE_STALE_AFTER_MS,
)

_CONFIG_ENV_KEYS = ("ARCA_CONFIG_PATH", "ARCA_CONFIG")
_CONFIG_FILENAME = "config.json"


def _project_root() -> Path | None:
    """Nearest directory holding pyproject.toml, from the cwd then this file."""
    for start in (Path.cwd(), Path(__file__).parent):
        for candidate in (start.resolve(), *start.resolve().parents):
            if (candidate / "pyproject.toml").is_file():
                return candidate
    return None


def _env_config_path() -> str | None:
    for key in _CONFIG_ENV_KEYS:
        value = os.getenv(key, "").strip()
        if value:
            return value
    return None


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()

    root = _project_root()
    env_path = _env_config_path()
    if env_path is None:
        return root / _CONFIG_FILENAME if root else Path(_CONFIG_FILENAME)

    candidate = Path(env_path).expanduser()
    if candidate.is_absolute() or root is None:
        return candidate
    return root / candidate


def load_config_json(
    path: str | Path | None = None, *, require_exists: bool = False
) -> dict[str, Any]:
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        if require_exists:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return {}
    try:
        return json.loads(config_path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config file is not valid JSON: {config_path}") from exc


CONFIG: dict[str, Any] = load_config_json()


def set_config(config: dict[str, Any]) -> None:
    """Swap in new contents without rebinding CONFIG, so earlier importers see them."""
    CONFIG.clear()
    CONFIG.update(config)


def load_config(
    path: str | Path | None = None, *, require_exists: bool = False
) -> None:
    set_config(load_config_json(path, require_exists=require_exists))


def get_rpc_urls() -> dict[str, Any]:
    return CONFIG.get("rpc_urls", {})


class EngineSettings(BaseModel):
    price_cache_ttl_s: int = Field(default=PRICE_CACHE_TTL_S, ge=0)
    stale_after_ms: int = Field(default=PRICE_STALE_AFTER_MS, ge=0)
    reserve_percent: int = Field(default=DEFAULT_RESERVE_PERCENT, ge=0, le=100)
    tick_range_width_percent: float = Field(
        default=DEFAULT_TICK_RANGE_WIDTH_PERCENT, gt=0, lt=100
    )
    bin_range_count: int = Field(default=DEFAULT_BIN_RANGE_COUNT, ge=3)
    distribution_total: int = Field(
        default=DISTRIBUTION_TOTAL_BPS,
        description="Per-side sum of rebalance weights (10_000 bps; some deployments expect 10**18).",
    )
    slippage_bps: int = Field(default=50, ge=0, le=10_000)

    @field_validator("distribution_total")
    @classmethod
    def validate_distribution_total(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("distribution_total must be positive")
        return v


def get_engine_settings() -> EngineSettings:
    return EngineSettings(**CONFIG.get("engine", {}))


class VaultConfig(BaseModel):
    name: str
    chain_id: int
    kind: Literal["cl", "lb"] = Field(
        ...,
        description="'cl' for tick-spaced concentrated liquidity pools, 'lb' for bin-step pairs.",
    )
    vault: str
    strategy: str | None = None
    pool: str | None = Field(
        default=None, description="CL pool (kind=cl) or LB pair (kind=lb) address."
    )
    oracle_helper: str | None = None


def get_vault_config(name: str) -> VaultConfig:
    vaults = CONFIG.get("vaults", {})
    entry = vaults.get(name)
    if not isinstance(entry, dict):
        known = ", ".join(sorted(vaults)) or "none"
        raise KeyError(f"Vault '{name}' not found in config (known: {known})")
    return VaultConfig(name=name, **entry)
