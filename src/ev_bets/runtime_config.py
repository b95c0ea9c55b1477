"""Runtime configuration loader (config-first, env-overrides via settings)."""

from __future__ import annotations

import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ev_bets.models import ALL_METHODS, FairOddsMethod

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "runtime.toml"
DEFAULT_LOCAL_OVERRIDE_PATH = Path(__file__).resolve().parents[2] / "config" / "runtime.local.toml"

DEFAULT_TARGET_SPORTSBOOKS: tuple[str, ...] = ("betano", "unibet", "betway")
DEFAULT_SHARP_BOOK = "pinnacle"


@dataclass(frozen=True)
class EngineConfig:
    """Static parameters for the estimator and EV calculator.

    Passed explicitly into every engine call; nothing in the engine reads
    process-wide state.
    """

    sharp_book_id: str = DEFAULT_SHARP_BOOK
    target_book_ids: tuple[str, ...] = DEFAULT_TARGET_SPORTSBOOKS
    min_books_for_fair_odds: int = 3
    outlier_threshold: float = 3.5
    min_ev_percent: float = 5.0
    max_decimal_odds: float = 10.0
    # Assumed single-sided margin of the sharp book; a known approximation.
    sharp_overround: float = 1.025
    methods: tuple[FairOddsMethod, ...] = field(default=ALL_METHODS)


@dataclass(frozen=True)
class RuntimeConfig:
    """Materialized runtime configuration."""

    config_path: Path
    engine: EngineConfig
    track_all_bets: bool


_CURRENT_RUNTIME_CONFIG: RuntimeConfig | None = None


def set_current_runtime_config(config: RuntimeConfig | None) -> None:
    global _CURRENT_RUNTIME_CONFIG
    _CURRENT_RUNTIME_CONFIG = config


def current_runtime_config() -> RuntimeConfig:
    config = _CURRENT_RUNTIME_CONFIG
    if config is not None:
        return config
    loaded = load_runtime_config()
    set_current_runtime_config(loaded)
    return loaded


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in overlay.items():
        existing = out.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            out[key] = _deep_merge(existing, value)
        else:
            out[key] = value
    return out


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RuntimeError(f"failed reading runtime config: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise RuntimeError(f"invalid runtime config TOML: {path}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError(f"runtime config root must be a table: {path}")
    return payload


def _as_table(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RuntimeError(f"runtime config section [{key}] must be a table")
    return value


def _as_str(value: Any, *, default: str) -> str:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return default


def _as_bool(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _as_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _as_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def as_csv_list(values: Any, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(values, list):
        cleaned = [str(value).strip() for value in values if str(value).strip()]
        return tuple(cleaned) if cleaned else default
    if isinstance(values, str):
        cleaned = [part.strip() for part in values.split(",") if part.strip()]
        return tuple(cleaned) if cleaned else default
    return default


def parse_methods(values: Sequence[str]) -> tuple[FairOddsMethod, ...]:
    """Resolve method names, keeping registry order and dropping duplicates."""
    requested: set[FairOddsMethod] = set()
    for value in values:
        name = value.strip().upper()
        try:
            requested.add(FairOddsMethod(name))
        except ValueError as exc:
            options = ",".join(method.value for method in ALL_METHODS)
            raise RuntimeError(f"unknown fair odds method: {value} (options: {options})") from exc
    return tuple(method for method in ALL_METHODS if method in requested)


def load_runtime_config(config_path: Path | None = None) -> RuntimeConfig:
    """Load runtime config from `config/runtime.toml` plus optional local override."""
    source = (config_path or DEFAULT_CONFIG_PATH).expanduser().resolve()
    if not source.exists():
        raise RuntimeError(f"runtime config file not found: {source}")

    payload = _read_toml(source)
    if source == DEFAULT_CONFIG_PATH and DEFAULT_LOCAL_OVERRIDE_PATH.exists():
        payload = _deep_merge(payload, _read_toml(DEFAULT_LOCAL_OVERRIDE_PATH))

    engine = _as_table(payload, "engine")
    pipeline = _as_table(payload, "pipeline")
    defaults = EngineConfig()

    return RuntimeConfig(
        config_path=source,
        engine=EngineConfig(
            sharp_book_id=_as_str(engine.get("sharp_book"), default=defaults.sharp_book_id),
            target_book_ids=as_csv_list(
                engine.get("target_sportsbooks"),
                default=defaults.target_book_ids,
            ),
            min_books_for_fair_odds=_as_int(
                engine.get("min_books_for_fair_odds"),
                default=defaults.min_books_for_fair_odds,
            ),
            outlier_threshold=_as_float(
                engine.get("outlier_threshold"),
                default=defaults.outlier_threshold,
            ),
            min_ev_percent=_as_float(engine.get("min_ev_percent"), default=defaults.min_ev_percent),
            max_decimal_odds=_as_float(
                engine.get("max_decimal_odds"),
                default=defaults.max_decimal_odds,
            ),
            sharp_overround=_as_float(
                engine.get("sharp_overround"),
                default=defaults.sharp_overround,
            ),
            methods=parse_methods(
                as_csv_list(
                    engine.get("methods"),
                    default=tuple(method.value for method in defaults.methods),
                )
            ),
        ),
        track_all_bets=_as_bool(pipeline.get("track_all_bets"), default=False),
    )
