from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os
import sys

from shopdesk.domain.errors import ValidationError


DEFAULT_FX_SOURCES = (
    "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies/usd.json",
    "https://latest.currency-api.pages.dev/v1/currencies/usd.json",
)


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class Settings:
    base_currency: str = "USD"
    quoted_currency: str = "CDF"
    enabled_payment_methods: tuple[str, ...] = ("cash",)
    idle_timeout_seconds: float = 900.0
    fx_timeout_seconds: float = 10.0
    fx_sources: tuple[str, ...] = DEFAULT_FX_SOURCES


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "ShopDesk") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "shop.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _split_list(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _positive_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{key} must be a number. Received: {raw!r}") from exc
    if value <= 0:
        raise ValidationError(f"{key} must be > 0. Received: {value}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if env is None else env
    defaults = Settings()

    methods = _split_list(env.get("SHOPDESK_PAYMENT_METHODS", "")) or defaults.enabled_payment_methods
    sources = _split_list(env.get("SHOPDESK_FX_SOURCES", "")) or defaults.fx_sources

    return Settings(
        base_currency=env.get("SHOPDESK_BASE_CURRENCY", defaults.base_currency).strip().upper(),
        quoted_currency=env.get("SHOPDESK_QUOTED_CURRENCY", defaults.quoted_currency).strip().upper(),
        enabled_payment_methods=tuple(m.lower() for m in methods),
        idle_timeout_seconds=_positive_float(env, "SHOPDESK_IDLE_TIMEOUT_SECONDS", defaults.idle_timeout_seconds),
        fx_timeout_seconds=_positive_float(env, "SHOPDESK_FX_TIMEOUT_SECONDS", defaults.fx_timeout_seconds),
        fx_sources=sources,
    )
