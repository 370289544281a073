from __future__ import annotations

import logging
from typing import Optional, Sequence

import requests

from shopdesk.config import DEFAULT_FX_SOURCES
from shopdesk.domain.currency import validate_rate
from shopdesk.domain.errors import FxUnavailableError, ValidationError
from shopdesk.domain.models import ExchangeRate
from shopdesk.repositories.contracts import RateRepository
from shopdesk.repositories.sqlite_repo import now_iso

log = logging.getLogger("shopdesk.fx")


class FxService:
    """Exchange rates, quoted-currency units per 1 base unit. Every change is a new record."""

    def __init__(
        self,
        repo: RateRepository,
        sources: Sequence[str] = DEFAULT_FX_SOURCES,
        quoted_currency: str = "CDF",
        timeout: float = 10.0,
    ):
        self.repo = repo
        self.sources = tuple(sources)
        self.quoted_currency = quoted_currency.lower()
        self.timeout = timeout

    def get_latest_rate(self) -> Optional[ExchangeRate]:
        return self.repo.get_latest_exchange_rate()

    def require_rate(self) -> float:
        latest = self.repo.get_latest_exchange_rate()
        if latest is None:
            raise FxUnavailableError("No exchange rate recorded yet. Set today's rate before selling.")
        return validate_rate(latest.rate)

    def list_rates(self, limit: int = 30) -> list[ExchangeRate]:
        return self.repo.list_exchange_rates(limit)

    def record_rate(self, rate: object, actor_user_id: int | None = None) -> ExchangeRate:
        try:
            value = validate_rate(rate)
        except FxUnavailableError as e:
            raise ValidationError(f"Invalid exchange rate: {e}") from e

        created_at = now_iso()
        rate_id = self.repo.insert_exchange_rate(value, created_at, actor_user_id)
        log.info("fx_rate_recorded id=%s rate=%.4f actor=%s", rate_id, value, actor_user_id)
        return ExchangeRate(id=rate_id, rate=value, created_at=created_at, actor_user_id=actor_user_id)

    def _fetch_json(self, url: str) -> dict:
        r = requests.get(url, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def _extract_rate(self, data: dict) -> float:
        # common structure: {"date":"YYYY-MM-DD","usd":{"cdf":2845.1, ...}}
        code = self.quoted_currency
        if "usd" in data and isinstance(data["usd"], dict):
            v = data["usd"].get(code)
            if v is not None:
                return validate_rate(v)

        for _k, v in data.items():
            if isinstance(v, dict) and code in v:
                return validate_rate(v[code])

        raise FxUnavailableError(f"FX API response missing {code.upper()} rate. Raw: {data}")

    def sync_from_remote(self, actor_user_id: int | None = None) -> ExchangeRate:
        last_err = None
        for url in self.sources:
            try:
                rate = self._extract_rate(self._fetch_json(url))
            except (requests.RequestException, ValueError, FxUnavailableError) as e:
                last_err = e
                log.warning("fx_source_failed url=%s error=%s", url, e)
                continue
            return self.record_rate(rate, actor_user_id=actor_user_id)

        raise FxUnavailableError(f"FX fetch failed on every source. Last error: {last_err}")
