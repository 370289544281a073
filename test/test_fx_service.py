from pathlib import Path

import pytest
import requests

from shopdesk.domain.errors import FxUnavailableError, ValidationError
from shopdesk.repositories.sqlite_repo import SqliteRepository
from shopdesk.services.fx_service import FxService


def _fx(tmp_path: Path, **kwargs) -> FxService:
    repo = SqliteRepository(tmp_path / "fx.db")
    repo.init_db()
    return FxService(repo, **kwargs)


def test_record_rate_appends_and_latest_wins(tmp_path: Path):
    fx = _fx(tmp_path)
    assert fx.get_latest_rate() is None
    with pytest.raises(FxUnavailableError):
        fx.require_rate()

    fx.record_rate(2000, actor_user_id=1)
    fx.record_rate("2100.5", actor_user_id=1)

    assert fx.require_rate() == 2100.5
    assert [r.rate for r in fx.list_rates()] == [2100.5, 2000.0]


@pytest.mark.parametrize("bad", [0, -3, "abc", None, float("nan")])
def test_record_rate_rejects_invalid_values(tmp_path: Path, bad):
    fx = _fx(tmp_path)
    with pytest.raises(ValidationError):
        fx.record_rate(bad)
    assert fx.list_rates() == []


def test_sync_falls_back_to_second_source(tmp_path: Path):
    fx = _fx(tmp_path, sources=("https://primary.example/usd.json", "https://fallback.example/usd.json"))
    calls = []

    def fetch(url: str):
        calls.append(url)
        if "primary" in url:
            raise requests.RequestException("network down")
        return {"date": "2024-01-02", "usd": {"cdf": 2845.1, "eur": 0.91}}

    fx._fetch_json = fetch  # type: ignore[attr-defined]

    recorded = fx.sync_from_remote(actor_user_id=1)

    assert calls == ["https://primary.example/usd.json", "https://fallback.example/usd.json"]
    assert recorded.rate == 2845.1
    assert fx.require_rate() == 2845.1


def test_sync_raises_when_every_source_fails(tmp_path: Path):
    fx = _fx(tmp_path, sources=("https://a.example", "https://b.example"))
    fx.record_rate(2000)

    responses = iter([{"usd": {"eur": 0.9}}, {"usd": {"cdf": 0}}])
    fx._fetch_json = lambda _url: next(responses)  # type: ignore[attr-defined]

    with pytest.raises(FxUnavailableError):
        fx.sync_from_remote()

    assert fx.require_rate() == 2000.0
    assert len(fx.list_rates()) == 1


def test_sync_reads_configured_quoted_currency(tmp_path: Path):
    fx = _fx(tmp_path, sources=("https://a.example",), quoted_currency="EUR")
    fx._fetch_json = lambda _url: {"date": "2024-01-02", "rates": {"eur": 0.92}}  # type: ignore[attr-defined]

    assert fx.sync_from_remote().rate == 0.92
