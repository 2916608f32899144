"""Shared fixtures."""

from datetime import datetime, timezone

import httpx
import pytest

from portfolio_pulse.config import Config
from portfolio_pulse.quotes.client import QuoteClient
from portfolio_pulse.storage.database import Database

# Wednesday 15 Oct 2025, 10:00 IST
MARKET_OPEN_UTC = datetime(2025, 10, 15, 4, 30, tzinfo=timezone.utc)
# Saturday 18 Oct 2025, 10:00 IST
WEEKEND_UTC = datetime(2025, 10, 18, 4, 30, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path):
    return Config(
        base_dir=tmp_path,
        rate_limit_per_second=10_000.0,
        retry_backoff_seconds=0.0,
        request_delay_seconds=0.0,
        manual_refresh_gap_seconds=0.0,
        daily_refresh_gap_seconds=0.0,
    )


@pytest.fixture
def db(config):
    with Database(config) as database:
        yield database


def make_client(config: Config, handler) -> QuoteClient:
    return QuoteClient(config, transport=httpx.MockTransport(handler))


def chart_payload(price, previous) -> dict:
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "regularMarketPrice": price,
                        "previousClose": previous,
                        "currency": "INR",
                        "marketState": "REGULAR",
                    }
                }
            ]
        }
    }


def nav_payload(*navs: str) -> dict:
    return {
        "status": "SUCCESS",
        "meta": {"scheme_name": "Test Fund"},
        "data": [{"date": f"{17 - i:02d}-10-2025", "nav": nav} for i, nav in enumerate(navs)],
    }
