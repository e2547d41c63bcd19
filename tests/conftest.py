# tests/conftest.py
import os
import tempfile
import threading

import pytest
from freezegun import freeze_time

from modules.job_aggregator.lib.config import Settings
from modules.job_aggregator.lib.http_client import FetchError
from modules.job_aggregator.lib.models import SiteConfig, SiteSelectors


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="ja-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Never touch the container's real state or config
    for name in ("CONFIG_PATH", "SITES_PATH", "JOBS_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TZ", "UTC")
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Aggregator fixtures
# ---------------------------------------------------------------------
SELECTORS = SiteSelectors(
    container=".job",
    title=".title",
    company=".company",
    location=".location",
    link="a.apply",
)


@pytest.fixture
def make_site():
    """Build a runnable SiteConfig; override any field by keyword."""

    def _make(name="Acme", base_url="https://acme.test/search?q=", keywords=("sound designer",), selectors=SELECTORS):
        return SiteConfig(name=name, base_url=base_url, keywords=tuple(keywords), selectors=selectors)

    return _make


def listing_html(*postings) -> str:
    """
    Render a fake search-results page. Each posting is a dict with optional
    title/company/location/href keys; missing keys leave the element out.
    """
    cards = []
    for p in postings:
        parts = []
        if "title" in p:
            parts.append(f'<h2 class="title">{p["title"]}</h2>')
        if "company" in p:
            parts.append(f'<span class="company">{p["company"]}</span>')
        if "location" in p:
            parts.append(f'<span class="location">{p["location"]}</span>')
        if "href" in p:
            parts.append(f'<a class="apply" href="{p["href"]}">Apply</a>')
        cards.append(f'<div class="job">{"".join(parts)}</div>')
    return f"<html><body><div id='results'>{''.join(cards)}</div></body></html>"


@pytest.fixture
def html():
    return listing_html


class FakeFetch:
    """
    Stand-in for HttpClient.get_text: serves pages from a url -> html dict.
    Unknown URLs and URLs listed in `failing` raise FetchError.
    """

    def __init__(self, pages=None, failing=()):
        self.pages = dict(pages or {})
        self.failing = set(failing)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, url):
        with self._lock:
            self.calls.append(url)
        if url in self.failing:
            raise FetchError(url, "HTTP 503", status=503)
        if url not in self.pages:
            raise FetchError(url, "HTTP 404", status=404)
        return self.pages[url]


@pytest.fixture
def fake_fetch():
    return FakeFetch()


@pytest.fixture
def settings(tmp_path):
    """Fresh Settings per test: state files under tmp_path, no seeded sites."""
    return Settings.from_env_and_kwargs({
        "sites_path": str(tmp_path / "sites.json"),
        "jobs_path": str(tmp_path / "jobs.json"),
        "max_threads": 4,
        "seed_default_sites": False,
    })
