"""
Site scraper: one fetch + extract per (site, keyword) unit.

Every unit is isolated. A transport or parse failure is logged and recorded on
the UnitResult; it never raises into the caller and never affects other units.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime

from . import logging_bridge
from .extractor import extract, parse
from .models import JobRecord, SiteConfig, UnitResult
from .utils import encode_keyword, make_job_id, utc_now

# fetch(url) -> html; raises on failure
Fetch = Callable[[str], str]


def build_search_url(site: SiteConfig, keyword: str) -> str:
    return f"{site.base_url}{encode_keyword(keyword)}"


class SiteScraper:
    """
    Drives the extractor over a site's keywords.

    Args:
        fetch: capability returning page HTML for a URL (HttpClient in production).
        clock: returns the discovery timestamp stamped on records (tests inject fixed times).
    """

    def __init__(self, fetch: Fetch, clock: Callable[[], datetime] = utc_now):
        self._fetch = fetch
        self._clock = clock

    def scrape_unit(self, site: SiteConfig, keyword: str) -> UnitResult:
        url = build_search_url(site, keyword)
        t0 = time.perf_counter_ns()
        result = UnitResult(site=site.name, keyword=keyword, url=url)
        try:
            html = self._fetch(url)
            raw_jobs = extract(parse(html), site.selectors, site.base_url)
        except Exception as e:
            result.error = repr(e)
            logging_bridge.error({
                "component": "job_aggregator.scraper",
                "op": "unit_failed",
                "site": site.name,
                "keyword": keyword,
                "url": url,
                "error": repr(e),
            })
        else:
            discovered_at = self._clock()
            result.jobs = [
                JobRecord(
                    id=make_job_id(site.name, raw.title, raw.company),
                    title=raw.title,
                    company=raw.company,
                    location=raw.location,
                    link=raw.link,
                    source=site.name,
                    keyword=keyword,
                    discovered_at=discovered_at,
                )
                for raw in raw_jobs
            ]
        result.duration_us = int((time.perf_counter_ns() - t0) // 1000)
        return result

    def scrape_site(self, site: SiteConfig) -> list[JobRecord]:
        """
        All records for one site, keyword order then page order.
        No identity filtering happens here.
        """
        jobs: list[JobRecord] = []
        for keyword in site.keywords:
            jobs.extend(self.scrape_unit(site, keyword).jobs)
        return jobs
