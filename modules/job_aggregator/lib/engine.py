"""
Aggregation pipeline: scrape every configured site, merge new postings into the
corpus by identity, order newest-first, and persist.

Features:
  - Parallel fetches per (site, keyword) unit on a bounded thread pool
  - Deterministic merge in registry order, independent of fetch completion order
  - First-seen-wins dedup on JobRecord.id (across runs and within a run)
  - Persistence is the only fatal step; nothing is written if it fails
  - Structured logging via `logging_bridge`
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from . import logging_bridge
from .models import JobRecord, RunSummary, SiteConfig, UnitResult
from .scraper import SiteScraper
from .store import JobStore


# =============================================================================
# MERGE / ORDER (pure)
# =============================================================================
def merge_new(corpus: Sequence[JobRecord], new_jobs: Sequence[JobRecord]) -> tuple[list[JobRecord], list[JobRecord]]:
    """
    Prepend the records of `new_jobs` whose id is not yet in `corpus`.

    Ids repeated inside `new_jobs` keep their first occurrence. Records already
    in the corpus are never updated (first-seen wins).

    Returns:
        (merged corpus, accepted records)
    """
    seen = {job.id for job in corpus}
    accepted: list[JobRecord] = []
    for job in new_jobs:
        if job.id in seen:
            continue
        seen.add(job.id)
        accepted.append(job)
    return accepted + list(corpus), accepted


def sort_corpus(jobs: Sequence[JobRecord]) -> list[JobRecord]:
    """Newest first; ties keep their merge order."""
    return sorted(jobs, key=lambda j: j.discovered_at, reverse=True)


# =============================================================================
# FAN-OUT
# =============================================================================
def scrape_units(
    sites: Sequence[SiteConfig],
    scraper: SiteScraper,
    *,
    max_threads: int = 8,
) -> list[list[UnitResult]]:
    """
    Run every (site, keyword) unit concurrently.

    Returns one list per site (same order as `sites`), each holding that
    site's UnitResults in keyword order.
    """
    units = [(si, ki, site, kw) for si, site in enumerate(sites) for ki, kw in enumerate(site.keywords)]
    slots: list[list[UnitResult | None]] = [[None] * len(site.keywords) for site in sites]
    if not units:
        return [[] for _ in sites]

    with ThreadPoolExecutor(max_workers=min(len(units), max_threads), thread_name_prefix="scrape") as pool:
        futures = {pool.submit(scraper.scrape_unit, site, kw): (si, ki, site, kw) for si, ki, site, kw in units}
        for fut in as_completed(futures):
            si, ki, site, kw = futures[fut]
            try:
                slots[si][ki] = fut.result()
            except Exception as e:
                # scrape_unit captures its own failures; this guards the executor itself
                logging_bridge.error({
                    "component": "job_aggregator.engine",
                    "op": "unit_crashed",
                    "site": site.name,
                    "keyword": kw,
                    "error": repr(e),
                })
                slots[si][ki] = UnitResult(site=site.name, keyword=kw, url="", error=repr(e))

    return [[r for r in per_site if r is not None] for per_site in slots]


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_pipeline(
    sites: Sequence[SiteConfig],
    existing: Sequence[JobRecord],
    scraper: SiteScraper,
    *,
    store: JobStore | None = None,
    max_threads: int = 8,
    skip_network: bool = False,
) -> tuple[list[JobRecord], RunSummary]:
    """
    Run one complete cycle of scraping, deduplication, ordering and persistence.

    Args:
        sites: registry order; later sites dedup against earlier ones.
        existing: the corpus as loaded from the store.
        scraper: SiteScraper bound to a fetch capability.
        store: if given, the sorted corpus is saved to it (StoreError propagates).
        skip_network: fetch nothing; re-sorts and re-saves the existing corpus.

    Returns:
        (sorted corpus, RunSummary)
    """
    start_ns = time.perf_counter_ns()

    runnable: list[SiteConfig] = []
    skipped: list[str] = []
    for site in sites:
        problems = site.problems()
        if problems:
            skipped.append(site.name or "(unnamed)")
            logging_bridge.error({
                "component": "job_aggregator.engine",
                "op": "skipped_site",
                "site": site.name,
                "problems": problems,
            })
        else:
            runnable.append(site)

    logging_bridge.activity({
        "component": "job_aggregator.engine",
        "op": "start",
        "sites": [s.name for s in runnable],
        "skipped_sites": skipped,
        "units": sum(len(s.keywords) for s in runnable),
        "existing": len(existing),
        "skip_network": skip_network,
    })

    if skip_network:
        per_site: list[list[UnitResult]] = [[] for _ in runnable]
    else:
        per_site = scrape_units(runnable, scraper, max_threads=max_threads)

    # -------------------------------------------------------------------------
    # MERGE in registry order
    # -------------------------------------------------------------------------
    corpus: list[JobRecord] = list(existing)
    new_by_site: dict[str, int] = {}
    found_by_site: dict[str, int] = {}
    failed_units: list[str] = []
    durations_us: dict[str, int] = {}

    for site, results in zip(runnable, per_site):
        site_jobs: list[JobRecord] = []
        for r in results:
            durations_us[f"{site.name}:{r.keyword}"] = r.duration_us
            if not r.ok:
                failed_units.append(f"{site.name}:{r.keyword}")
            site_jobs.extend(r.jobs)

        corpus, accepted = merge_new(corpus, site_jobs)
        found_by_site[site.name] = len(site_jobs)
        new_by_site[site.name] = len(accepted)

    corpus = sort_corpus(corpus)

    # -------------------------------------------------------------------------
    # PERSIST (the only fatal step)
    # -------------------------------------------------------------------------
    if store is not None:
        store.save(corpus)

    summary = RunSummary(
        job_count=len(corpus),
        new_count=sum(new_by_site.values()),
        new_by_site=new_by_site,
        failed_units=failed_units,
        skipped_sites=skipped,
        total_us=int((time.perf_counter_ns() - start_ns) // 1000),
    )

    logging_bridge.activity({
        "component": "job_aggregator.engine",
        "op": "summary",
        "found_by_site": found_by_site,
        "new_by_site": new_by_site,
        "failed_units": failed_units,
        "job_count": summary.job_count,
        "durations_us": durations_us,
        "total_us": summary.total_us,
    })

    return corpus, summary
