from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from . import engine, logging_bridge
from .config import Settings
from .http_client import HttpClient
from .models import JobRecord, RunSummary, SiteConfig
from .run_lock import RunLock
from .scraper import Fetch, SiteScraper
from .sites import SiteRegistry
from .store import JobStore


class RunInProgressError(RuntimeError):
    """An explicit trigger arrived while another run held the gate."""


class AggregatorController:
    """
    Owns the state of one aggregator instance: the site registry, the job store,
    and the gate that keeps pipeline runs from overlapping.

    Both trigger paths (scheduler and explicit request) go through trigger_run().
    The gate is a thread lock for this instance plus a file lock beside the job
    store, so controllers in other threads or processes on the same store are
    excluded too. Explicit requests are rejected while a run is active;
    scheduled runs wait.
    """

    def __init__(
        self,
        settings: Settings,
        fetch: Fetch | None = None,
        scraper_factory: Callable[[Fetch], SiteScraper] = SiteScraper,
    ):
        self.settings = settings
        self.registry = SiteRegistry(settings.sites_path, seed_defaults=settings.seed_default_sites)
        self.store = JobStore(settings.jobs_path)
        self._fetch = fetch
        self._scraper_factory = scraper_factory
        self._gate = threading.Lock()
        self._run_lock = RunLock.for_store(settings.jobs_path)

    # ------------- runs -------------
    @property
    def running(self) -> bool:
        return self._gate.locked()

    def trigger_run(self, *, wait: bool = False, trigger_type: str = "adhoc") -> RunSummary:
        """
        Execute one pipeline run under the gate.

        Raises:
            RunInProgressError: wait=False and another run is active.
            StoreError: the corpus could not be saved (previous store intact).
        """
        if not self._gate.acquire(blocking=wait):
            self._reject(trigger_type, holder="this controller")
        try:
            if not self._run_lock.acquire(blocking=wait):
                self._reject(trigger_type, holder="another controller")
            try:
                return self._run_locked(trigger_type)
            finally:
                self._run_lock.release()
        finally:
            self._gate.release()

    def _reject(self, trigger_type: str, *, holder: str) -> None:
        logging_bridge.activity({
            "component": "job_aggregator.controller",
            "op": "rejected",
            "trigger_type": trigger_type,
            "holder": holder,
            "lock_path": self._run_lock.path,
        })
        raise RunInProgressError("A scrape run is already in progress.")

    def _run_locked(self, trigger_type: str) -> RunSummary:
        sites = self.registry.list()
        existing = self.store.load()

        client: HttpClient | None = None
        fetch = self._fetch
        if fetch is None:
            client = HttpClient(
                timeout=self.settings.fetch_timeout,
                user_agent=self.settings.user_agent,
                pool_size=self.settings.max_threads,
            )
            fetch = client.get_text

        try:
            _, summary = engine.run_pipeline(
                sites,
                existing,
                self._scraper_factory(fetch),
                store=self.store,
                max_threads=self.settings.max_threads,
                skip_network=self.settings.skip_network,
            )
        except Exception as e:
            logging_bridge.error({
                "component": "job_aggregator.controller",
                "op": "run_failed",
                "trigger_type": trigger_type,
                "error": repr(e),
            })
            raise
        finally:
            if client is not None:
                client.close()

        logging_bridge.activity({
            "component": "job_aggregator.controller",
            "op": "run_complete",
            "trigger_type": trigger_type,
            **summary.to_dict(),
        })
        return summary

    # ------------- queries -------------
    def get_jobs(self) -> list[JobRecord]:
        return engine.sort_corpus(self.store.load())

    # ------------- site CRUD -------------
    def list_sites(self) -> list[SiteConfig]:
        return self.registry.list()

    def add_site(self, data: dict[str, Any]) -> SiteConfig:
        return self.registry.add(data)

    def update_site(self, index: Any, data: dict[str, Any]) -> SiteConfig:
        return self.registry.update(index, data)

    def delete_site(self, index: Any) -> SiteConfig:
        return self.registry.delete(index)
