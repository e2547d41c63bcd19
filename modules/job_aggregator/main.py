from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.controller import AggregatorController
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_aggregator' module: one scrape-merge-persist run.

    Accepts kwargs (from CLI/scheduler), including:
      sites_path: str = "/app/local/state/sites.json"
      jobs_path: str = "/app/local/state/jobs.json"
      max_threads: int = 8
      fetch_timeout: float = 10.0
      skip_network: bool = False

    Returns:
      meta dict with 'message', 'job_count', 'new_count' and per-site counts.
    Raises:
      ConfigError, RunInProgressError, StoreError
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_aggregator.main",
        "op": "start",
        "sites_path": settings.sites_path,
        "jobs_path": settings.jobs_path,
        "flags": {"skip_network": settings.skip_network},
    })

    controller = AggregatorController(settings)
    summary = controller.trigger_run(trigger_type="adhoc")

    return {
        "message": f"{summary.new_count} new job(s); {summary.job_count} total",
        **summary.to_dict(),
    }
