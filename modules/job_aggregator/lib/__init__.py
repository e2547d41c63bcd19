# modules/job_aggregator/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .controller import AggregatorController, RunInProgressError
from .engine import run_pipeline
from .models import JobRecord, RunSummary, SiteConfig, SiteSelectors
from .sites import SiteNotFoundError, SiteValidationError
from .store import StoreError

__all__ = [
    "AggregatorController",
    "ConfigError",
    "JobRecord",
    "RunInProgressError",
    "RunSummary",
    "Settings",
    "SiteConfig",
    "SiteNotFoundError",
    "SiteSelectors",
    "SiteValidationError",
    "StoreError",
    "run_pipeline",
]
