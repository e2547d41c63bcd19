from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .utils import getenv_str, truthy

DEFAULT_SITES_PATH = "/app/local/state/sites.json"
DEFAULT_JOBS_PATH = "/app/local/state/jobs.json"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for the job aggregator.

    State lives in two JSON files (sites and jobs). Paths come from kwargs first,
    then the SITES_PATH / JOBS_PATH environment variables, then the defaults under
    /app/local/state.
    """

    sites_path: str = DEFAULT_SITES_PATH
    jobs_path: str = DEFAULT_JOBS_PATH

    # Runtime behavior
    max_threads: int = 8
    fetch_timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    seed_default_sites: bool = True
    skip_network: bool = False

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            sites_path: str           # default $SITES_PATH or /app/local/state/sites.json
            jobs_path: str            # default $JOBS_PATH or /app/local/state/jobs.json
            max_threads: int = 8      # concurrent (site, keyword) fetches
            fetch_timeout: float = 10 # seconds per fetch
            user_agent: str           # browser-like UA by default
            seed_default_sites: bool = true
            skip_network: bool = false
        """
        kw = dict(kwargs or {})

        sites_path = str(kw.get("sites_path") or getenv_str("SITES_PATH", DEFAULT_SITES_PATH)).strip()
        jobs_path = str(kw.get("jobs_path") or getenv_str("JOBS_PATH", DEFAULT_JOBS_PATH)).strip()

        try:
            max_threads = int(kw.get("max_threads") if kw.get("max_threads") is not None else 8)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"'max_threads' must be an integer (got {kw.get('max_threads')!r}).") from e
        try:
            fetch_timeout = float(kw.get("fetch_timeout") if kw.get("fetch_timeout") is not None else 10.0)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"'fetch_timeout' must be a number (got {kw.get('fetch_timeout')!r}).") from e

        user_agent = str(kw.get("user_agent") or DEFAULT_USER_AGENT).strip()
        seed_default_sites = truthy(kw.get("seed_default_sites", True))
        skip_network = truthy(kw.get("skip_network"))

        settings = cls(
            sites_path=sites_path,
            jobs_path=jobs_path,
            max_threads=max_threads,
            fetch_timeout=fetch_timeout,
            user_agent=user_agent,
            seed_default_sites=seed_default_sites,
            skip_network=skip_network,
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _validate_settings(s: Settings) -> None:
    if not s.sites_path:
        raise ConfigError("'sites_path' cannot be empty.")
    if not s.jobs_path:
        raise ConfigError("'jobs_path' cannot be empty.")
    if s.sites_path == s.jobs_path:
        raise ConfigError("'sites_path' and 'jobs_path' must point to different files.")
    if s.max_threads <= 0:
        raise ConfigError("'max_threads' must be >= 1.")
    if s.fetch_timeout <= 0:
        raise ConfigError("'fetch_timeout' must be > 0 seconds.")
    if not s.user_agent:
        raise ConfigError("'user_agent' cannot be empty.")
