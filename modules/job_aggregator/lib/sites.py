from __future__ import annotations

import os
from typing import Any

from .config import ConfigError
from .logging_bridge import activity as log_activity
from .models import SiteConfig, SiteSelectors
from .store import read_json_list, write_json_atomic

# Seeded into a fresh sites file so a new install has something to scrape.
DEFAULT_SITES: tuple[SiteConfig, ...] = (
    SiteConfig(
        name="Indeed",
        base_url="https://www.indeed.com/jobs?q=",
        keywords=("music", "audio", "sound designer", "sound design"),
        selectors=SiteSelectors(
            container=".job_seen_beacon",
            title=".jobTitle",
            company=".companyName",
            location=".companyLocation",
            link=".jcs-JobTitle",
        ),
    ),
    SiteConfig(
        name="LinkedIn",
        base_url="https://www.linkedin.com/jobs/search/?keywords=",
        keywords=("music", "audio", "sound designer", "sound design"),
        selectors=SiteSelectors(
            container=".job-search-card",
            title=".base-search-card__title",
            company=".base-search-card__subtitle",
            location=".job-search-card__location",
            link=".base-card__full-link",
        ),
    ),
)


class SiteValidationError(ConfigError):
    """A site definition is missing required fields or clashes with another site."""


class SiteNotFoundError(LookupError):
    """An index-based update/delete referred to a site that does not exist."""


class SiteRegistry:
    """
    Ordered list of configured sites, persisted as one JSON array.

    Every mutation re-reads the file, validates, and rewrites the whole list.
    Entries already on disk are loaded leniently; the pipeline skips the ones
    that are not runnable.
    """

    def __init__(self, path: str, *, seed_defaults: bool = False):
        self.path = path
        self.seed_defaults = seed_defaults

    # ------------- queries -------------
    def list(self) -> list[SiteConfig]:
        if self.seed_defaults and not os.path.exists(self.path):
            self._write(list(DEFAULT_SITES))
            log_activity({
                "component": "job_aggregator.sites",
                "op": "seeded",
                "path": self.path,
                "sites": [s.name for s in DEFAULT_SITES],
            })
            return list(DEFAULT_SITES)
        raw = read_json_list(self.path, component="job_aggregator.sites")
        return [SiteConfig.from_dict(item) for item in raw]

    def get(self, index: Any) -> SiteConfig:
        sites = self.list()
        return sites[self._check_index(index, sites)]

    # ------------- mutations -------------
    def add(self, data: dict[str, Any] | SiteConfig) -> SiteConfig:
        sites = self.list()
        site = validate_site(data, existing=sites)
        sites.append(site)
        self._write(sites)
        self._log("add", index=len(sites) - 1, site=site)
        return site

    def update(self, index: Any, data: dict[str, Any] | SiteConfig) -> SiteConfig:
        sites = self.list()
        i = self._check_index(index, sites)
        site = validate_site(data, existing=[s for j, s in enumerate(sites) if j != i])
        sites[i] = site
        self._write(sites)
        self._log("update", index=i, site=site)
        return site

    def delete(self, index: Any) -> SiteConfig:
        sites = self.list()
        i = self._check_index(index, sites)
        removed = sites.pop(i)
        self._write(sites)
        self._log("delete", index=i, site=removed)
        return removed

    # ------------- internals -------------
    def _check_index(self, index: Any, sites: list[SiteConfig]) -> int:
        try:
            i = int(index)
        except (TypeError, ValueError) as e:
            raise SiteNotFoundError(f"Site not found: index {index!r} is not an integer.") from e
        if isinstance(index, bool) or i < 0 or i >= len(sites):
            raise SiteNotFoundError(f"Site not found: index {index!r} (have {len(sites)} site(s)).")
        return i

    def _write(self, sites: list[SiteConfig]) -> None:
        write_json_atomic(self.path, [s.to_dict() for s in sites], component="job_aggregator.sites")

    def _log(self, op: str, *, index: int, site: SiteConfig) -> None:
        log_activity({
            "component": "job_aggregator.sites",
            "op": op,
            "index": index,
            "site": site.name,
            "keywords": list(site.keywords),
        })


def validate_site(data: dict[str, Any] | SiteConfig, *, existing: list[SiteConfig] | None = None) -> SiteConfig:
    """
    Build a SiteConfig and enforce the required-fields invariant (non-empty name,
    http(s) base URL, at least one keyword, all five selectors) plus name uniqueness.
    Raises SiteValidationError listing every problem found.
    """
    if isinstance(data, SiteConfig):
        site = data
    elif isinstance(data, dict):
        site = SiteConfig.from_dict(data)
    else:
        raise SiteValidationError(f"Site must be an object, got {type(data).__name__}.")

    problems = site.problems()
    if site.name and any(s.name.lower() == site.name.lower() for s in existing or []):
        problems.append(f"a site named {site.name!r} already exists")
    if problems:
        raise SiteValidationError("Invalid site: " + "; ".join(problems) + ".")
    return site
