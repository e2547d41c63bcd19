from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .utils import parse_iso, to_iso

SELECTOR_FIELDS = ("container", "title", "company", "location", "link")

# Older sites files used these keys; accepted on load only.
_LEGACY_SELECTOR_KEYS = {"jobContainer": "container"}


@dataclass(frozen=True)
class SiteSelectors:
    """CSS selectors used to pull postings out of one site's search results page."""

    container: str = ""
    title: str = ""
    company: str = ""
    location: str = ""
    link: str = ""

    def missing(self) -> list[str]:
        return [name for name in SELECTOR_FIELDS if not str(getattr(self, name) or "").strip()]

    def to_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in SELECTOR_FIELDS}

    @classmethod
    def from_dict(cls, data: Any) -> SiteSelectors:
        if not isinstance(data, dict):
            return cls()
        values: dict[str, str] = {}
        for key, value in data.items():
            name = _LEGACY_SELECTOR_KEYS.get(key, key)
            if name in SELECTOR_FIELDS and value is not None:
                values[name] = str(value).strip()
        return cls(**values)


@dataclass(frozen=True)
class SiteConfig:
    """
    One listing site: where to search, which terms to search for, and how to read the results.

    Built leniently from stored JSON; `problems()` reports what keeps it from being scraped.
    """

    name: str
    base_url: str
    keywords: tuple[str, ...] = ()
    selectors: SiteSelectors = field(default_factory=SiteSelectors)

    def problems(self) -> list[str]:
        out: list[str] = []
        if not self.name.strip():
            out.append("'name' is required")
        if not self.base_url.strip():
            out.append("'base_url' is required")
        elif not self.base_url.lower().startswith(("http://", "https://")):
            out.append("'base_url' must be an http(s) URL")
        if not self.keywords:
            out.append("'keywords' must contain at least one search term")
        elif any(not k.strip() for k in self.keywords):
            out.append("'keywords' must not contain empty search terms")
        for name in self.selectors.missing():
            out.append(f"'selectors.{name}' is required")
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "keywords": list(self.keywords),
            "selectors": self.selectors.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> SiteConfig:
        """
        Accepts the current layout ({name, base_url, keywords, selectors{container,...}})
        and the legacy one ({name, url, searchTerms, selectors{jobContainer,...}}).
        """
        if not isinstance(data, dict):
            return cls(name="", base_url="")
        base_url = data.get("base_url") or data.get("baseUrl") or data.get("url") or ""
        raw_keywords = data.get("keywords")
        if raw_keywords is None:
            raw_keywords = data.get("searchTerms")
        if isinstance(raw_keywords, str):
            raw_keywords = [raw_keywords]
        if not isinstance(raw_keywords, (list, tuple)):
            raw_keywords = []
        return cls(
            name=str(data.get("name") or "").strip(),
            base_url=str(base_url).strip(),
            keywords=tuple(str(k).strip() for k in raw_keywords if k is not None),
            selectors=SiteSelectors.from_dict(data.get("selectors")),
        )


@dataclass(frozen=True)
class RawJob:
    """What the extractor reads from one result container (pre-identity)."""

    title: str
    company: str
    location: str
    link: str


@dataclass(frozen=True)
class JobRecord:
    """
    A single posting in the corpus.
    Identity is `id` only, derived from (source, title, company).
    """

    id: str
    title: str
    company: str
    location: str
    link: str
    source: str
    keyword: str
    discovered_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "link": self.link,
            "source": self.source,
            "keyword": self.keyword,
            "discovered_at": to_iso(self.discovered_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobRecord:
        """Raises ValueError/KeyError/TypeError on malformed input."""
        if not isinstance(data, dict):
            raise TypeError(f"job record must be an object, got {type(data).__name__}")
        job_id = str(data["id"]).strip()
        title = str(data["title"]).strip()
        if not job_id or not title:
            raise ValueError("job record requires non-empty 'id' and 'title'")
        stamp = data.get("discovered_at") or data.get("date")
        if not stamp:
            raise ValueError(f"job record {job_id!r} has no discovery timestamp")
        return cls(
            id=job_id,
            title=title,
            company=str(data.get("company") or ""),
            location=str(data.get("location") or ""),
            link=str(data.get("link") or ""),
            source=str(data.get("source") or ""),
            keyword=str(data.get("keyword") or ""),
            discovered_at=parse_iso(stamp),
        )


@dataclass
class UnitResult:
    """
    Outcome of one (site, keyword) fetch+extract attempt.
    - jobs: stamped records (NOT filtered against the corpus).
    - error: set when the unit failed; jobs is then empty.
    """

    site: str
    keyword: str
    url: str
    jobs: list[JobRecord] = field(default_factory=list)
    error: str | None = None
    duration_us: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """What one pipeline run produced; returned to whoever triggered it."""

    job_count: int
    new_count: int
    new_by_site: dict[str, int] = field(default_factory=dict)
    failed_units: list[str] = field(default_factory=list)
    skipped_sites: list[str] = field(default_factory=list)
    total_us: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_count": self.job_count,
            "new_count": self.new_count,
            "new_by_site": dict(self.new_by_site),
            "failed_units": list(self.failed_units),
            "skipped_sites": list(self.skipped_sites),
            "total_us": self.total_us,
        }
