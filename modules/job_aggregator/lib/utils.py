from __future__ import annotations

import os
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urljoin, urlsplit

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")

# encodeURIComponent leaves these unescaped in addition to [A-Za-z0-9_.-~]
_URI_COMPONENT_SAFE = "!*'()"


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(ts: datetime) -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp (with or without 'Z'); naive values are taken as UTC.
    Raises ValueError on garbage.
    """
    dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def make_job_id(source: str, title: str, company: str) -> str:
    """
    Stable identity for a posting: "{source}-{title}-{company}" with every
    non-alphanumeric character replaced by '-'.

    Replacement counts UTF-16 code units, so a character outside the BMP (emoji)
    becomes "--". Ids stored by earlier versions were built that way.
    """
    return _NON_ALNUM_RE.sub(_dashes, f"{source}-{title}-{company}")


def _dashes(m: re.Match[str]) -> str:
    return "--" if ord(m.group()) > 0xFFFF else "-"


def encode_keyword(keyword: str) -> str:
    return quote(keyword, safe=_URI_COMPONENT_SAFE)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def absolutize(link: str, base_url: str) -> str:
    """
    Resolve a possibly-relative link against the ORIGIN of base_url.
    Links that already carry an http(s) scheme are returned unchanged.
    """
    link = (link or "").strip()
    if not link:
        return ""
    if link.lower().startswith(("http://", "https://")):
        return link
    return urljoin(origin_of(base_url) + "/", link)


def getenv_str(name: str, default: str | None = None) -> str | None:
    """
    Typed wrapper for environment access.
    """
    val = os.getenv(name)
    return val if val is not None and val.strip() else default
