from __future__ import annotations

import contextlib
import json
import os
import tempfile
from collections.abc import Iterable, Sequence
from typing import Any

from .logging_bridge import activity as log_activity
from .logging_bridge import error as log_error
from .models import JobRecord


class StoreError(RuntimeError):
    """A snapshot could not be written; the previous file is left untouched."""


# ---- Public API -------------------------------------------------------------


class JobStore:
    """
    Whole-collection JSON snapshot of the job corpus.

    load() is best-effort: a missing or unreadable file yields an empty corpus.
    save() replaces the file atomically or raises StoreError.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> list[JobRecord]:
        raw = read_json_list(self.path, component="job_aggregator.store")
        jobs: list[JobRecord] = []
        skipped = 0
        for i, item in enumerate(raw):
            try:
                jobs.append(JobRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                skipped += 1
                log_error({
                    "component": "job_aggregator.store",
                    "op": "skip_record",
                    "path": self.path,
                    "index": i,
                    "error": repr(e),
                })
        if skipped:
            log_activity({
                "component": "job_aggregator.store",
                "op": "load",
                "path": self.path,
                "loaded": len(jobs),
                "skipped": skipped,
            })
        return jobs

    def save(self, jobs: Sequence[JobRecord]) -> None:
        write_json_atomic(self.path, [j.to_dict() for j in jobs], component="job_aggregator.store")


def read_json_list(path: str, *, component: str) -> list[Any]:
    """
    Read a JSON array from `path`.
    Missing, unreadable, non-JSON, or non-array content is logged and read as [].
    """
    if not os.path.exists(path):
        return []
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        log_error({"component": component, "op": "read", "path": path, "error": repr(e)})
        return []
    if not isinstance(data, list):
        log_error({
            "component": component,
            "op": "read",
            "path": path,
            "error": f"expected a JSON array, got {type(data).__name__}",
        })
        return []
    return data


def write_json_atomic(path: str, data: Iterable[Any] | Any, *, component: str) -> None:
    """
    Serialize `data` to a temp file beside `path`, fsync, then os.replace over `path`.
    Raises StoreError; on failure the previous file is unchanged.
    """
    tmp_path: str | None = None
    try:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        _ensure_dir(path)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(path)}.", suffix=".tmp", dir=os.path.dirname(os.path.abspath(path))
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    except (OSError, TypeError, ValueError) as e:
        log_error({"component": component, "op": "write", "path": path, "error": repr(e)})
        raise StoreError(f"Failed to write {path}: {e}") from e
    finally:
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                os.remove(tmp_path)


# ---- Internal utilities -----------------------------------------------------


def _ensure_dir(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)
