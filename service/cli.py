# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

scrape [--kwargs k=v ...]
    - Runs one scrape-merge-persist cycle now and prints the job count

jobs [--limit N] [--json]
    - Prints the stored corpus, newest first

sites list | add | update INDEX | delete INDEX
    - Site registry CRUD; add/update take the site as --json '{...}' or --file path

validate-config / schedule-preview
    - Loads/validates config; previews the next scheduled run times

Exit codes: 0 ok, 1 unexpected error, 2 invalid config/site, 3 run already in
progress, 4 site not found, 5 store write failed.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from types import SimpleNamespace
from typing import Any

from modules.job_aggregator import main as aggregator_main
from modules.job_aggregator.lib import (
    AggregatorController,
    ConfigError,
    RunInProgressError,
    Settings,
    SiteConfig,
    SiteNotFoundError,
    StoreError,
)
from service import config_schema as _config_schema
from service import logging_utils as L
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_BUSY = 3
EXIT_NOT_FOUND = 4
EXIT_STORE = 5


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    Values that look like JSON (true/false/null/number/object/array) are parsed.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected a positive integer (got {raw!r})") from e
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer (got {raw!r})")
    return value


def _print_table(rows: Iterable[tuple[str, ...]], headers: tuple[str, ...]) -> None:
    """Very simple column table printer."""
    rows = list(rows)
    widths = [max(len(headers[i]), *(len(r[i]) for r in rows)) if rows else len(headers[i]) for i in range(len(headers))]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _load_config(path: str | None) -> dict[str, Any]:
    cfg = _config_schema.load_config(path)
    _config_schema.validate(cfg)
    return cfg


def _controller_from_args(args: argparse.Namespace) -> AggregatorController:
    cfg = _load_config(args.config)
    return AggregatorController(Settings.from_env_and_kwargs(cfg["aggregator"]))


def _read_site_payload(args: argparse.Namespace) -> dict[str, Any]:
    if args.json:
        text = args.json
    elif args.file:
        with open(args.file, encoding="utf-8") as f:
            text = f.read()
    else:
        raise ConfigError("Provide the site as --json '{...}' or --file PATH.")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Site payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Site payload must be a JSON object.")
    return data


def _handle_errors(where: str, fn, args: argparse.Namespace) -> int:
    """Run a subcommand body, mapping each error kind to its exit code."""
    try:
        return fn(args)
    except KeyboardInterrupt:
        return 130
    except SiteNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID
    except RunInProgressError as e:
        print(f"BUSY: {e}", file=sys.stderr)
        return EXIT_BUSY
    except StoreError as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({"ts": _now_iso(), "where": where, "error": repr(e)})
        return EXIT_STORE
    except Exception as e:
        LOG.exception("%s failed: %s", where, e)
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({"ts": _now_iso(), "where": where, "error": repr(e)})
        return EXIT_ERROR


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    def _body(a: argparse.Namespace) -> int:
        _load_config(a.config)
        print("OK: configuration is valid.")
        return EXIT_OK

    return _handle_errors("cli.validate_config", _body, args)


def cmd_schedule_preview(args: argparse.Namespace) -> int:
    def _body(a: argparse.Namespace) -> int:
        cfg = _load_config(a.config)
        tz = _scheduler._resolve_timezone(cfg)
        trigger = _scheduler._build_trigger(cfg["schedule"], str(tz))
        times = _scheduler.preview_fire_times(trigger, tz, count=a.count)
        for t in times:
            print(t.isoformat())
        if not times:
            print("(no upcoming runs)")
        return EXIT_OK

    return _handle_errors("cli.schedule_preview", _body, args)


def cmd_scrape(args: argparse.Namespace) -> int:
    def _body(a: argparse.Namespace) -> int:
        start_time = time.monotonic()
        cfg = _load_config(a.config)
        kwargs = {**cfg["aggregator"], **_parse_kv_pairs(a.kwargs or [])}
        meta = aggregator_main.run(**kwargs)
        L.write_activity_log({
            "ts": _now_iso(),
            "event": "cli_scrape",
            "trigger_type": "adhoc",
            "kwargs": kwargs,
            "job_count": meta["job_count"],
            "new_count": meta["new_count"],
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        for unit in meta["failed_units"]:
            print(f"WARN: no results from {unit} (fetch failed)", file=sys.stderr)
        print(f"SUCCESS: {meta['message']}")
        print(json.dumps({"success": True, "jobCount": meta["job_count"]}))
        return EXIT_OK

    return _handle_errors("cli.scrape", _body, args)


def cmd_jobs(args: argparse.Namespace) -> int:
    def _body(a: argparse.Namespace) -> int:
        jobs = _controller_from_args(a).get_jobs()
        if a.limit is not None:
            jobs = jobs[: a.limit]
        if a.json:
            print(json.dumps([j.to_dict() for j in jobs], indent=2, ensure_ascii=False))
            return EXIT_OK
        if not jobs:
            print("No jobs stored yet.")
            return EXIT_OK
        _print_table(
            ((j.discovered_at.strftime("%Y-%m-%d %H:%M"), j.source, j.title, j.company, j.location) for j in jobs),
            headers=("DISCOVERED", "SOURCE", "TITLE", "COMPANY", "LOCATION"),
        )
        return EXIT_OK

    return _handle_errors("cli.jobs", _body, args)


def _site_row(i: int, s: SiteConfig) -> tuple[str, str, str, str]:
    return (str(i), s.name, s.base_url, ", ".join(s.keywords))


def cmd_sites(args: argparse.Namespace) -> int:
    def _body(a: argparse.Namespace) -> int:
        controller = _controller_from_args(a)
        if a.sites_cmd == "list":
            sites = controller.list_sites()
            if a.json:
                print(json.dumps([s.to_dict() for s in sites], indent=2, ensure_ascii=False))
            elif not sites:
                print("No sites configured.")
            else:
                _print_table((_site_row(i, s) for i, s in enumerate(sites)), headers=("#", "NAME", "URL", "KEYWORDS"))
            return EXIT_OK
        if a.sites_cmd == "add":
            site = controller.add_site(_read_site_payload(a))
            print(json.dumps(site.to_dict(), indent=2, ensure_ascii=False))
            return EXIT_OK
        if a.sites_cmd == "update":
            site = controller.update_site(a.index, _read_site_payload(a))
            print(json.dumps(site.to_dict(), indent=2, ensure_ascii=False))
            return EXIT_OK
        if a.sites_cmd == "delete":
            removed = controller.delete_site(a.index)
            print(f"Deleted site {removed.name!r}.")
            return EXIT_OK
        raise ConfigError(f"Unknown sites command {a.sites_cmd!r}")

    return _handle_errors(f"cli.sites.{args.sites_cmd}", _body, args)


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler loop until a termination signal is received.
    """
    stop_event = threading.Event()
    running = SimpleNamespace(sched=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running.sched)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        cfg = _load_config(args.config)
        controller = AggregatorController(Settings.from_env_and_kwargs(cfg["aggregator"]))
        running.sched = _scheduler.start(controller, cfg)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_start", "schedule": cfg["schedule"]})

        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return EXIT_OK

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return EXIT_ERROR


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for a scheduler-like object."""
    if handle is None:
        return
    try:
        handle.stop()
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job aggregator command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or built-in defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the scheduler loop (daily scrape by default).")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("scrape", help="Scrape all sites now and merge into the job store.")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Override aggregator settings (JSON values supported), e.g. max_threads=4.",
    )
    sp.set_defaults(func=cmd_scrape)

    sp = sub.add_parser("jobs", help="Print stored jobs, newest first.")
    sp.add_argument("--limit", type=_positive_int, default=None, help="Show at most N jobs.")
    sp.add_argument("--json", action="store_true", help="Print JSON instead of a table.")
    sp.set_defaults(func=cmd_jobs)

    sp = sub.add_parser("sites", help="List, add, update or delete configured sites.")
    sites_sub = sp.add_subparsers(dest="sites_cmd", required=True)

    ssp = sites_sub.add_parser("list", help="List configured sites.")
    ssp.add_argument("--json", action="store_true", help="Print JSON instead of a table.")

    for name, needs_index in (("add", False), ("update", True), ("delete", True)):
        ssp = sites_sub.add_parser(name, help=f"{name.capitalize()} a site.")
        if needs_index:
            ssp.add_argument("index", type=int, help="Position of the site in `sites list`.")
        if name != "delete":
            src = ssp.add_mutually_exclusive_group()
            src.add_argument("--json", help="Site definition as a JSON object.")
            src.add_argument("--file", help="Path to a JSON file holding the site definition.")
    sp.set_defaults(func=cmd_sites)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    sp = sub.add_parser("schedule-preview", help="Print the next scheduled run times.")
    sp.add_argument("--count", type=_positive_int, default=5)
    sp.set_defaults(func=cmd_schedule_preview)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
