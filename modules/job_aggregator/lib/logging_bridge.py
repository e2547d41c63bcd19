from __future__ import annotations

import logging
from typing import Any

from service import logging_utils

_activity_log = logging.getLogger("job_aggregator.activity")
_error_log = logging.getLogger("job_aggregator.error")


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record to the JSONL activity log and mirror a one-line
    summary to stdlib logging. If the JSONL sink fails the full record goes to
    stdlib logging instead.
    """
    try:
        logging_utils.write_activity_log(record)
    except Exception:
        _activity_log.info("%s", logging_utils.redact(record))
        return
    _activity_log.debug("%s.%s", record.get("component", "?"), record.get("op", "?"))


def error(record: dict[str, Any]) -> None:
    """
    Write an error record to the JSONL error log; always also emitted as a
    stdlib WARNING so operators see unit failures on the console.
    """
    payload = logging_utils.redact(record)
    try:
        logging_utils.write_error_log(record)
    except Exception:
        _error_log.error("%s", payload)
        return
    _error_log.warning("%s", payload)
