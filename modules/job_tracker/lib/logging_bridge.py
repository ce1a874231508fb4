from __future__ import annotations

import copy
import logging
from typing import Any

from service import logging_utils as _svc_logging

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
    "cookie",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact obvious secret-like fields at top level.
    service.logging_utils does the deep pass when the record is written.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record through service.logging_utils.
    Falls back to stdlib logging as structured info if the write fails.
    """
    payload = _redact_record(record)
    try:
        _svc_logging.write_activity_log(payload)
        return
    except Exception:
        logging.getLogger("job_tracker.activity").debug("activity log write failed", exc_info=True)
    logging.getLogger("job_tracker.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record through service.logging_utils.
    Falls back to stdlib logging as structured error if the write fails.
    """
    payload = _redact_record(record)
    try:
        _svc_logging.write_error_log(payload)
        return
    except Exception:
        logging.getLogger("job_tracker.error").debug("error log write failed", exc_info=True)
    logging.getLogger("job_tracker.error").error(payload)
