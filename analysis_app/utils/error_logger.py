"""Error log for failed spec generations.

Each failure is stored as one JSON record (error kind, message, context,
traceback) under the log directory, plus an ``_index.json`` that groups
repeats of the same failure by fingerprint.

Usage:
    from analysis_app.utils.error_logger import log_generation_error, get_error_summary

    try:
        generate_analysis_spec(...)
    except AnalysisSpecError as exc:
        log_generation_error(exc, context={'qsf_path': path})
        raise

The log directory is ``ANALYSIS_APP_ERROR_LOG_DIR`` or ``./_error_logs``.
Logging a failure never raises.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import AnalysisSpecError

logger = logging.getLogger(__name__)

ERROR_LOG_DIR_ENV = "ANALYSIS_APP_ERROR_LOG_DIR"
INDEX_FILENAME = "_index.json"

# Max distinct failures kept in the index
_MAX_ERRORS = 200

# Raw document contents are never written to the log
_SENSITIVE_KEYS = frozenset({"qsf_bytes", "prereg_bytes", "qsf_raw", "prereg_text"})

PathLike = Union[str, Path]


def default_log_dir() -> Path:
    return Path(os.environ.get(ERROR_LOG_DIR_ENV) or Path.cwd() / "_error_logs")


def _resolve_dir(log_dir: Optional[PathLike]) -> Path:
    return Path(log_dir) if log_dir is not None else default_log_dir()


def _safe_serialize(obj: Any, depth: int = 0) -> Any:
    """JSON-safe copy of ``obj`` with long strings and collections truncated."""
    if depth > 5:
        return "<max_depth>"
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return obj[:500]
    if isinstance(obj, bytes):
        return f"<bytes len={len(obj)}>"
    if isinstance(obj, (list, tuple)):
        items = [_safe_serialize(v, depth + 1) for v in obj[:20]]
        if len(obj) > 20:
            items.append(f"... +{len(obj) - 20} more")
        return items
    if isinstance(obj, dict):
        result = {}
        for k, v in list(obj.items())[:30]:
            key = str(k)
            result[key] = "<redacted>" if key in _SENSITIVE_KEYS else _safe_serialize(v, depth + 1)
        if len(obj) > 30:
            result["__truncated__"] = f"+{len(obj) - 30} keys"
        return result
    return str(obj)[:200]


def _error_fingerprint(error_type: str, error_message: str, tb_text: str) -> str:
    """Stable id from the error type, message prefix and innermost frame."""
    frames = [l.strip() for l in tb_text.strip().splitlines() if l.strip().startswith("File ")]
    last_frame = frames[-1] if frames else ""
    raw = f"{error_type}|{error_message[:100]}|{last_frame}"
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def _load_index(log_dir: Path) -> Dict[str, Any]:
    index_file = log_dir / INDEX_FILENAME
    if index_file.exists():
        try:
            return json.loads(index_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Error index %s unreadable (%s); starting a new one", index_file, e)
    return {"errors": [], "total_logged": 0, "last_updated": None}


def _save_index(log_dir: Path, index: Dict[str, Any]) -> None:
    index["last_updated"] = datetime.now().isoformat()
    (log_dir / INDEX_FILENAME).write_text(json.dumps(index, indent=2), encoding="utf-8")


def log_generation_error(
    exception: BaseException,
    *,
    context: Optional[Dict[str, Any]] = None,
    phase: str = "generation",
    log_dir: Optional[PathLike] = None,
    traceback_text: str = "",
) -> Optional[str]:
    """Record a failure. Returns its fingerprint, or None if it could not be written."""
    directory = _resolve_dir(log_dir)
    try:
        error_type = type(exception).__name__
        error_message = str(exception)
        if not traceback_text:
            traceback_text = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )
        fingerprint = _error_fingerprint(error_type, error_message, traceback_text)
        timestamp = datetime.now().isoformat()

        record: Dict[str, Any] = {
            "id": fingerprint,
            "timestamp": timestamp,
            "unix_time": time.time(),
            "error_type": error_type,
            "error_kind": exception.kind.value if isinstance(exception, AnalysisSpecError) else None,
            "error_message": error_message[:1000],
            "traceback": traceback_text[:5000],
            "phase": phase,
            "status": "pending",
        }
        if isinstance(exception, AnalysisSpecError) and exception.context:
            record["error_context"] = _safe_serialize(exception.context)
        if context:
            record["context"] = _safe_serialize(context)

        directory.mkdir(parents=True, exist_ok=True)
        error_file = directory / f"error_{fingerprint}_{int(time.time())}.json"
        error_file.write_text(json.dumps(record, indent=2, default=str), encoding="utf-8")

        index = _load_index(directory)
        existing = next((e for e in index["errors"] if e.get("id") == fingerprint), None)
        if existing is not None:
            existing["count"] = existing.get("count", 1) + 1
            existing["last_seen"] = timestamp
        else:
            index["errors"].append({
                "id": fingerprint,
                "error_type": error_type,
                "error_kind": record["error_kind"],
                "error_message": error_message[:200],
                "first_seen": timestamp,
                "last_seen": timestamp,
                "count": 1,
                "status": "pending",
                "phase": phase,
            })
        index["total_logged"] = index.get("total_logged", 0) + 1

        if len(index["errors"]) > _MAX_ERRORS:
            index["errors"].sort(
                key=lambda e: (e.get("status") == "pending", e.get("count", 0), e.get("last_seen", "")),
                reverse=True,
            )
            index["errors"] = index["errors"][:_MAX_ERRORS]

        _save_index(directory, index)
        logger.info("Logged %s failure %s to %s", phase, fingerprint, directory)
        return fingerprint
    except (OSError, TypeError, ValueError) as e:
        logger.warning("Could not write error log to %s: %s", directory, e)
        return None


def get_pending_errors(log_dir: Optional[PathLike] = None) -> List[Dict[str, Any]]:
    """Pending failures, most recent first."""
    index = _load_index(_resolve_dir(log_dir))
    pending = [e for e in index.get("errors", []) if e.get("status") == "pending"]
    pending.sort(key=lambda e: e.get("last_seen", ""), reverse=True)
    return pending


def get_error_summary(log_dir: Optional[PathLike] = None) -> Dict[str, Any]:
    index = _load_index(_resolve_dir(log_dir))
    errors = index.get("errors", [])
    pending = [e for e in errors if e.get("status") == "pending"]

    by_kind: Dict[str, int] = {}
    for e in pending:
        kind = e.get("error_kind") or "unknown"
        by_kind[kind] = by_kind.get(kind, 0) + e.get("count", 1)

    return {
        "total_logged": index.get("total_logged", 0),
        "unique_errors": len(errors),
        "pending_count": len(pending),
        "resolved_count": len([e for e in errors if e.get("status") == "resolved"]),
        "errors_by_kind": by_kind,
        "top_errors": sorted(pending, key=lambda e: e.get("count", 0), reverse=True)[:10],
        "last_updated": index.get("last_updated"),
    }


def get_error_detail(error_id: str, log_dir: Optional[PathLike] = None) -> Optional[Dict[str, Any]]:
    """Most recent full record for a fingerprint."""
    files = sorted(_resolve_dir(log_dir).glob(f"error_{error_id}_*.json"), reverse=True)
    if not files:
        return None
    return json.loads(files[0].read_text(encoding="utf-8"))


def mark_error_resolved(error_id: str, log_dir: Optional[PathLike] = None) -> bool:
    """Mark a fingerprint resolved in the index. False when it is unknown."""
    directory = _resolve_dir(log_dir)
    index = _load_index(directory)
    entry = next((e for e in index.get("errors", []) if e.get("id") == error_id), None)
    if entry is None:
        return False
    entry["status"] = "resolved"
    _save_index(directory, index)
    return True
