from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, Optional

import orjson

from .hashing import chain_next
from .schemas import AuditEvent
from .settings import settings
from .storage import LocalStore


class AuditTrail:
    """Hash-chained audit log, one chain per subject (an application id or draft key).

    Events go to the store's `audit` table and to `<audit_dir>/<subject>.jsonl`.
    """

    def __init__(self, store: LocalStore, log_dir: Optional[Path] = None) -> None:
        self.store = store
        self._log_dir = log_dir
        self._last_hash_by_subject: Dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return bool(settings.audit.get("enabled", True))

    def _resolve_prev_hash(self, subject_id: str) -> str:
        if subject_id in self._last_hash_by_subject:
            return self._last_hash_by_subject[subject_id]
        # Try to recover from DB
        last = self.store.get_last_audit_hash(subject_id)
        return last or ""

    def log_path_for(self, subject_id: str) -> Path:
        base = self._log_dir or settings.audit_dir()
        base.mkdir(parents=True, exist_ok=True)
        safe = subject_id.replace("/", "_").replace(":", "_")
        return base / f"{safe}.jsonl"

    def log_event(
        self,
        subject_id: str,
        step: str,
        status: str = "ok",
        details: Optional[Dict[str, Any]] = None,
        input_digest: Optional[str] = None,
        output_digest: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        if not self.enabled:
            return None
        ts_iso = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        ts_ns = time.perf_counter_ns()

        prev_hash = self._resolve_prev_hash(subject_id)

        # Build event without event_hash first
        event_dict = {
            "subject_id": subject_id,
            "step": step,
            "status": status,
            "ts_iso": ts_iso,
            "ts_ns": ts_ns,
            "input_digest": input_digest,
            "output_digest": output_digest,
            "details": details or {},
            "prev_event_hash": prev_hash,
        }
        event_hash = chain_next(prev_hash, event_dict)
        event_full = AuditEvent(**{**event_dict, "event_hash": event_hash})

        line = orjson.dumps(event_full.model_dump(), option=orjson.OPT_SORT_KEYS)
        with open(self.log_path_for(subject_id), "ab") as f:
            f.write(line + b"\n")

        self.store.append_audit(event_full)
        self._last_hash_by_subject[subject_id] = event_hash
        return event_full


def verify_chain(audit_path: Path) -> Dict[str, Any]:
    """Re-walk a jsonl audit log and report the first broken link, if any."""
    prev = ""
    count = 0
    break_index = -1
    for idx, line in enumerate(audit_path.read_text(encoding="utf-8").splitlines()):
        if not line.strip():
            continue
        ev = orjson.loads(line)
        if ev.get("prev_event_hash", "") != prev:
            break_index = idx
            break
        payload = {k: ev[k] for k in ev.keys() if k != "event_hash"}
        if chain_next(ev.get("prev_event_hash", ""), payload) != ev.get("event_hash"):
            break_index = idx
            break
        prev = ev.get("event_hash")
        count += 1
    return {
        "events": count,
        "valid": break_index == -1,
        "break_index": None if break_index == -1 else break_index,
    }
