from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .broadcast import BroadcastChannel
from .errors import InvalidTransition
from .events import EventBus, EventType, ApplicationReviewed
from .form_state import utc_now_iso
from .remote import RemoteStore
from .schemas import STATUS_RANK, SubmissionRecord
from .settings import settings
from .storage import LocalStore


logger = logging.getLogger(__name__)

# Reviewer side channel: forward moves only
_ALLOWED: Dict[str, Tuple[str, ...]] = {
    "submitted": ("under_review", "accepted", "rejected"),
    "under_review": ("accepted", "rejected"),
    "accepted": (),
    "rejected": (),
}

_STATUS_EVENTS = {
    "under_review": EventType.APPLICATION_UNDER_REVIEW,
    "accepted": EventType.APPLICATION_APPROVED,
    "rejected": EventType.APPLICATION_REJECTED,
}


def minimal_projection(record: SubmissionRecord) -> SubmissionRecord:
    """Identifying fields only; what is kept when the full record does not fit."""
    info = record.data.get("personalInfo") or {}
    meta = record.data.get("metadata") or {}
    data = {
        "personalInfo": {
            "firstName": info.get("firstName", ""),
            "lastName": info.get("lastName", ""),
            "email": info.get("email", ""),
        },
        "metadata": {
            "status": record.status,
            "applicationId": record.application_id,
            "submittedAt": record.submitted_at,
            "totalSteps": meta.get("totalSteps"),
        },
    }
    return record.model_copy(update={"data": data, "minimal": True})


def from_remote_row(row: Dict[str, Any]) -> SubmissionRecord:
    submitted_at = row.get("submitted_at") or ""
    return SubmissionRecord(
        application_id=str(row["application_id"]),
        applicant_id=str(row.get("user_id") or "unknown"),
        submitted_at=submitted_at,
        updated_at=row.get("updated_at") or submitted_at,
        status=row.get("status") or "submitted",
        data=row.get("data") or {},
        reviewer_note=row.get("reviewer_note"),
    )


class SubmissionRepository:
    """Submitted applications on this device, cached, with an explicit lifecycle.

    `init()` loads the local collection, `refresh()` folds in newer remote rows,
    `dispose()` drops the cache. Content fields of a stored submission are never
    overwritten; only status moves, and only forward.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteStore] = None,
        bus: Optional[EventBus] = None,
        channel: Optional[BroadcastChannel] = None,
        prefix: Optional[str] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.store = store
        self.remote = remote
        self.bus = bus
        self.channel = channel
        self.prefix = prefix or settings.storage.get("submissions_prefix", "submittedApplications/")
        self.clock = clock or utc_now_iso
        self._cache: Optional[Dict[str, SubmissionRecord]] = None
        # The remote poller merges on its own thread
        self.lock = threading.RLock()

    @property
    def collection_key(self) -> str:
        return self.prefix.rstrip("/")

    def key_for(self, application_id: str) -> str:
        return f"{self.prefix}{application_id}"

    # lifecycle

    def init(self) -> "SubmissionRepository":
        cache: Dict[str, SubmissionRecord] = {}
        for key, value in self.store.items(self.prefix):
            try:
                rec = SubmissionRecord.model_validate(value)
            except ValidationError:
                logger.warning("skipping unreadable submission under %s", key)
                continue
            cache[rec.application_id] = rec
        with self.lock:
            self._cache = cache
        return self

    def refresh(self) -> List[str]:
        """Reload local state and merge remote rows; returns ids that changed."""
        self.init()
        if self.remote is None:
            return []
        rows = self.remote.select_submissions()
        return self.apply_remote(rows)

    def dispose(self) -> None:
        with self.lock:
            self._cache = None

    def _records(self) -> Dict[str, SubmissionRecord]:
        with self.lock:
            if self._cache is None:
                self.init()
            return self._cache

    # queries

    def get(self, application_id: str) -> Optional[SubmissionRecord]:
        with self.lock:
            return self._records().get(application_id)

    def list(self, status: Optional[str] = None) -> List[SubmissionRecord]:
        with self.lock:
            recs = sorted(self._records().values(), key=lambda r: r.submitted_at, reverse=True)
        if status is not None:
            recs = [r for r in recs if r.status == status]
        return recs

    def collection(self) -> List[Dict[str, Any]]:
        return [r.to_json_obj() for r in self.list()]

    # writes

    def _write(self, record: SubmissionRecord) -> None:
        with self.lock:
            self.store.set(self.key_for(record.application_id), record.to_json_obj())
            self._records()[record.application_id] = record

    def upsert(self, record: SubmissionRecord) -> Tuple[SubmissionRecord, bool]:
        """Insert by application id, or keep what is already there.

        Returns (stored record, written). A minimal record is upgraded to the
        full one; a full record is never replaced. Raises StorageQuotaExceeded.
        """
        with self.lock:
            existing = self.get(record.application_id)
            if existing is None:
                self._write(record)
                return record, True
            if existing.minimal and not record.minimal:
                status = existing.status if STATUS_RANK[existing.status] > STATUS_RANK[record.status] else record.status
                upgraded = record.model_copy(update={"status": status})
                self._write(upgraded)
                return upgraded, True
            return existing, False

    def apply_remote(self, rows: List[Dict[str, Any]]) -> List[str]:
        changed: List[str] = []
        with self.lock:
            for row in rows:
                try:
                    incoming = from_remote_row(row)
                except (KeyError, ValidationError):
                    logger.warning("skipping malformed remote row %r", row.get("application_id"))
                    continue
                if self._merge_remote(incoming):
                    changed.append(incoming.application_id)
        if changed:
            self.publish()
        return changed

    def _merge_remote(self, incoming: SubmissionRecord) -> bool:
        local = self.get(incoming.application_id)
        if local is None:
            self._write(incoming)
            return True
        if incoming.updated_at <= local.updated_at and not local.minimal:
            # Local copy is as new or newer
            return False
        update: Dict[str, Any] = {}
        if STATUS_RANK[incoming.status] >= STATUS_RANK[local.status] and incoming.updated_at > local.updated_at:
            update.update(status=incoming.status, updated_at=incoming.updated_at, reviewer_note=incoming.reviewer_note)
        if local.minimal and incoming.data:
            update.update(data=incoming.data, minimal=False)
        if not update:
            return False
        self._write(local.model_copy(update=update))
        return True

    def advance_status(self, application_id: str, status: str, reviewer_note: Optional[str] = None) -> SubmissionRecord:
        with self.lock:
            current = self.get(application_id)
            if current is None:
                raise KeyError(application_id)
            if status not in _ALLOWED.get(current.status, ()):
                raise InvalidTransition(application_id, current.status, status)
            data = dict(current.data)
            data["metadata"] = {**(data.get("metadata") or {}), "status": status}
            updated = current.model_copy(
                update={"status": status, "updated_at": self.clock(), "reviewer_note": reviewer_note, "data": data}
            )
            self._write(updated)
        self.publish()
        if self.bus is not None:
            self.bus.emit(
                _STATUS_EVENTS[status],
                ApplicationReviewed(
                    applicationId=application_id,
                    applicantName=updated.applicant_name,
                    applicantEmail=updated.applicant_email,
                    status=status,
                    reviewerNote=reviewer_note,
                ),
            )
        return updated

    def publish(self) -> None:
        if self.channel is not None:
            self.channel.publish(self.collection_key, self.collection())

    def fetch_remote(self) -> List[Dict[str, Any]]:
        if self.remote is None:
            return []
        return self.remote.select_submissions()
