from __future__ import annotations

import copy
import logging
import secrets
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .audit import AuditTrail
from .definition import FormDefinition
from .errors import PersistenceFailed, RemoteError, RemoteSyncDegraded, StorageQuotaExceeded, ValidationFailed
from .events import EventBus, emit_application_submitted
from .form_state import FormStateStore, utc_now_iso
from .hashing import digest_json
from .persistence import DraftPersistence
from .remote import RemoteStore
from .repository import SubmissionRepository, minimal_projection
from .schemas import STATUS_RANK, FieldError, SubmissionRecord, SyncStatus
from .settings import settings
from .validation import StepValidator


logger = logging.getLogger(__name__)


def generate_application_id() -> str:
    """APP-<epoch ms>-<8 hex>: sortable by time, unique by the random suffix."""
    return f"APP-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class SubmissionResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    record: SubmissionRecord
    sync: SyncStatus
    notice: Optional[RemoteSyncDegraded] = None
    warnings: List[FieldError] = []
    # Full submitted content, also when only the minimal record fit locally
    data: Dict[str, Any] = {}

    @property
    def application_id(self) -> str:
        return self.record.application_id


class SubmissionPipeline:
    """Validate, then write locally (must succeed) and remotely (best effort).

    Strictness: with `strict` (the default from settings) incomplete required
    steps raise ValidationFailed. With `strict=False` the submission goes ahead
    and the missing fields come back as `warnings` and on the audit trail.
    """

    def __init__(
        self,
        definition: FormDefinition,
        repository: SubmissionRepository,
        remote: Optional[RemoteStore] = None,
        bus: Optional[EventBus] = None,
        persistence: Optional[DraftPersistence] = None,
        audit: Optional[AuditTrail] = None,
        strict: Optional[bool] = None,
        await_s: Optional[float] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.definition = definition
        self.validator = StepValidator(definition)
        self.repository = repository
        self.remote = remote
        self.bus = bus
        self.persistence = persistence
        self.audit = audit
        self.strict = bool(settings.submission.get("strict", True)) if strict is None else strict
        self.await_s = float(settings.remote.get("await_s", 10)) if await_s is None else await_s
        self.clock = clock or utc_now_iso
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="remote-sync")

    def _log(self, subject: str, step: str, status: str = "ok", **details: Any) -> None:
        if self.audit is not None:
            self.audit.log_event(subject, step=step, status=status, details=details)

    def validate(self, record: Dict[str, Any]) -> List[FieldError]:
        """Raise ValidationFailed in strict mode; otherwise return the missing fields."""
        incomplete = self.validator.incomplete_steps(record)
        if not incomplete:
            return []
        errors = [e for s in incomplete for e in self.validator.errors_for(s, record)]
        if self.strict:
            raise ValidationFailed(incomplete, errors)
        logger.warning("submitting with incomplete steps: %s", ", ".join(s.title for s in incomplete))
        return errors

    def build(self, record: Dict[str, Any], applicant_id: Optional[str] = None) -> SubmissionRecord:
        data = copy.deepcopy(record)
        meta = data.setdefault("metadata", {})
        # A retry of an already submitted record keeps its identity
        application_id = meta.get("applicationId") or generate_application_id()
        submitted_at = meta.get("submittedAt") or self.clock()
        status = meta.get("status") or "draft"
        if STATUS_RANK.get(status, 0) < STATUS_RANK["submitted"]:
            status = "submitted"
        meta.update(applicationId=application_id, submittedAt=submitted_at, status=status)
        return SubmissionRecord(
            application_id=application_id,
            applicant_id=applicant_id or "unknown",
            submitted_at=submitted_at,
            updated_at=submitted_at,
            status=status,
            data=data,
        )

    def submit(self, record: Dict[str, Any], applicant_id: Optional[str] = None) -> SubmissionResult:
        draft_subject = self.persistence.key if self.persistence is not None else "draft"
        try:
            warnings = self.validate(record)
        except ValidationFailed as e:
            self._log(draft_subject, "submit.validation_failed", "error", steps=e.step_titles)
            raise

        submission = self.build(record, applicant_id)
        app_id = submission.application_id
        self._log(
            app_id,
            "submit.validated",
            "warning" if warnings else "ok",
            strict=self.strict,
            missing=[w.field for w in warnings],
        )

        stored, is_new = self._write_local(submission)
        # A record already stored keeps its content; the remote gets the full
        # record even when only the minimal one fit locally
        canonical = submission if stored.minimal else stored
        self._save_draft(canonical)
        sync = self._write_remote(canonical, retry=not is_new)
        notice = RemoteSyncDegraded(app_id, sync.reason or "error", sync.detail) if sync.is_degraded else None

        if is_new:
            if self.bus is not None:
                emit_application_submitted(self.bus, app_id, stored.applicant_name, stored.applicant_email)
            self.repository.publish()
        else:
            logger.info("%s was already submitted; not announcing it again", app_id)

        self._log(app_id, "submit.finished", sync=sync.state, reason=sync.reason, retry=not is_new)
        return SubmissionResult(record=stored, sync=sync, notice=notice, warnings=warnings, data=canonical.data)

    def submit_form(self, form: FormStateStore, applicant_id: Optional[str] = None) -> SubmissionResult:
        """Submit the store's record and lock it by adopting the submitted snapshot."""
        result = self.submit(form.record, applicant_id)
        form.replace(result.data)
        return result

    def _write_local(self, submission: SubmissionRecord) -> Tuple[SubmissionRecord, bool]:
        """Store the submission; returns (stored record, whether the id was new)."""
        app_id = submission.application_id
        with self.repository.lock:
            is_new = self.repository.get(app_id) is None
            return self._upsert_local(submission), is_new

    def _upsert_local(self, submission: SubmissionRecord) -> SubmissionRecord:
        app_id = submission.application_id
        try:
            stored, written = self.repository.upsert(submission)
            self._log(app_id, "persist.local", written=written, output_digest=digest_json(stored.data))
        except StorageQuotaExceeded as e:
            logger.warning("local quota exceeded for %s, storing minimal projection", app_id)
            try:
                stored, written = self.repository.upsert(minimal_projection(submission))
            except StorageQuotaExceeded as e2:
                self._log(app_id, "persist.local_failed", "error", error=str(e2))
                raise PersistenceFailed(f"could not store application {app_id} locally: {e2}") from e2
            self._log(app_id, "persist.local_minimal", "warning", written=written, error=str(e))
        return stored

    def _save_draft(self, submission: SubmissionRecord) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(submission.data)
        except StorageQuotaExceeded:
            # The submission itself is stored; only the draft mirror is stale
            logger.warning("could not update draft slot after submitting %s", submission.application_id)

    def _push_remote(self, submission: SubmissionRecord, retry: bool = False) -> bool:
        """Insert the submission remotely; returns False when it was already there."""
        if retry and self.remote.select_submissions({"application_id": submission.application_id}):
            return False
        user_id: Optional[str] = submission.applicant_id if submission.applicant_id != "unknown" else None
        if user_id is None:
            info = submission.data.get("personalInfo") or {}
            try:
                user_id = self.remote.upsert_user_by_email(
                    info.get("email", ""), info.get("firstName", ""), info.get("lastName", "")
                )
            except RemoteError as e:
                if e.reason == "network":
                    raise
                logger.warning("could not resolve remote user for %s: %s", submission.application_id, e)
        self.remote.insert_submission(
            {
                "user_id": user_id,
                "application_id": submission.application_id,
                "status": submission.status,
                "data": submission.data,
                "submitted_at": submission.submitted_at,
            }
        )
        return True

    def _write_remote(self, submission: SubmissionRecord, retry: bool = False) -> SyncStatus:
        app_id = submission.application_id
        inserted = False
        if self.remote is None:
            sync = SyncStatus.degraded("not_configured")
        else:
            future = self._executor.submit(self._push_remote, submission, retry)
            try:
                inserted = future.result(timeout=self.await_s)
                sync = SyncStatus.synced()
            except FutureTimeout:
                # Left running; nothing cancels an in-flight remote write
                sync = SyncStatus.degraded("timeout", f"no answer within {self.await_s}s")
            except RemoteError as e:
                sync = SyncStatus.degraded(e.reason, str(e))
            except Exception as e:
                logger.exception("remote write for %s failed", app_id)
                sync = SyncStatus.degraded("error", f"{type(e).__name__}: {e}")
        if sync.is_degraded:
            logger.warning("remote sync degraded for %s: %s", app_id, sync.reason)
            self._log(app_id, "persist.remote_degraded", "warning", reason=sync.reason, detail=sync.detail)
        else:
            self._log(app_id, "persist.remote", inserted=inserted)
        return sync

    def close(self) -> None:
        self._executor.shutdown(wait=False)
