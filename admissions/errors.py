from __future__ import annotations

from typing import List, Optional

from .schemas import FieldError, StepDefinition


class AdmissionsError(Exception):
    """Base class for errors raised by the form engine."""


class ValidationFailed(AdmissionsError):
    """Required steps are incomplete; the user can fix the fields and retry."""

    def __init__(self, steps: List[StepDefinition], errors: Optional[List[FieldError]] = None) -> None:
        self.steps = list(steps)
        self.errors = list(errors or [])
        titles = ", ".join(s.title for s in self.steps)
        super().__init__(f"Incomplete required steps: {titles}")

    @property
    def step_titles(self) -> List[str]:
        return [s.title for s in self.steps]


class PersistenceFailed(AdmissionsError):
    """The local write failed even with the minimal projection."""


class StorageQuotaExceeded(AdmissionsError):
    def __init__(self, key: str, needed: int, quota: int) -> None:
        self.key = key
        self.needed = needed
        self.quota = quota
        super().__init__(f"Writing {key!r} needs {needed} bytes, quota is {quota}")


class LoadCorrupted(AdmissionsError):
    """Stored draft could not be parsed. Logged, never propagated past load()."""


class RemoteError(AdmissionsError):
    """Remote store call failed. `reason` is one of network, conflict, error."""

    def __init__(self, message: str, reason: str = "error", status_code: Optional[int] = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)


class RemoteSyncDegraded(AdmissionsError):
    """Informational: the local write stands but the remote mirror did not take it.

    Attached to submission results as a notice; the pipeline never raises it.
    """

    def __init__(self, application_id: str, reason: str, detail: Optional[str] = None) -> None:
        self.application_id = application_id
        self.reason = reason
        self.detail = detail
        super().__init__(f"Application {application_id} saved locally; remote sync degraded ({reason})")


class RecordLocked(AdmissionsError):
    """The record was submitted and can no longer be edited."""


class InvalidTransition(AdmissionsError):
    def __init__(self, application_id: str, current: str, target: str) -> None:
        self.application_id = application_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {application_id} from {current} to {target}")
