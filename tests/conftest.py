from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from admissions.definition import ADMISSIONS_FORM
from admissions.errors import RemoteError
from admissions.settings import settings
from admissions.storage import LocalStore


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch) -> Path:
    # Keep audit logs and the database inside the test's temp dir
    monkeypatch.setattr(settings, "data_dir", str(tmp_path))
    return tmp_path


@pytest.fixture
def store(data_dir: Path):
    tmp_path = data_dir
    s = LocalStore(f"sqlite:///{tmp_path / 'local.db'}", quota_bytes=0)
    yield s
    s.dispose()


def document(name: str) -> Dict[str, Any]:
    return {"id": name, "name": f"{name}.pdf", "type": "application/pdf", "size": 1024, "status": "uploaded"}


def complete_record() -> Dict[str, Any]:
    record = ADMISSIONS_FORM.default_record()
    record["personalInfo"].update(firstName="Ada", lastName="Lovelace", email="ada@example.com", phone="+44 20 7946 0000")
    record["education"].update(currentLevel="Masters", institution="University of London", fieldOfStudy="Mathematics")
    record["programInfo"]["whyJoin"] = "To work on analytical engines."
    record["documents"].update(cv=document("cv"), letterOfInterest=document("loi"))
    return record


class FakeRemote:
    """In-memory stand-in for the remote store; `fail` makes every call raise."""

    def __init__(self, fail: Optional[str] = None) -> None:
        self.fail = fail
        self.users: Dict[str, str] = {}
        self.rows: List[Dict[str, Any]] = []

    def _maybe_fail(self) -> None:
        if self.fail:
            raise RemoteError(f"simulated {self.fail}", reason=self.fail)

    def upsert_user_by_email(self, email: str, first_name: str = "", last_name: str = "") -> Optional[str]:
        self._maybe_fail()
        return self.users.setdefault(email, f"user-{len(self.users) + 1}")

    def insert_submission(self, payload: Dict[str, Any]) -> None:
        self._maybe_fail()
        if any(r["application_id"] == payload["application_id"] for r in self.rows):
            raise RemoteError("duplicate application_id", reason="conflict", status_code=409)
        self.rows.append(payload)

    def select_submissions(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        self._maybe_fail()
        return [r for r in self.rows if all(r.get(k) == v for k, v in (filters or {}).items())]
