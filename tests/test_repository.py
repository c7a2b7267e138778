from __future__ import annotations

import threading

import pytest

from admissions.broadcast import BroadcastHub, RemotePoller
from admissions.errors import InvalidTransition
from admissions.events import EventBus, EventType
from admissions.repository import SubmissionRepository, minimal_projection
from admissions.schemas import SubmissionRecord

from conftest import FakeRemote, complete_record


def _record(app_id="APP-1", updated="2026-01-01T00:00:00+00:00", status="submitted", minimal=False):
    data = complete_record()
    data["metadata"].update(status=status, applicationId=app_id, submittedAt="2026-01-01T00:00:00+00:00")
    return SubmissionRecord(
        application_id=app_id,
        submitted_at="2026-01-01T00:00:00+00:00",
        updated_at=updated,
        status=status,
        data=data,
        minimal=minimal,
    )


def _row(app_id="APP-1", updated="2026-02-01T00:00:00+00:00", status="under_review"):
    rec = _record(app_id)
    return {
        "application_id": app_id,
        "user_id": "user-1",
        "status": status,
        "data": rec.data,
        "submitted_at": rec.submitted_at,
        "updated_at": updated,
    }


def test_init_reads_local_collection_and_dispose_drops_cache(store):
    SubmissionRepository(store).upsert(_record("APP-1"))
    repo = SubmissionRepository(store).init()
    assert [r.application_id for r in repo.list()] == ["APP-1"]
    repo.dispose()
    store.remove("submittedApplications/APP-1")
    assert repo.list() == []


def test_unreadable_entries_are_skipped(store):
    store.set("submittedApplications/bad", {"nope": True})
    repo = SubmissionRepository(store).init()
    assert repo.list() == []


def test_upsert_is_idempotent_and_upgrades_minimal(store):
    repo = SubmissionRepository(store)
    minimal = minimal_projection(_record())
    stored, written = repo.upsert(minimal)
    assert written and stored.minimal
    full, written = repo.upsert(_record())
    assert written and not full.minimal
    again, written = repo.upsert(_record())
    assert not written
    assert again == full
    assert store.keys("submittedApplications/") == ["submittedApplications/APP-1"]


def test_advance_status_moves_forward_and_emits(store):
    bus = EventBus()
    approved = []
    bus.on(EventType.APPLICATION_APPROVED, approved.append)
    repo = SubmissionRepository(store, bus=bus, clock=lambda: "2026-03-01T00:00:00+00:00")
    original = repo.upsert(_record())[0]

    reviewing = repo.advance_status("APP-1", "under_review")
    assert reviewing.status == "under_review"
    done = repo.advance_status("APP-1", "accepted", reviewer_note="Strong candidate")
    assert done.updated_at == "2026-03-01T00:00:00+00:00"
    assert done.data["personalInfo"] == original.data["personalInfo"]
    assert done.data["metadata"]["status"] == "accepted"
    assert approved[0].applicationId == "APP-1"
    assert approved[0].reviewerNote == "Strong candidate"

    with pytest.raises(InvalidTransition):
        repo.advance_status("APP-1", "submitted")
    with pytest.raises(KeyError):
        repo.advance_status("APP-404", "accepted")


def test_remote_rows_only_replace_older_local_copies(store):
    repo = SubmissionRepository(store)
    repo.upsert(_record("APP-1", updated="2026-01-15T00:00:00+00:00"))
    repo.upsert(_record("APP-2", updated="2026-03-01T00:00:00+00:00", status="accepted"))

    changed = repo.apply_remote(
        [
            _row("APP-1", updated="2026-02-01T00:00:00+00:00", status="under_review"),
            _row("APP-2", updated="2026-02-01T00:00:00+00:00", status="under_review"),
            _row("APP-3", updated="2026-02-01T00:00:00+00:00", status="submitted"),
            {"status": "garbage"},
        ]
    )
    assert sorted(changed) == ["APP-1", "APP-3"]
    assert repo.get("APP-1").status == "under_review"
    # Locally newer and further along; remote does not roll it back
    assert repo.get("APP-2").status == "accepted"
    assert repo.get("APP-3").applicant_id == "user-1"


def test_refresh_pulls_remote_and_broadcasts(store):
    remote = FakeRemote()
    remote.rows.append(_row("APP-9"))
    hub = BroadcastHub()
    mine, other = hub.open(), hub.open()
    seen = []
    other.subscribe(lambda ev: seen.append(ev), keys=["submittedApplications"])
    repo = SubmissionRepository(store, remote=remote, channel=mine)
    assert repo.refresh() == ["APP-9"]
    assert seen[0].new_value[0]["applicationId"] == "APP-9"
    assert repo.refresh() == []


def test_poller_drives_repository_refresh(store):
    remote = FakeRemote()
    repo = SubmissionRepository(store, remote=remote)
    poller = RemotePoller(fetch=repo.fetch_remote, apply=repo.apply_remote, interval_s=60)
    remote.rows.append(_row("APP-5"))
    with poller.editing():
        poller.poll_once()
    assert repo.get("APP-5") is None
    poller.poll_once()
    assert repo.get("APP-5") is not None


def test_list_filters_by_status(store):
    repo = SubmissionRepository(store)
    repo.upsert(_record("APP-1"))
    repo.upsert(_record("APP-2", status="rejected"))
    assert [r.application_id for r in repo.list(status="rejected")] == ["APP-2"]


def test_remote_merge_and_local_upsert_on_two_threads_agree(store):
    for n in range(20):
        app_id = f"APP-{n:02d}"
        repo = SubmissionRepository(store)
        start = threading.Barrier(2)

        def poll():
            start.wait()
            repo.apply_remote([_row(app_id)])

        poller = threading.Thread(target=poll)
        poller.start()
        start.wait()
        repo.upsert(_record(app_id))
        poller.join(5)

        # Whichever ran first, the newer remote status wins and cache and store agree
        assert repo.get(app_id).status == "under_review"
        assert store.get(f"submittedApplications/{app_id}")["status"] == "under_review"
        assert store.keys(f"submittedApplications/{app_id}") == [f"submittedApplications/{app_id}"]
