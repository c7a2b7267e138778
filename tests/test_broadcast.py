from __future__ import annotations

import threading
from typing import Dict, List

import pytest
from pydantic import ValidationError

from admissions.broadcast import BroadcastHub, RemotePoller
from admissions.definition import ADMISSIONS_FORM
from admissions.errors import StorageQuotaExceeded
from admissions.form_state import FormStateStore
from admissions.persistence import DraftPersistence


def test_same_device_context_sees_saved_edit_immediately(store):
    hub = BroadcastHub()
    tab_a, tab_b = hub.open("tab-a"), hub.open("tab-b")
    form_a = FormStateStore(ADMISSIONS_FORM, persistence=DraftPersistence(store, ADMISSIONS_FORM, channel=tab_a))
    form_b = FormStateStore(ADMISSIONS_FORM)
    tab_b.subscribe(lambda ev: form_b.replace(ev.new_value), keys=["applicationFormData"])

    form_a.update_field("personalInfo.firstName", "Ada")

    # Delivered synchronously, no polling involved
    assert form_b.record["personalInfo"]["firstName"] == "Ada"


def test_publisher_does_not_hear_itself():
    hub = BroadcastHub()
    tab_a, tab_b = hub.open("a"), hub.open("b")
    heard: Dict[str, List] = {"a": [], "b": []}
    tab_a.subscribe(lambda ev: heard["a"].append(ev))
    tab_b.subscribe(lambda ev: heard["b"].append(ev))
    assert tab_a.publish("k", {"v": 1}) == 1
    assert heard["a"] == []
    assert heard["b"][0].new_value == {"v": 1}
    assert heard["b"][0].origin_tab_id == "a"


def test_unsubscribe_close_and_key_filter():
    hub = BroadcastHub()
    tab_a, tab_b, tab_c = hub.open(), hub.open(), hub.open()
    seen = []
    unsubscribe = tab_b.subscribe(lambda ev: seen.append(ev.storage_key), keys=["wanted"])
    tab_c.subscribe(lambda ev: seen.append("c:" + ev.storage_key))
    tab_a.publish("other", 1)
    tab_a.publish("wanted", 2)
    unsubscribe()
    tab_c.close()
    tab_a.publish("wanted", 3)
    assert seen == ["c:other", "wanted", "c:wanted"]


def test_failing_listener_does_not_stop_delivery():
    hub = BroadcastHub()
    tab_a, tab_b, tab_c = hub.open(), hub.open(), hub.open()
    seen = []

    def boom(ev):
        raise RuntimeError("listener bug")

    tab_b.subscribe(boom)
    tab_c.subscribe(lambda ev: seen.append(ev.new_value))
    tab_a.publish("k", "v")
    assert seen == ["v"]


def test_typed_topics_reject_wrong_payloads():
    hub = BroadcastHub(topics={"submittedApplications": List[dict]})
    tab_a = hub.open()
    hub.open().subscribe(lambda ev: None)
    tab_a.publish("submittedApplications", [{"applicationId": "APP-1"}])
    with pytest.raises(ValidationError):
        tab_a.publish("submittedApplications", "not a list")


def test_poller_skips_while_editing():
    fetched = []
    applied = []
    poller = RemotePoller(fetch=lambda: fetched.append(1) or ["row"], apply=applied.append, interval_s=60)
    with poller.editing():
        assert poller.paused
        assert poller.poll_once() is False
    assert fetched == []
    assert poller.poll_once() is True
    assert applied == [["row"]]


def test_nested_edits_keep_polling_paused():
    poller = RemotePoller(fetch=lambda: [], apply=lambda rows: None, interval_s=60)
    first = poller.pause()
    second = poller.pause()
    poller.resume(first)
    assert poller.paused
    poller.resume(second)
    assert not poller.paused


def test_poll_failure_is_swallowed():
    def fetch():
        raise ConnectionError("offline")

    poller = RemotePoller(fetch=fetch, apply=lambda rows: None, interval_s=60)
    assert poller.poll_once() is False


def test_apply_failure_keeps_poller_thread_alive():
    done = threading.Event()
    calls = []

    def apply(rows):
        calls.append(rows)
        if len(calls) <= 2:
            raise StorageQuotaExceeded("submittedApplications/APP-1", 900, 500)
        done.set()

    poller = RemotePoller(fetch=lambda: "rows", apply=apply, interval_s=0.01)
    assert poller.poll_once() is False
    poller.start()
    try:
        assert done.wait(2)
        assert poller._thread.is_alive()
    finally:
        poller.stop(timeout=1)
    assert len(calls) >= 3


def test_poller_thread_runs_on_interval():
    done = threading.Event()
    calls = []

    def apply(rows):
        calls.append(rows)
        if len(calls) >= 2:
            done.set()

    poller = RemotePoller(fetch=lambda: "rows", apply=apply, interval_s=0.01)
    poller.start()
    try:
        assert done.wait(2)
    finally:
        poller.stop(timeout=1)
    assert calls[:2] == ["rows", "rows"]
