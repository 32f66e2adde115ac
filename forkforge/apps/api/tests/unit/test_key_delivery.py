"""Tests for the operator key-delivery sinks."""

import json
import os
import stat
from datetime import datetime, timezone
from io import StringIO

import pytest

from forkforge_api.billing.key_delivery import (
    FileKeyDeliverySink,
    KeyDeliverySink,
    StreamKeyDeliverySink,
    get_default_key_delivery_sink,
)
from forkforge_api.stores.base import IssuedCredential

SECRET = "ff_live_" + "a" * 43


@pytest.fixture
def issued() -> IssuedCredential:
    return IssuedCredential(
        secret=SECRET,
        credential_id="cred-1",
        user_id="user-1",
        label="checkout",
        expires_at=None,
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    )


def test_stream_sink_writes_one_json_line(issued):
    stream = StringIO()
    StreamKeyDeliverySink(stream).deliver(issued, billing_ref="cus_1", event_id="evt_1")

    lines = stream.getvalue().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record == {
        "event_id": "evt_1",
        "billing_ref": "cus_1",
        "user_id": "user-1",
        "credential_id": "cred-1",
        "key": SECRET,
        "created_at": "2026-03-01T12:00:00+00:00",
    }


def test_delivery_log_carries_only_last4(issued, caplog):
    caplog.set_level("INFO", logger="forkforge_api.billing.key_delivery")
    StreamKeyDeliverySink(StringIO()).deliver(issued, billing_ref="cus_1", event_id="evt_1")

    record = next(r for r in caplog.records if r.event == "credential.delivered")
    assert record.last4 == SECRET[-4:]
    assert SECRET not in record.getMessage()


@pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
def test_file_sink_appends_with_owner_only_mode(tmp_path, issued):
    path = tmp_path / "keys.jsonl"
    sink = FileKeyDeliverySink(str(path))

    sink.deliver(issued, billing_ref="cus_1", event_id="evt_1")
    sink.deliver(issued, billing_ref="cus_2", event_id="evt_2")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event_id"] for line in lines] == ["evt_1", "evt_2"]
    assert stat.S_IMODE(path.stat().st_mode) & 0o077 == 0


def test_file_sink_write_failure_raises_oserror(tmp_path, issued):
    sink = FileKeyDeliverySink(str(tmp_path / "missing-dir" / "keys.jsonl"))
    with pytest.raises(OSError):
        sink.deliver(issued, billing_ref="cus_1", event_id="evt_1")


def test_default_sink_selected_by_env(monkeypatch, tmp_path):
    monkeypatch.delenv("PROVISIONED_KEYS_FILE", raising=False)
    assert isinstance(get_default_key_delivery_sink(), StreamKeyDeliverySink)

    monkeypatch.setenv("PROVISIONED_KEYS_FILE", str(tmp_path / "keys.jsonl"))
    sink = get_default_key_delivery_sink()
    assert isinstance(sink, FileKeyDeliverySink)
    assert isinstance(sink, KeyDeliverySink)
