"""
Client session store against the in-process API
"""
import asyncio

import pytest

from conftest import make_devices
from image_checker.client import AutoSaver, SessionStore

SERVER = "http://test"


@pytest.fixture
def alice(client) -> SessionStore:
    return SessionStore("alice@example.com", server_url=SERVER, http_client=client)


@pytest.fixture
def bob(client) -> SessionStore:
    return SessionStore("bob@example.com", server_url=SERVER, http_client=client)


def parsed_upload(count: int = 23) -> dict:
    """What the CSV parser hands over: source fields only"""
    devices = [
        {k: v for k, v in device.items() if k != "status"}
        for device in make_devices(count)
    ]
    return {
        "session_name": "Orthopaedics",
        "filename": "ortho.csv",
        "total_rows": count,
        "devices": devices,
    }


def test_set_session_assigns_batches_and_defaults(alice):
    alice.set_session(parsed_upload(23))
    session = alice.session

    assert session["session_id"]
    assert session["version"] == 1
    assert session["total_batches"] == 3
    assert session["progress_percentage"] == 0
    assert alice.has_unsaved_changes is False

    device = session["devices"][12]
    assert (device["batch_id"], device["row_index"]) == (2, 3)
    assert device["status"] == "pending"
    assert device["selected_image_url"] == device["image_url"]
    assert device["selected_manual_url"] == device["manual_url"]
    assert device["custom_type"] == ""


def test_local_edits_mark_dirty_and_recompute_progress(alice):
    alice.set_session(parsed_upload(4))

    alice.update_device(0, status="approved")
    alice.update_device(1, status="skipped")

    assert alice.has_unsaved_changes is True
    assert alice.session["progress_percentage"] == 25


def test_batch_navigation(alice):
    alice.set_session(parsed_upload(23))

    alice.set_current_batch(3)
    alice.mark_batch_complete(1)
    alice.mark_batch_complete(1)

    assert alice.selected_device_index == 20
    assert [d["row_index"] for d in alice.current_batch_view()] == [1, 2, 3]
    assert alice.session["completed_batches"] == [1]
    assert alice.has_unsaved_changes is True


def test_edits_require_session(alice):
    with pytest.raises(ValueError):
        alice.update_device(0, status="approved")


async def test_save_tracks_server_version(alice):
    alice.set_session(parsed_upload(5))
    alice.update_device(0, status="approved")

    first = await alice.save()
    alice.update_device(1, status="rejected")
    second = await alice.save()

    assert first["status"] == "success"
    assert second["data"]["version"] == 2
    assert alice.version == 2
    assert alice.has_unsaved_changes is False
    assert alice.last_saved_at is not None


async def test_conflict_keeps_local_edits(alice, bob):
    alice.set_session(parsed_upload(5))
    await alice.save()
    session_id = alice.session["session_id"]

    # Bob saves on top of v1 from a stale copy of Alice's document
    bob.set_session({**alice.session, "devices": [dict(d) for d in alice.session["devices"]]})
    bob.update_device(0, status="approved")
    assert (await bob.save())["status"] == "success"

    alice.update_device(1, status="rejected")
    result = await alice.save()

    assert result["status"] == "conflict"
    assert alice.conflict_error == {"currentVersion": 2, "attemptedVersion": 1}
    assert alice.has_unsaved_changes is True
    assert alice.session["devices"][1]["status"] == "rejected"
    assert alice.version == 1
    assert alice.session["session_id"] == session_id


async def test_refresh_from_server_discards_local_state(alice, bob):
    alice.set_session(parsed_upload(5))
    await alice.save()
    bob.set_session({**alice.session, "devices": [dict(d) for d in alice.session["devices"]]})
    bob.update_device(0, status="approved")
    await bob.save()
    alice.update_device(1, status="rejected")
    await alice.save()

    result = await alice.refresh_from_server()

    assert result["status"] == "loaded"
    assert alice.version == 2
    assert alice.conflict_error is None
    assert alice.has_unsaved_changes is False
    assert alice.session["devices"][0]["status"] == "approved"
    assert alice.session["devices"][1]["status"] == "pending"


async def test_load_locked_session(alice, bob):
    alice.set_session(parsed_upload(3))
    await alice.save()
    session_id = alice.session["session_id"]
    assert (await alice.load(session_id))["status"] == "loaded"

    result = await bob.load(session_id)

    assert result["status"] == "locked"
    assert bob.locked_by["lockedBy"] == "alice@example.com"
    assert bob.session is None


async def test_load_missing_session(alice):
    result = await alice.load("missing")

    assert result["status"] == "not_found"
    assert alice.session is None


async def test_release_lets_the_next_editor_in(alice, bob):
    alice.set_session(parsed_upload(3))
    await alice.save()
    session_id = alice.session["session_id"]
    await alice.load(session_id)
    alice.update_device(2, status="custom_selected", custom_image_url="https://img.example.com/c.jpg")
    await alice.save()

    assert await alice.release() is True
    result = await bob.load(session_id)

    assert result["status"] == "loaded"
    assert bob.version == 2
    assert bob.session["devices"][2]["custom_image_url"] == "https://img.example.com/c.jpg"


async def test_autosave_only_when_dirty(alice):
    alice.set_session(parsed_upload(2))
    await alice.save()
    assert await alice.autosave_if_dirty() is None

    alice.update_device(0, status="approved")
    result = await alice.autosave_if_dirty()

    assert result["status"] == "success"
    assert alice.version == 2


async def test_heartbeat_requires_lock(alice):
    alice.set_session(parsed_upload(2))
    await alice.save()

    assert await alice.heartbeat() is False
    await alice.load(alice.session["session_id"])
    assert await alice.heartbeat() is True


async def test_auto_saver_runs_in_background(alice):
    alice.set_session(parsed_upload(2))
    await alice.save()
    await alice.load(alice.session["session_id"])
    alice.update_device(0, status="approved")

    saver = AutoSaver(alice, interval=0.01, refresh_lock=False)
    saver.start()
    for _ in range(200):
        if not alice.has_unsaved_changes:
            break
        await asyncio.sleep(0.01)
    await saver.stop()

    assert alice.has_unsaved_changes is False
    assert alice.version == 2
    assert saver.running is False


async def test_list_delete_restore(alice):
    alice.set_session(parsed_upload(2))
    await alice.save()
    session_id = alice.session["session_id"]

    assert [s["session_id"] for s in await alice.list_sessions()] == [session_id]

    await alice.delete_session(session_id)
    assert alice.session is None
    assert await alice.list_sessions() == []

    assert await alice.restore_session(session_id) is True
    assert [s["session_id"] for s in await alice.list_sessions()] == [session_id]


async def test_auto_saver_tick_refreshes_lock(alice, clock, repo):
    alice.set_session(parsed_upload(2))
    await alice.save()
    await alice.load(alice.session["session_id"])
    clock.advance(minutes=4)

    await AutoSaver(alice).tick()

    record = await repo.get(alice.session["session_id"])
    assert record.locked_by == "alice@example.com"
    assert record.locked_at == clock.now


async def test_auto_saver_survives_unexpected_errors(alice, monkeypatch):
    calls = []

    async def flaky_autosave():
        calls.append(len(calls))
        if len(calls) == 1:
            raise ValueError("response body is not JSON")
        return None

    monkeypatch.setattr(alice, "autosave_if_dirty", flaky_autosave)
    saver = AutoSaver(alice, interval=0.01, refresh_lock=False)
    saver.start()
    for _ in range(200):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)

    assert len(calls) >= 2
    assert saver.running is True
    await saver.stop()
