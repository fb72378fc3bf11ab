"""
Purge job
"""
from image_checker import maintenance
from image_checker.maintenance import purge_deleted_sessions
from image_checker.services import SessionRepository

BLOB = "memory://test-bucket/sessions/x/devices-a.json"


async def test_purge_job_counts_removed_sessions(session_maker, clock, document_factory):
    expired = document_factory()
    kept = document_factory()
    async with session_maker() as db:
        repo = SessionRepository(db, clock=clock)
        await repo.create(expired, BLOB)
        await repo.create(kept, BLOB)
        await repo.delete(expired.session_id)
        clock.advance(days=2)
        await repo.delete(kept.session_id)

    clock.advance(days=13)

    assert await purge_deleted_sessions(session_maker, retention_days=14, clock=clock) == 1
    assert await purge_deleted_sessions(session_maker, retention_days=14, clock=clock) == 0

    async with session_maker() as db:
        repo = SessionRepository(db, clock=clock)
        assert await repo.find(expired.session_id, include_deleted=True) is None
        assert await repo.find(kept.session_id, include_deleted=True) is not None


async def test_purge_job_with_empty_table(session_maker, clock):
    assert await purge_deleted_sessions(session_maker, clock=clock) == 0


def test_main_exit_codes(monkeypatch, capsys):
    calls = []

    async def fake_run(retention_days):
        calls.append(retention_days)
        return 3

    monkeypatch.setattr(maintenance, "_run", fake_run)
    assert maintenance.main(["--retention-days", "30"]) == 0
    assert calls == [30]
    assert "Purged 3 session(s)" in capsys.readouterr().out

    async def failing_run(retention_days):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(maintenance, "_run", failing_run)
    assert maintenance.main([]) == 1
