from datetime import timedelta

from tokenkeeper.core import clock
from tokenkeeper.core.security import generate_jti
from tokenkeeper.models.security import RefreshToken
from tokenkeeper.services.cleanup_scheduler import CleanupScheduler


def _record(db, user_id, *, expires_in, revoked_ago=None, device_id="laptop"):
    now = clock.utcnow()
    record = RefreshToken(
        token_jti=generate_jti(),
        token_hash="0" * 64,
        user_id=user_id,
        device_id=device_id,
        issued_at=now - timedelta(days=1),
        expires_at=now + expires_in,
        is_revoked=revoked_ago is not None,
        revoked_at=now - revoked_ago if revoked_ago is not None else None,
    )
    db.add(record)
    db.commit()
    return record.token_jti


def _remaining(db):
    return {row[0] for row in db.query(RefreshToken.token_jti).all()}


def test_run_once_purges_expired_and_long_revoked(db, make_user):
    user = make_user()
    live = _record(db, user.id, expires_in=timedelta(days=10))
    expired = _record(db, user.id, expires_in=timedelta(seconds=-1))
    recently_revoked = _record(db, user.id, expires_in=timedelta(days=10), revoked_ago=timedelta(hours=1))
    old_revoked = _record(db, user.id, expires_in=timedelta(days=10), revoked_ago=timedelta(days=8))

    scheduler = CleanupScheduler(retention_days=7, batch_size=500)
    deleted = scheduler.run_once(db)

    assert deleted == 2
    assert _remaining(db) == {live, recently_revoked}
    assert expired not in _remaining(db)
    assert old_revoked not in _remaining(db)


def test_run_once_deletes_in_batches(db, make_user):
    user = make_user()
    for _ in range(7):
        _record(db, user.id, expires_in=timedelta(minutes=-5))
    keep = _record(db, user.id, expires_in=timedelta(days=1))

    scheduler = CleanupScheduler(batch_size=3)
    assert scheduler.run_once(db) == 7
    assert _remaining(db) == {keep}
    assert scheduler.status()["deleted_total"] == 7
    assert scheduler.status()["runs"] == 1


def test_run_once_with_nothing_to_do(db):
    scheduler = CleanupScheduler()
    assert scheduler.run_once(db) == 0


def test_run_once_uses_the_given_time(db, make_user):
    user = make_user()
    later = _record(db, user.id, expires_in=timedelta(days=2))

    scheduler = CleanupScheduler()
    assert scheduler.run_once(db, now=clock.utcnow() + timedelta(days=3)) == 1
    assert later not in _remaining(db)


def test_scheduler_start_and_stop():
    calls = []

    class _Session:
        def close(self):
            calls.append("close")

    scheduler = CleanupScheduler(
        interval_seconds=3600,
        initial_delay_seconds=3600,
        session_factory=_Session,
    )
    scheduler.start()
    assert scheduler.is_running()
    assert scheduler.status()["running"] is True

    scheduler.stop()
    assert not scheduler.is_running()
    assert calls == []
