"""
Tests for the heartbeat monitor
"""
import asyncio
from datetime import timedelta

import pytest

from app.engine.heartbeat import HeartbeatMonitor
from app.engine.license_machine import LicenseStateMachine
from app.engine.repository import Repository
from app.models.license_model import License, LicenseStatus
from config import SessionLocal

from conftest import T0, actions


def _license(repo, license_id, status=LicenseStatus.active, verified_ago=None):
    lic = License(
        license_id=license_id,
        hwid_salt="salt",
        hardware_id="a" * 64,
        status=status,
        expires_at=T0 + timedelta(days=30),
        last_verified_at=(T0 - verified_ago) if verified_ago is not None else None,
    )
    return repo.add(lic)


@pytest.fixture
def monitor(clock):
    return HeartbeatMonitor(session_factory=SessionLocal, interval=3600, clock=clock)


def test_sweep_suspends_only_silent_active_licenses(repo, db, monitor):
    _license(repo, "FRESH", verified_ago=timedelta(hours=11))
    _license(repo, "EDGE", verified_ago=timedelta(hours=12))
    _license(repo, "STALE", verified_ago=timedelta(hours=12, seconds=1))
    _license(repo, "NEVER", verified_ago=None)
    _license(repo, "PAUSED", status=LicenseStatus.suspended, verified_ago=timedelta(days=3))
    _license(repo, "OLD", status=LicenseStatus.expired, verified_ago=timedelta(days=3))

    assert monitor.sweep() == ["STALE"]

    db.expire_all()
    statuses = {lic.license_id: lic.status for lic in repo.list_licenses()}
    assert statuses["STALE"] == LicenseStatus.suspended
    assert statuses["FRESH"] == LicenseStatus.active
    assert statuses["EDGE"] == LicenseStatus.active
    assert statuses["NEVER"] == LicenseStatus.active
    assert statuses["OLD"] == LicenseStatus.expired


def test_sweep_audits_elapsed_hours(repo, monitor):
    _license(repo, "STALE", verified_ago=timedelta(hours=13))
    monitor.sweep()

    entry = repo.recent_activity(license_id="STALE")[0]
    assert entry.action == "heartbeat_suspend"
    assert entry.actor == "system"
    assert '"elapsed_hours": 13.0' in entry.details


def test_verify_between_read_and_suspend_keeps_license_active(repo, db, monitor, clock, monkeypatch):
    _license(repo, "RACE", verified_ago=timedelta(hours=13))
    original = Repository.heartbeat_candidates

    def candidates_then_verify(self):
        found = original(self)
        other = SessionLocal()
        try:
            machine = LicenseStateMachine(Repository(other), clock=clock)
            assert machine.verify("RACE", "a" * 64)["valid"] is True
        finally:
            other.close()
        return found

    monkeypatch.setattr(Repository, "heartbeat_candidates", candidates_then_verify)

    assert monitor.sweep() == []

    db.expire_all()
    lic = repo.require_license("RACE")
    assert lic.status == LicenseStatus.active
    assert lic.last_verified_at == T0
    assert "heartbeat_suspend" not in actions(repo, "RACE")


def test_sweep_without_candidates(repo, monitor):
    assert monitor.sweep() == []
    assert actions(repo) == []


@pytest.mark.asyncio
async def test_start_and_stop(db, monitor):
    assert monitor.start() is True
    assert monitor.start() is False
    assert monitor.running
    await asyncio.sleep(0.05)
    await monitor.stop()
    assert not monitor.running
