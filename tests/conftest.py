# conftest.py

import os

# must be set before config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["HWLOCK_HEARTBEAT_ENABLED"] = "0"
os.environ["HWLOCK_PUBLIC_BASE_URL"] = "http://license.test"

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from config import Base, engine, SessionLocal
from app.engine import fingerprint
from app.engine.deployer import DeployResult, ProbeResult
from app.engine.repository import Repository
from app.models.license_model import License  # noqa: F401
from app.models.logs_model import ActivityLog  # noqa: F401
from app.models.patch_token_model import PatchToken  # noqa: F401
from app.models.server_model import Server

RAW_A = "mid-a:uuid-a:aa:bb:cc:dd:ee:ff:board-a:chassis-a:disk-a:"
RAW_B = "mid-b:uuid-b:11:22:33:44:55:66:board-b:chassis-b:disk-b:"
T0 = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    """Mutable datetime clock for the engine's injectable clocks."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    """Fresh in-memory schema per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repo(db):
    return Repository(db, actor="tester")


def make_server(repo, name="srv-a", raw=None):
    server = Server(name=name, host=f"{name}.test", port=22, username="root", password="secret")
    if raw:
        server.raw_fingerprint = raw
        server.hardware_id = fingerprint.unsalted_id(raw)
    return repo.add(server)


@pytest.fixture
def server_factory(repo):
    def _make(name="srv-a", raw=None):
        return make_server(repo, name, raw)
    return _make


@pytest.fixture
def fake_deployer():
    """
    Deployer double: a target reports its stored raw fingerprint (RAW_A when
    none is stored) and every deploy succeeds.
    """
    deployer = Mock()

    def _probe(server):
        raw = server.raw_fingerprint or RAW_A
        return ProbeResult(connected=True, raw_fingerprint=raw, hardware_id=fingerprint.unsalted_id(raw))

    deployer.probe.side_effect = _probe
    deployer.deploy.side_effect = lambda server, lic, hardware_id=None: DeployResult(
        success=True, hardware_id=hardware_id, output="HWLOCK_DEPLOY_OK"
    )
    deployer.undeploy.return_value = DeployResult(success=True, output="HWLOCK_UNDEPLOY_OK")
    return deployer


def actions(repo, license_id=None):
    return [row.action for row in repo.recent_activity(limit=1000, license_id=license_id)]
