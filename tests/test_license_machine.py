"""
Tests for the license state machine
"""
from datetime import timedelta

import pytest

from app.engine import fingerprint
from app.engine.deployer import ProbeResult
from app.engine.heartbeat import HeartbeatMonitor
from app.engine.license_machine import LicenseStateMachine
from app.engine.payload_codec import PayloadCodec
from app.models.license_model import LicenseStatus
from app.utils.exceptions import (
    ConflictError,
    HWLockException,
    LicenseExpiredError,
    LicenseSuspendedError,
    NotFoundError,
    NotProvisionedError,
    SecurityMismatchError,
    ValidationFailed,
)
from app.utils.signer import compute_agent_token
from config import SessionLocal

from conftest import RAW_A, RAW_B, T0, actions

HW_A = "a" * 64
HW_B = "b" * 64


@pytest.fixture
def machine(repo, clock):
    return LicenseStateMachine(repo, codec=PayloadCodec("test-k"), clock=clock)


@pytest.fixture
def deploying_machine(repo, clock, fake_deployer):
    return LicenseStateMachine(repo, deployer=fake_deployer, codec=PayloadCodec("test-k"), clock=clock)


def _create(machine, license_id="LIC-1", days=30, **kwargs):
    return machine.create(license_id, T0 + timedelta(days=days), **kwargs)


# ---------------------------------------------------------------- create
def test_create_unbound_license_is_inactive(machine, repo):
    lic = _create(machine)
    assert lic.status == LicenseStatus.inactive
    assert lic.hardware_id is None
    assert len(lic.hwid_salt) == 32
    assert "create_license" in actions(repo, "LIC-1")


def test_create_rejects_duplicate_id(machine):
    _create(machine)
    with pytest.raises(ConflictError):
        _create(machine)


def test_create_rejects_past_expiry(machine):
    with pytest.raises(ValidationFailed):
        machine.create("LIC-1", T0 - timedelta(seconds=1))


def test_create_on_fingerprinted_server_binds(machine, server_factory):
    server = server_factory(raw=RAW_A)
    lic = _create(machine, server_id=server.id)
    assert lic.status == LicenseStatus.active
    assert lic.hardware_id == fingerprint.compute_from_raw(RAW_A, lic.hwid_salt)


def test_one_license_per_server(machine, server_factory):
    server = server_factory()
    _create(machine, "LIC-1", server_id=server.id)
    with pytest.raises(ConflictError):
        _create(machine, "LIC-2", server_id=server.id)


def test_create_unknown_server(machine):
    with pytest.raises(NotFoundError):
        _create(machine, server_id=999)


# ------------------------------------------------------------- provision
def test_provision_binds_and_activates(machine, clock):
    _create(machine)
    lic, payload, blob = machine.provision("LIC-1", HW_A)
    assert lic.status == LicenseStatus.active
    assert lic.hardware_id == HW_A
    assert lic.last_verified_at == T0
    assert lic.signature == blob
    assert payload["pid"] == "LIC-1"
    assert payload["hwid"] == HW_A
    assert machine.codec.decrypt(blob).to_wire() == payload


def test_provision_is_idempotent(machine, clock):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    clock.advance(hours=1)
    lic, _, _ = machine.provision("LIC-1", HW_A)
    assert lic.hardware_id == HW_A
    assert lic.last_verified_at == T0 + timedelta(hours=1)


def test_provision_first_bind_wins(machine, repo):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    with pytest.raises(SecurityMismatchError):
        machine.provision("LIC-1", HW_B)

    lic = repo.require_license("LIC-1")
    assert lic.hardware_id == HW_A
    assert lic.last_verified_at == T0
    assert "provision_hwid_mismatch" in actions(repo, "LIC-1")


def test_provision_unknown_license(machine):
    with pytest.raises(NotFoundError):
        machine.provision("NOPE", HW_A)


def test_provision_after_expiry_marks_expired(machine, repo, clock):
    _create(machine, days=1)
    clock.advance(days=2)
    with pytest.raises(LicenseExpiredError):
        machine.provision("LIC-1", HW_A)
    assert repo.require_license("LIC-1").status == LicenseStatus.expired


def test_provision_suspended_is_rejected(machine):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    machine.set_status("LIC-1", LicenseStatus.suspended)
    with pytest.raises(LicenseSuspendedError):
        machine.provision("LIC-1", HW_A)


# ---------------------------------------------------------------- verify
def test_verify_requires_provisioning(machine):
    _create(machine)
    with pytest.raises(NotProvisionedError):
        machine.verify("LIC-1", HW_A)


def test_verify_active_refreshes_heartbeat(machine, repo, clock):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    clock.advance(hours=3)
    result = machine.verify("LIC-1", HW_A)
    assert result["valid"] is True
    assert result["status"] == "active"
    assert result["license"]["st"] == "1"
    assert machine.codec.decrypt(result["encrypted_blob"]) is not None
    assert repo.require_license("LIC-1").last_verified_at == T0 + timedelta(hours=3)


def test_verify_mismatch(machine, repo):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    with pytest.raises(SecurityMismatchError):
        machine.verify("LIC-1", HW_B)
    assert "verify_hwid_mismatch" in actions(repo, "LIC-1")


def test_verify_suspended_reports_status_flag_zero(machine):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    machine.set_status("LIC-1", LicenseStatus.suspended)
    result = machine.verify("LIC-1", HW_A)
    assert result["valid"] is True
    assert result["status"] == "suspended"
    assert result["license"]["st"] == "0"


def test_verify_inactive(machine):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    machine.set_status("LIC-1", LicenseStatus.inactive)
    assert machine.verify("LIC-1", HW_A) == {"valid": False, "status": "inactive"}


def test_verify_expired_flips_status(machine, repo, clock):
    _create(machine, days=1)
    machine.provision("LIC-1", HW_A)
    clock.advance(days=1, seconds=1)
    assert machine.verify("LIC-1", HW_A) == {"valid": False, "status": "expired"}
    assert repo.require_license("LIC-1").status == LicenseStatus.expired


def test_verify_outcomes_are_audited(machine, repo, clock):
    _create(machine, days=1)
    machine.provision("LIC-1", HW_A)

    machine.verify("LIC-1", HW_A, ip_address="10.0.0.5")
    entry = repo.recent_activity(license_id="LIC-1")[0]
    assert entry.action == "verify_success"
    assert entry.ip_address == "10.0.0.5"

    machine.set_status("LIC-1", LicenseStatus.suspended)
    machine.verify("LIC-1", HW_A)
    assert repo.recent_activity(license_id="LIC-1")[0].action == "verify_suspended"

    clock.advance(days=1, seconds=1)
    machine.verify("LIC-1", HW_A)
    assert repo.recent_activity(license_id="LIC-1")[0].action == "verify_expired"
    assert "license_expired" in actions(repo, "LIC-1")


# ---------------------------------------------------------- license data
def test_license_data_requires_matching_agent_token(machine):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    payload = machine.license_data("LIC-1", compute_agent_token("LIC-1", HW_A))
    assert payload["hwid"] == HW_A

    with pytest.raises(HWLockException) as exc:
        machine.license_data("LIC-1", compute_agent_token("LIC-1", HW_B))
    assert exc.value.status_code == 403
    assert exc.value.error_code == "AGENT_TOKEN_INVALID"


def test_license_blob_decrypts_to_current_payload(machine, repo, clock):
    _create(machine, days=1)
    machine.provision("LIC-1", HW_A)
    token = compute_agent_token("LIC-1", HW_A)

    decoded = machine.codec.decrypt(machine.license_blob("LIC-1", token))
    assert decoded.license_id == "LIC-1"
    assert decoded.status_flag == "1"

    clock.advance(days=1, seconds=1)
    with pytest.raises(LicenseExpiredError):
        machine.license_blob("LIC-1", token)
    assert repo.require_license("LIC-1").status == LicenseStatus.expired


# ----------------------------------------------------------- admin edits
def test_extend_adds_exact_days_only(machine, repo):
    _create(machine)
    machine.provision("LIC-1", HW_A)
    before = repo.require_license("LIC-1")
    expires, status, hwid, verified = before.expires_at, before.status, before.hardware_id, before.last_verified_at

    lic = machine.extend("LIC-1", 10)
    assert lic.expires_at - expires == timedelta(seconds=10 * 86400)
    assert (lic.status, lic.hardware_id, lic.last_verified_at) == (status, hwid, verified)


@pytest.mark.parametrize("days", [0, -5])
def test_extend_rejects_non_positive(machine, days):
    _create(machine)
    with pytest.raises(ValidationFailed):
        machine.extend("LIC-1", days)


def test_edit_fields_ignores_protected_fields(machine):
    _create(machine)
    lic = machine.edit_fields("LIC-1", {"max_users": 5, "hardware_id": HW_B, "status": "active"})
    assert lic.max_users == 5
    assert lic.hardware_id is None
    assert lic.status == LicenseStatus.inactive


def test_edit_fields_requires_changes(machine):
    _create(machine)
    with pytest.raises(ValidationFailed):
        machine.edit_fields("LIC-1", {"hardware_id": HW_B})


def test_expired_is_terminal_without_force(machine, clock):
    _create(machine)
    machine.set_status("LIC-1", LicenseStatus.expired)
    with pytest.raises(ValidationFailed):
        machine.set_status("LIC-1", LicenseStatus.active)
    lic, _ = machine.set_status("LIC-1", LicenseStatus.active, force=True)
    assert lic.status == LicenseStatus.active


def test_cannot_activate_past_expiry(machine, clock):
    _create(machine, days=1)
    clock.advance(days=2)
    with pytest.raises(ValidationFailed):
        machine.set_status("LIC-1", LicenseStatus.active)


def test_delete_is_soft(deploying_machine, repo, server_factory, fake_deployer):
    server = server_factory(raw=RAW_A)
    _create(deploying_machine, server_id=server.id)
    lic, result = deploying_machine.delete("LIC-1")
    assert lic.status == LicenseStatus.suspended
    assert lic.server_id is None
    assert result.success
    fake_deployer.undeploy.assert_called_once()
    assert repo.get_license("LIC-1") is not None


# -------------------------------------------------------------- transfer
def test_transfer_rebinds_and_redeploys(deploying_machine, server_factory, fake_deployer):
    src = server_factory("srv-a", raw=RAW_A)
    dst = server_factory("srv-b", raw=RAW_B)
    _create(deploying_machine, server_id=src.id)

    lic, results = deploying_machine.transfer("LIC-1", dst.id)
    assert lic.server_id == dst.id
    assert lic.hardware_id == fingerprint.compute_from_raw(RAW_B, lic.hwid_salt)
    assert results["undeploy"].success
    assert results["deploy"].success
    assert fake_deployer.undeploy.call_args[0][0].id == src.id
    assert fake_deployer.deploy.call_args[0][0].id == dst.id


def test_transfer_refuses_occupied_destination(machine, server_factory):
    src = server_factory("srv-a")
    dst = server_factory("srv-b")
    _create(machine, "LIC-1", server_id=src.id)
    _create(machine, "LIC-2", server_id=dst.id)
    with pytest.raises(ConflictError):
        machine.transfer("LIC-1", dst.id)


def test_transfer_to_unknown_fingerprint_unbinds(machine, server_factory):
    src = server_factory("srv-a", raw=RAW_A)
    dst = server_factory("srv-b")
    _create(machine, server_id=src.id)
    lic, results = machine.transfer("LIC-1", dst.id)
    assert lic.hardware_id is None
    assert results == {}


# ---------------------------------------------------------------- deploy
def test_deploy_binds_inactive_license(deploying_machine, server_factory, fake_deployer):
    server = server_factory()
    _create(deploying_machine, server_id=server.id)

    result = deploying_machine.deploy("LIC-1")
    lic = deploying_machine.repo.require_license("LIC-1")
    assert result.success
    assert lic.status == LicenseStatus.active
    assert lic.hardware_id == fingerprint.compute_from_raw(RAW_A, lic.hwid_salt)
    assert fake_deployer.deploy.call_args[1]["hardware_id"] == lic.hardware_id
    assert server.raw_fingerprint == RAW_A


def test_deploy_refuses_foreign_hardware(deploying_machine, server_factory, fake_deployer, repo):
    server = server_factory(raw=RAW_B)
    _create(deploying_machine, server_id=server.id)
    fake_deployer.probe.side_effect = None
    fake_deployer.probe.return_value = ProbeResult(connected=True, raw_fingerprint=RAW_A)

    result = deploying_machine.deploy("LIC-1")
    assert not result.success
    assert "mismatch" in result.error.lower()
    fake_deployer.deploy.assert_not_called()
    assert "deploy_hwid_mismatch" in actions(repo, "LIC-1")


def test_deploy_requires_server(deploying_machine):
    _create(deploying_machine)
    with pytest.raises(ValidationFailed):
        deploying_machine.deploy("LIC-1")


# -------------------------------------------------------------- scenario
def test_license_lifecycle_scenario(machine, db, clock):
    _create(machine, days=30)

    _, payload, _ = machine.provision("LIC-1", HW_A)
    assert payload["st"] == "1"

    with pytest.raises(SecurityMismatchError):
        machine.provision("LIC-1", HW_B)

    lic = machine.extend("LIC-1", 10)
    assert lic.expires_at == T0 + timedelta(days=40)

    clock.advance(hours=13)
    suspended = HeartbeatMonitor(session_factory=SessionLocal, clock=clock).sweep()
    assert suspended == ["LIC-1"]

    db.expire_all()
    result = machine.verify("LIC-1", HW_A)
    assert result["valid"] is True
    assert result["status"] == "suspended"
    assert result["license"]["st"] == "0"
