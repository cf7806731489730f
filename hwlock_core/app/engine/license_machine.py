# app/engine/license_machine.py
# -*- coding: utf-8 -*-
"""
License State Machine
---------------------
inactive -> active -> {suspended, expired}
suspended -> active          (admin)
expired                      terminal unless forced by an admin

Hardware binding is first-bind-wins: once a license carries a hardware_id,
only transfer() changes it. Every mutation is written to the activity log.

Remote side effects (deploy / undeploy) run after the database commit and
never roll it back; their outcome is returned next to the license.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from app.engine import fingerprint
from app.engine.deployer import DeployResult
from app.engine.payload_codec import PayloadCodec, payload_for_license
from app.engine.repository import Repository
from app.models.license_model import License, LicenseStatus
from app.utils.exceptions import (
    ConflictError,
    HWLockException,
    LicenseExpiredError,
    LicenseSuspendedError,
    NotProvisionedError,
    SecurityMismatchError,
    ValidationFailed,
)
from app.utils.generator import generate_hwid_salt
from app.utils.signer import verify_agent_token

logger = logging.getLogger(__name__)

# status -> statuses an admin may move to without force
TRANSITIONS = {
    LicenseStatus.inactive: {LicenseStatus.active, LicenseStatus.suspended, LicenseStatus.expired},
    LicenseStatus.active: {LicenseStatus.suspended, LicenseStatus.expired, LicenseStatus.inactive},
    LicenseStatus.suspended: {LicenseStatus.active, LicenseStatus.expired, LicenseStatus.inactive},
    LicenseStatus.expired: set(),
}

EDITABLE_FIELDS = ("max_users", "max_sites", "notes", "client_id", "expires_at")


class LicenseStateMachine:
    def __init__(self, repo: Repository, deployer=None, codec: Optional[PayloadCodec] = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.repo = repo
        self.deployer = deployer
        self.codec = codec or PayloadCodec()
        self._clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _is_past_expiry(self, lic: License) -> bool:
        return lic.expires_at is not None and lic.expires_at <= self._clock()

    def _mark_expired(self, lic: License, source: str) -> None:
        if lic.status == LicenseStatus.expired:
            return
        lic.status = LicenseStatus.expired
        self.repo.save()
        self.repo.log("license_expired", {"source": source, "expires_at": lic.expires_at},
                      license_id=lic.license_id, server_id=lic.server_id)

    def _payload_and_blob(self, lic: License, status=None) -> Tuple[dict, str]:
        payload = payload_for_license(lic, status=status)
        return payload.to_wire(), self.codec.encrypt(payload)

    def _audit_mismatch(self, action: str, lic: License, presented: str, ip_address: Optional[str]) -> None:
        logger.warning("Hardware mismatch on %s for license %s", action, lic.license_id)
        self.repo.log(
            action,
            {"bound_hardware_id": lic.hardware_id, "presented_hardware_id": presented},
            license_id=lic.license_id,
            server_id=lic.server_id,
            ip_address=ip_address,
        )

    def _audit_verify(self, action: str, lic: License, ip_address: Optional[str]) -> None:
        self.repo.log(action, {"status": lic.status.value}, license_id=lic.license_id,
                      server_id=lic.server_id, ip_address=ip_address)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create(self, license_id: str, expires_at: datetime, max_users: int = 100, max_sites: int = 1,
               server_id: Optional[int] = None, client_id: Optional[str] = None,
               notes: Optional[str] = None, hardware_id: Optional[str] = None,
               hwid_salt: Optional[str] = None) -> License:
        if self.repo.get_license(license_id):
            raise ConflictError(f"License ID {license_id} already exists")
        if expires_at <= self._clock():
            raise ValidationFailed("expires_at", "must be in the future")

        salt = hwid_salt or generate_hwid_salt()
        hwid = hardware_id

        if server_id is not None:
            server = self.repo.require_server(server_id)
            holder = self.repo.license_on_server(server_id)
            if holder:
                raise ConflictError(f"Server already hosts license {holder.license_id}")
            if hwid is None and server.raw_fingerprint and not fingerprint.is_blank_raw(server.raw_fingerprint):
                hwid = fingerprint.compute_from_raw(server.raw_fingerprint, salt)

        lic = License(
            license_id=license_id,
            server_id=server_id,
            hardware_id=hwid,
            hwid_salt=salt,
            status=LicenseStatus.active if hwid else LicenseStatus.inactive,
            expires_at=expires_at,
            max_users=max_users,
            max_sites=max_sites,
            client_id=client_id,
            notes=notes,
        )
        self.repo.add(lic, conflict_detail="License ID or server already in use")
        self.repo.log(
            "create_license",
            {"status": lic.status.value, "expires_at": expires_at, "bound": bool(hwid)},
            license_id=license_id,
            server_id=server_id,
        )
        return lic

    # ------------------------------------------------------------------
    # provision / verify (remote self-reports)
    # ------------------------------------------------------------------
    def provision(self, license_id: str, hardware_id: str, ip_address: Optional[str] = None) -> Tuple[License, dict, str]:
        lic = self.repo.require_license(license_id)

        if lic.status == LicenseStatus.expired or self._is_past_expiry(lic):
            self._mark_expired(lic, "provision")
            raise LicenseExpiredError()

        if lic.status == LicenseStatus.suspended:
            raise LicenseSuspendedError("License is suspended; an administrator must reactivate it")

        if lic.hardware_id and lic.hardware_id != hardware_id:
            self._audit_mismatch("provision_hwid_mismatch", lic, hardware_id, ip_address)
            raise SecurityMismatchError()

        first_bind = lic.hardware_id is None
        lic.hardware_id = hardware_id
        lic.status = LicenseStatus.active
        lic.last_verified_at = self._clock()
        payload, blob = self._payload_and_blob(lic)
        lic.signature = blob
        self.repo.save()

        self.repo.log(
            "provision_license",
            {"hardware_id": hardware_id, "first_bind": first_bind},
            license_id=lic.license_id,
            server_id=lic.server_id,
            ip_address=ip_address,
        )
        return lic, payload, blob

    def verify(self, license_id: str, hardware_id: str, ip_address: Optional[str] = None) -> Dict:
        lic = self.repo.require_license(license_id)

        if not lic.hardware_id:
            raise NotProvisionedError()

        if lic.hardware_id != hardware_id:
            self._audit_mismatch("verify_hwid_mismatch", lic, hardware_id, ip_address)
            raise SecurityMismatchError()

        if lic.status == LicenseStatus.expired or self._is_past_expiry(lic):
            self._mark_expired(lic, "verify")
            self._audit_verify("verify_expired", lic, ip_address)
            return {"valid": False, "status": LicenseStatus.expired.value}

        if lic.status == LicenseStatus.suspended:
            self._audit_verify("verify_suspended", lic, ip_address)
            payload, blob = self._payload_and_blob(lic)
            return {"valid": True, "status": lic.status.value, "license": payload, "encrypted_blob": blob}

        if lic.status == LicenseStatus.inactive:
            return {"valid": False, "status": lic.status.value}

        lic.last_verified_at = self._clock()
        self.repo.save()
        self._audit_verify("verify_success", lic, ip_address)
        payload, blob = self._payload_and_blob(lic)
        return {"valid": True, "status": lic.status.value, "license": payload, "encrypted_blob": blob}

    def _agent_license(self, license_id: str, agent_token: str, source: str) -> License:
        lic = self.repo.require_license(license_id)

        if not lic.hardware_id:
            raise NotProvisionedError()

        if not verify_agent_token(agent_token, lic.license_id, lic.hardware_id):
            raise HWLockException(403, "Agent token rejected", error_code="AGENT_TOKEN_INVALID")

        if lic.status == LicenseStatus.expired or self._is_past_expiry(lic):
            self._mark_expired(lic, source)
            raise LicenseExpiredError()

        if lic.status == LicenseStatus.inactive:
            raise HWLockException(403, "License is not active", error_code="LICENSE_INACTIVE")
        return lic

    def license_data(self, license_id: str, agent_token: str) -> dict:
        """Raw payload fields for a deployed agent."""
        lic = self._agent_license(license_id, agent_token, "license_data")
        return payload_for_license(lic).to_wire()

    def license_blob(self, license_id: str, agent_token: str) -> str:
        """Encrypted payload blob for an agent refreshing its local copy."""
        lic = self._agent_license(license_id, agent_token, "license_blob")
        return self.codec.encrypt(payload_for_license(lic))

    # ------------------------------------------------------------------
    # admin edits
    # ------------------------------------------------------------------
    def extend(self, license_id: str, days: int) -> License:
        if days is None or days < 1:
            raise ValidationFailed("days", "must be at least 1")
        lic = self.repo.require_license(license_id)
        previous = lic.expires_at
        lic.expires_at = previous + timedelta(days=days)
        self.repo.save()
        self.repo.log("extend_license", {"days": days, "from": previous, "to": lic.expires_at},
                      license_id=lic.license_id, server_id=lic.server_id)
        return lic

    def edit_fields(self, license_id: str, changes: dict) -> License:
        updates = {k: v for k, v in (changes or {}).items() if k in EDITABLE_FIELDS and v is not None}
        if not updates:
            raise ValidationFailed("body", "no editable fields supplied")
        for key in ("max_users", "max_sites"):
            if key in updates and updates[key] < 1:
                raise ValidationFailed(key, "must be at least 1")

        lic = self.repo.require_license(license_id)
        for key, value in updates.items():
            setattr(lic, key, value)
        self.repo.save()
        self.repo.log("edit_license", updates, license_id=lic.license_id, server_id=lic.server_id)
        return lic

    def set_status(self, license_id: str, status: LicenseStatus, force: bool = False):
        lic = self.repo.require_license(license_id)
        previous = lic.status

        if status != previous and not force and status not in TRANSITIONS[previous]:
            raise ValidationFailed("status", f"cannot move from {previous.value} to {status.value}")
        if status == LicenseStatus.active and self._is_past_expiry(lic) and not force:
            raise ValidationFailed("status", "license is past its expiry; extend it first")

        lic.status = status
        self.repo.save()
        self.repo.log("status_change", {"from": previous.value, "to": status.value, "force": force},
                      license_id=lic.license_id, server_id=lic.server_id)

        result = None
        if lic.server_id and lic.hardware_id and self.deployer is not None:
            result = self.deploy(lic.license_id)
        return lic, result

    def transfer(self, license_id: str, server_id: int):
        lic = self.repo.require_license(license_id)
        server = self.repo.require_server(server_id)

        holder = self.repo.license_on_server(server_id)
        if holder and holder.id != lic.id:
            raise ConflictError(f"Server already hosts license {holder.license_id}")

        old_server_id = lic.server_id
        old_hardware_id = lic.hardware_id
        lic.server_id = server.id
        if server.raw_fingerprint and not fingerprint.is_blank_raw(server.raw_fingerprint):
            lic.hardware_id = fingerprint.compute_from_raw(server.raw_fingerprint, lic.hwid_salt)
        else:
            lic.hardware_id = None
        lic.signature = None
        self.repo.save("Server already hosts a license")

        self.repo.log(
            "transfer_license",
            {"from_server": old_server_id, "to_server": server.id,
             "old_hardware_id": old_hardware_id, "new_hardware_id": lic.hardware_id},
            license_id=lic.license_id,
            server_id=server.id,
        )

        results = {}
        if lic.status == LicenseStatus.active and self.deployer is not None:
            if old_server_id and old_server_id != server.id:
                old_server = self.repo.get_server(old_server_id)
                if old_server:
                    results["undeploy"] = self._undeploy_from(lic, old_server)
            results["deploy"] = self.deploy(lic.license_id)
        return lic, results

    def delete(self, license_id: str):
        lic = self.repo.require_license(license_id)
        old_server_id = lic.server_id
        lic.status = LicenseStatus.suspended
        lic.server_id = None
        self.repo.save()
        self.repo.log("delete_license", {"detached_server": old_server_id},
                      license_id=lic.license_id, server_id=old_server_id)

        result = None
        if old_server_id and self.deployer is not None:
            server = self.repo.get_server(old_server_id)
            if server:
                result = self._undeploy_from(lic, server)
        return lic, result

    # ------------------------------------------------------------------
    # remote side effects
    # ------------------------------------------------------------------
    def _require_deployer(self):
        if self.deployer is None:
            raise HWLockException(503, "Deployment is not configured", error_code="DEPLOYER_UNAVAILABLE")
        return self.deployer

    def deploy(self, license_id: str):
        """
        Probe the bound server, check (or establish) the hardware binding,
        then ship the agent bundle. Returns a DeployResult.
        """
        deployer = self._require_deployer()
        lic = self.repo.require_license(license_id)
        if not lic.server_id:
            raise ValidationFailed("server_id", "license is not bound to a server")
        server = self.repo.require_server(lic.server_id)

        probe = deployer.probe(server)
        self.record_probe(server, probe)
        if not probe.connected:
            result = DeployResult(success=False, error=probe.error or "Connection failed")
            self._log_deploy(lic, server, result)
            return result
        if fingerprint.is_blank_raw(probe.raw_fingerprint):
            result = DeployResult(success=False, error="Could not read hardware fingerprint on target")
            self._log_deploy(lic, server, result)
            return result

        hwid = fingerprint.compute_from_raw(probe.raw_fingerprint, lic.hwid_salt)
        if lic.hardware_id and lic.hardware_id != hwid:
            self._audit_mismatch("deploy_hwid_mismatch", lic, hwid, None)
            result = DeployResult(success=False, hardware_id=hwid,
                                  error="Hardware ID mismatch - target does not match the bound license")
            self._log_deploy(lic, server, result)
            return result

        if not lic.hardware_id:
            lic.hardware_id = hwid
            if lic.status == LicenseStatus.inactive:
                lic.status = LicenseStatus.active
                lic.last_verified_at = self._clock()
            self.repo.save()
            self.repo.log("bind_hardware", {"hardware_id": hwid, "source": "deploy"},
                          license_id=lic.license_id, server_id=server.id)

        result = deployer.deploy(server, lic, hardware_id=hwid)
        self._log_deploy(lic, server, result)
        return result

    def undeploy(self, license_id: str):
        self._require_deployer()
        lic = self.repo.require_license(license_id)
        if not lic.server_id:
            raise ValidationFailed("server_id", "license is not bound to a server")
        server = self.repo.require_server(lic.server_id)
        return self._undeploy_from(lic, server)

    def _undeploy_from(self, lic: License, server):
        result = self.deployer.undeploy(server)
        action = "undeploy_license" if result.success else "undeploy_failed"
        self.repo.log(action, {"error": result.error}, license_id=lic.license_id, server_id=server.id)
        return result

    def _log_deploy(self, lic: License, server, result) -> None:
        action = "deploy_license" if result.success else "deploy_failed"
        if not result.success:
            logger.warning("Deploy of %s to server %s failed: %s", lic.license_id, server.id, result.error)
        self.repo.log(action, {"error": result.error, "hardware_id": result.hardware_id},
                      license_id=lic.license_id, server_id=server.id)

    def record_probe(self, server, probe) -> None:
        server.is_connected = bool(probe.connected)
        server.last_checked = self._clock()
        if probe.connected and not fingerprint.is_blank_raw(probe.raw_fingerprint):
            server.raw_fingerprint = probe.raw_fingerprint
            server.hardware_id = fingerprint.unsalted_id(probe.raw_fingerprint)
        self.repo.save()
