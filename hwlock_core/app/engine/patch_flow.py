# app/engine/patch_flow.py
# -*- coding: utf-8 -*-
"""
Patch Activation Flow

Two-phase onboarding of a host the admin cannot reach over SSH:

1. admin issues a single-use token; the host operator runs the public
   /patch-run/{token} script, which reports the raw fingerprint back
   through /patch-activate (token -> used, hardware id recorded);
2. admin turns the used token into an active license bound to that
   hardware id.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.engine import fingerprint
from app.engine.license_machine import LicenseStateMachine
from app.engine.remote_scripts import ScriptBuilder
from app.engine.repository import Repository
from app.models.license_model import License
from app.models.patch_token_model import PatchStatus, PatchToken
from app.utils.exceptions import ConflictError, NotFoundError, ValidationFailed
from app.utils.generator import generate_hwid_salt, generate_patch_token

logger = logging.getLogger(__name__)


class PatchActivationFlow:
    def __init__(self, repo: Repository, machine: Optional[LicenseStateMachine] = None,
                 scripts: Optional[ScriptBuilder] = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.repo = repo
        self.machine = machine or LicenseStateMachine(repo, clock=clock)
        self.scripts = scripts or ScriptBuilder()
        self._clock = clock

    def create_token(self, person_name: str, max_users: int = 100, max_sites: int = 1,
                     duration_days: int = 30, notes: Optional[str] = None) -> PatchToken:
        if not person_name or not person_name.strip():
            raise ValidationFailed("person_name", "must not be empty")
        for field, value in (("max_users", max_users), ("max_sites", max_sites), ("duration_days", duration_days)):
            if value < 1:
                raise ValidationFailed(field, "must be at least 1")

        tok = PatchToken(
            token=generate_patch_token(),
            person_name=person_name.strip(),
            max_users=max_users,
            max_sites=max_sites,
            duration_days=duration_days,
            notes=notes,
            status=PatchStatus.pending,
        )
        self.repo.add(tok, conflict_detail="Token collision, retry")
        self.repo.log("create_patch_token", {"token_id": tok.id, "person_name": tok.person_name})
        return tok

    def _pending(self, token: str) -> PatchToken:
        tok = self.repo.get_token(token)
        if not tok or tok.status == PatchStatus.revoked:
            raise NotFoundError("Invalid or expired token")
        if tok.status != PatchStatus.pending:
            raise ConflictError("Token has already been used")
        return tok

    def run_script(self, token: str, base_url: Optional[str] = None) -> str:
        self._pending(token)
        return self.scripts.patch_run(token, base_url)

    def activate(self, token: str, raw_hwid: str, hostname: Optional[str] = None,
                 ip: Optional[str] = None) -> PatchToken:
        tok = self._pending(token)

        raw = fingerprint.parse_raw(raw_hwid)
        if fingerprint.is_blank_raw(raw):
            raise ValidationFailed("raw_hwid", "no hardware sources reported")

        salt = generate_hwid_salt()
        tok.raw_fingerprint = raw
        tok.hwid_salt = salt
        tok.hardware_id = fingerprint.compute_from_raw(raw, salt)
        tok.activated_hostname = hostname
        tok.activated_ip = ip
        tok.status = PatchStatus.used
        tok.used_at = self._clock()
        self.repo.save()

        self.repo.log(
            "patch_activated",
            {"token_id": tok.id, "hostname": hostname, "hardware_id": tok.hardware_id},
            ip_address=ip,
            actor="agent",
        )
        return tok

    def create_license_from_token(self, token_id: int, license_id: str, max_users: Optional[int] = None,
                                  max_sites: Optional[int] = None, duration_days: Optional[int] = None,
                                  client_id: Optional[str] = None, notes: Optional[str] = None) -> License:
        tok = self.repo.require_token_by_id(token_id)
        if tok.status != PatchStatus.used or not tok.hardware_id:
            raise ValidationFailed("token_id", "token has not been activated")
        if tok.license_id:
            raise ConflictError(f"Token already issued license {tok.license_id}")

        days = duration_days or tok.duration_days
        lic = self.machine.create(
            license_id=license_id,
            expires_at=self._clock() + timedelta(days=days),
            max_users=max_users or tok.max_users,
            max_sites=max_sites or tok.max_sites,
            client_id=client_id,
            notes=notes or f"Issued from patch token for {tok.person_name}",
            hardware_id=tok.hardware_id,
            hwid_salt=tok.hwid_salt,
        )

        tok.license_id = lic.license_id
        self.repo.save()
        self.repo.log("patch_license_issued", {"token_id": tok.id}, license_id=lic.license_id)
        return lic

    def revoke(self, token_id: int) -> PatchToken:
        tok = self.repo.require_token_by_id(token_id)
        if tok.license_id:
            raise ConflictError("Token already issued a license; delete the license instead")
        if tok.status == PatchStatus.revoked:
            return tok
        tok.status = PatchStatus.revoked
        self.repo.save()
        self.repo.log("revoke_patch_token", {"token_id": tok.id})
        return tok
