# app/api/provisioning.py
# -*- coding: utf-8 -*-
"""
License provisioning API
------------------------
Endpoints called from licensed hosts:

    POST /provision               bind hardware id, get payload + scripts
    POST /verify                  periodic verification (heartbeat)
    GET  /license-data/{id}       agent refresh, X-Agent-Token protected
    GET  /license-blob/{id}       encrypted payload blob, X-Agent-Token protected

and the admin-only full install script:

    GET  /install-script/{id}
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, field_validator

from app.api.deps import LICENSE_ID_PATTERN, admin_machine, agent_machine, client_ip
from app.engine import fingerprint
from app.engine.license_machine import LicenseStateMachine
from app.utils.signer import require_agent_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["provisioning"])


# ---- Pydantic schemas ----------------------------------------------------
class HardwareClaim(BaseModel):
    license_id: str = Field(..., pattern=LICENSE_ID_PATTERN)
    hardware_id: str

    @field_validator("hardware_id")
    @classmethod
    def normalize_hardware_id(cls, value: str) -> str:
        if not fingerprint.is_valid_hwid(value):
            raise ValueError("must be a 64-character hex hardware id")
        return value.lower()


# --------------------------------------------------------------------------
# PUBLIC
# --------------------------------------------------------------------------
@router.post("/provision")
def provision(data: HardwareClaim, request: Request, machine: LicenseStateMachine = Depends(agent_machine)):
    hwid = data.hardware_id
    lic, payload, blob = machine.provision(data.license_id, hwid, ip_address=client_ip(request))

    scripts = request.app.state.scripts
    logger.info("Provisioned %s", lic.license_id)
    return {
        "license": payload,
        "encrypted_blob": blob,
        "scripts": {
            "agent": scripts.agent(lic.license_id, hwid),
            "verify": scripts.verify(lic.license_id, lic.hwid_salt),
            "deploy": scripts.deploy_bundle(lic.license_id, hwid, lic.hwid_salt),
        },
    }


@router.post("/verify")
def verify(data: HardwareClaim, request: Request, machine: LicenseStateMachine = Depends(agent_machine)):
    return machine.verify(data.license_id, data.hardware_id, ip_address=client_ip(request))


@router.get("/license-data/{license_id}")
def license_data(
    license_id: str,
    token: str = Depends(require_agent_token),
    machine: LicenseStateMachine = Depends(agent_machine)
):
    return machine.license_data(license_id, token)


@router.get("/license-blob/{license_id}", response_class=PlainTextResponse)
def license_blob(
    license_id: str,
    token: str = Depends(require_agent_token),
    machine: LicenseStateMachine = Depends(agent_machine)
):
    return PlainTextResponse(machine.license_blob(license_id, token))


# --------------------------------------------------------------------------
# ADMIN
# --------------------------------------------------------------------------
@router.get("/install-script/{license_id}", response_class=PlainTextResponse)
def install_script(license_id: str, request: Request, machine: LicenseStateMachine = Depends(admin_machine)):
    lic = machine.repo.require_license(license_id)
    machine.repo.log("install_script_downloaded", None, license_id=lic.license_id)
    return PlainTextResponse(
        request.app.state.scripts.install_script(lic.license_id, lic.hwid_salt),
        media_type="text/x-shellscript",
    )
