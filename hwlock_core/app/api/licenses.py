# app/api/licenses.py
# -*- coding: utf-8 -*-
"""
Licenses API (Admin)
--------------------
Create / list / view / edit / extend / transfer / status / delete licenses
and push or remove the agent on the bound server.

Every change is committed first; deploy results are reported next to it.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from config import PUBLIC_BASE_URL, EXCHANGE_MAX_TTL_SECONDS
from app.api.deps import (
    LICENSE_ID_PATTERN,
    admin_machine,
    deploy_to_dict,
    license_to_dict,
)
from app.engine.license_machine import LicenseStateMachine
from app.models.license_model import LicenseStatus
from app.utils.exceptions import ValidationFailed

router = APIRouter(prefix="/admin/api/licenses", tags=["admin/licenses"])


# ---- Pydantic schemas ----------------------------------------------------
class LicenseCreate(BaseModel):
    license_id: str = Field(..., pattern=LICENSE_ID_PATTERN)
    expires_at: Optional[datetime] = None
    duration_days: int = Field(365, ge=1)
    max_users: int = Field(100, ge=1)
    max_sites: int = Field(1, ge=1)
    server_id: Optional[int] = None
    client_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class LicenseEdit(BaseModel):
    max_users: Optional[int] = None
    max_sites: Optional[int] = None
    notes: Optional[str] = None
    client_id: Optional[str] = Field(None, max_length=100)
    expires_at: Optional[datetime] = None


class StatusIn(BaseModel):
    status: LicenseStatus
    force: bool = False


class ExtendIn(BaseModel):
    days: int


class TransferIn(BaseModel):
    server_id: int


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# --------------------------------------------------------------------------
# ROUTES
# --------------------------------------------------------------------------
@router.get("")
def list_licenses(
    status: Optional[LicenseStatus] = Query(None),
    machine: LicenseStateMachine = Depends(admin_machine)
):
    items = machine.repo.list_licenses(status)
    return {"total": len(items), "licenses": [license_to_dict(L) for L in items]}


@router.post("", status_code=201)
def create_license(data: LicenseCreate, machine: LicenseStateMachine = Depends(admin_machine)):
    expires_at = _naive_utc(data.expires_at) or datetime.utcnow() + timedelta(days=data.duration_days)
    lic = machine.create(
        license_id=data.license_id,
        expires_at=expires_at,
        max_users=data.max_users,
        max_sites=data.max_sites,
        server_id=data.server_id,
        client_id=data.client_id,
        notes=data.notes,
    )
    return license_to_dict(lic)


@router.get("/{license_id}")
def get_license(license_id: str, machine: LicenseStateMachine = Depends(admin_machine)):
    return license_to_dict(machine.repo.require_license(license_id))


@router.patch("/{license_id}")
def edit_license(license_id: str, data: LicenseEdit, machine: LicenseStateMachine = Depends(admin_machine)):
    changes = data.model_dump(exclude_none=True)
    if "expires_at" in changes:
        changes["expires_at"] = _naive_utc(changes["expires_at"])
    return license_to_dict(machine.edit_fields(license_id, changes))


@router.patch("/{license_id}/status")
def change_status(license_id: str, data: StatusIn, machine: LicenseStateMachine = Depends(admin_machine)):
    lic, result = machine.set_status(license_id, data.status, force=data.force)
    return {"license": license_to_dict(lic), "deploy": deploy_to_dict(result)}


@router.post("/{license_id}/extend")
def extend_license(license_id: str, data: ExtendIn, machine: LicenseStateMachine = Depends(admin_machine)):
    return license_to_dict(machine.extend(license_id, data.days))


@router.post("/{license_id}/transfer")
def transfer_license(license_id: str, data: TransferIn, machine: LicenseStateMachine = Depends(admin_machine)):
    lic, results = machine.transfer(license_id, data.server_id)
    return {
        "license": license_to_dict(lic),
        "undeploy": deploy_to_dict(results.get("undeploy")),
        "deploy": deploy_to_dict(results.get("deploy")),
    }


@router.post("/{license_id}/deploy")
def deploy_license(license_id: str, machine: LicenseStateMachine = Depends(admin_machine)):
    result = machine.deploy(license_id)
    return {"license": license_to_dict(machine.repo.require_license(license_id)), "deploy": result.as_dict()}


@router.post("/{license_id}/undeploy")
def undeploy_license(license_id: str, machine: LicenseStateMachine = Depends(admin_machine)):
    result = machine.undeploy(license_id)
    return {"license_id": license_id, "undeploy": result.as_dict()}


@router.post("/{license_id}/install-link")
def create_install_link(
    license_id: str,
    request: Request,
    ttl: int = Query(EXCHANGE_MAX_TTL_SECONDS, ge=1),
    machine: LicenseStateMachine = Depends(admin_machine)
):
    lic = machine.repo.require_license(license_id)
    if lic.status in (LicenseStatus.suspended, LicenseStatus.expired):
        raise ValidationFailed("status", f"license is {lic.status.value}")

    script = request.app.state.scripts.install_script(lic.license_id, lic.hwid_salt)
    exchange = request.app.state.exchange
    key = exchange.put(script.encode("utf-8"), ttl)
    machine.repo.log("install_link_created", {"ttl": min(ttl, exchange.max_ttl)}, license_id=lic.license_id)

    url = f"{PUBLIC_BASE_URL}/exchange/{key}"
    return {
        "key": key,
        "url": url,
        "expires_in": min(ttl, exchange.max_ttl),
        "command": f"curl -fsSL {url} | sudo bash",
    }


@router.delete("/{license_id}")
def delete_license(license_id: str, machine: LicenseStateMachine = Depends(admin_machine)):
    lic, result = machine.delete(license_id)
    return {"license": license_to_dict(lic), "undeploy": deploy_to_dict(result)}
