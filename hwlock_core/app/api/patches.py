# app/api/patches.py
# -*- coding: utf-8 -*-
"""
Patch tokens: admin issuance plus the two public onboarding endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from app.api.deps import (
    LICENSE_ID_PATTERN,
    admin_patch_flow,
    client_ip,
    license_to_dict,
    public_patch_flow,
    token_to_dict,
)
from app.engine.patch_flow import PatchActivationFlow

router = APIRouter(prefix="/admin/api/patches", tags=["admin/patches"])
public_router = APIRouter(tags=["patch-activation"])


# ---- Pydantic schemas ----------------------------------------------------
class PatchTokenIn(BaseModel):
    person_name: str = Field(..., min_length=1, max_length=150)
    max_users: int = Field(100, ge=1)
    max_sites: int = Field(1, ge=1)
    duration_days: int = Field(30, ge=1)
    notes: Optional[str] = None


class PatchLicenseIn(BaseModel):
    license_id: str = Field(..., pattern=LICENSE_ID_PATTERN)
    max_users: Optional[int] = Field(None, ge=1)
    max_sites: Optional[int] = Field(None, ge=1)
    duration_days: Optional[int] = Field(None, ge=1)
    client_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


# --------------------------------------------------------------------------
# ADMIN
# --------------------------------------------------------------------------
@router.get("")
def list_tokens(flow: PatchActivationFlow = Depends(admin_patch_flow)):
    return {"tokens": [token_to_dict(t) for t in flow.repo.list_tokens()]}


@router.post("", status_code=201)
def create_token(data: PatchTokenIn, flow: PatchActivationFlow = Depends(admin_patch_flow)):
    tok = flow.create_token(**data.model_dump())
    out = token_to_dict(tok)
    out["run_command"] = f"curl -fsSL {flow.scripts.base_url}/patch-run/{tok.token} | bash"
    return out


@router.post("/{token_id}/license", status_code=201)
def issue_license(token_id: int, data: PatchLicenseIn, flow: PatchActivationFlow = Depends(admin_patch_flow)):
    lic = flow.create_license_from_token(token_id, **data.model_dump())
    return license_to_dict(lic)


@router.delete("/{token_id}")
def revoke_token(token_id: int, flow: PatchActivationFlow = Depends(admin_patch_flow)):
    return token_to_dict(flow.revoke(token_id))


# --------------------------------------------------------------------------
# PUBLIC
# --------------------------------------------------------------------------
@public_router.get("/patch-run/{token}", response_class=PlainTextResponse)
def patch_run(token: str, flow: PatchActivationFlow = Depends(public_patch_flow)):
    return PlainTextResponse(flow.run_script(token), media_type="text/x-shellscript")


@public_router.get("/patch-activate")
def patch_activate(
    request: Request,
    token: str = Query(...),
    raw_hwid: str = Query(...),
    hostname: Optional[str] = Query(None),
    ip: Optional[str] = Query(None),
    flow: PatchActivationFlow = Depends(public_patch_flow)
):
    tok = flow.activate(token, raw_hwid, hostname=hostname, ip=ip or client_ip(request))
    return {
        "status": "activated",
        "hostname": tok.activated_hostname,
        "message": "Host registered. The administrator will issue your license.",
    }
