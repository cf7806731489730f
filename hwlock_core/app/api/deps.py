# app/api/deps.py
# -*- coding: utf-8 -*-
"""
Shared FastAPI dependencies: DB session, engine objects bound to the
request, and the serializers every router returns.
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from config import SessionLocal
from app.engine.license_machine import LicenseStateMachine
from app.engine.patch_flow import PatchActivationFlow
from app.engine.repository import Repository
from app.utils.auth import get_current_admin

# Safe inside URLs, JSON bodies and shell words without escaping
LICENSE_ID_PATTERN = r"^[A-Za-z0-9._-]{1,64}$"


# ---- DB dependency -------------------------------------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ---- engine objects ------------------------------------------------------
def admin_repo(db: Session = Depends(get_db), admin: str = Depends(get_current_admin)) -> Repository:
    return Repository(db, actor=admin)


def admin_machine(request: Request, repo: Repository = Depends(admin_repo)) -> LicenseStateMachine:
    return LicenseStateMachine(repo, deployer=request.app.state.deployer)


def agent_machine(db: Session = Depends(get_db)) -> LicenseStateMachine:
    return LicenseStateMachine(Repository(db, actor="agent"))


def admin_patch_flow(request: Request, repo: Repository = Depends(admin_repo)) -> PatchActivationFlow:
    return PatchActivationFlow(repo, scripts=request.app.state.scripts)


def public_patch_flow(request: Request, db: Session = Depends(get_db)) -> PatchActivationFlow:
    return PatchActivationFlow(Repository(db, actor="agent"), scripts=request.app.state.scripts)


# ---- serializers ---------------------------------------------------------
def _iso(value):
    return value.isoformat() if value else None


def license_to_dict(L) -> dict:
    return {
        "id": L.id,
        "license_id": L.license_id,
        "server_id": L.server_id,
        "hardware_id": L.hardware_id,
        "status": L.status.value,
        "expires_at": _iso(L.expires_at),
        "last_verified_at": _iso(L.last_verified_at),
        "max_users": L.max_users,
        "max_sites": L.max_sites,
        "client_id": L.client_id,
        "notes": L.notes,
        "created_at": _iso(L.created_at),
        "updated_at": _iso(L.updated_at),
    }


def server_to_dict(S) -> dict:
    return {
        "id": S.id,
        "name": S.name,
        "host": S.host,
        "port": S.port,
        "username": S.username,
        "password": "********",
        "is_connected": bool(S.is_connected),
        "last_checked": _iso(S.last_checked),
        "hardware_id": S.hardware_id,
        "created_at": _iso(S.created_at),
    }


def token_to_dict(T) -> dict:
    return {
        "id": T.id,
        "token": T.token,
        "person_name": T.person_name,
        "max_users": T.max_users,
        "max_sites": T.max_sites,
        "duration_days": T.duration_days,
        "status": T.status.value,
        "notes": T.notes,
        "activated_hostname": T.activated_hostname,
        "activated_ip": T.activated_ip,
        "hardware_id": T.hardware_id,
        "license_id": T.license_id,
        "used_at": _iso(T.used_at),
        "created_at": _iso(T.created_at),
    }


def deploy_to_dict(result) -> Optional[dict]:
    return result.as_dict() if result is not None else None
