# app/api/servers.py
# -*- coding: utf-8 -*-
"""
Servers API (Admin)
-------------------
SSH targets the license agent gets deployed to. Passwords are write-only.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import admin_machine, admin_repo, server_to_dict
from app.engine.license_machine import LicenseStateMachine
from app.engine.repository import Repository
from app.models.server_model import Server
from app.utils.exceptions import ConflictError, HWLockException

router = APIRouter(prefix="/admin/api/servers", tags=["admin/servers"])

MASKED_PASSWORD = "********"


# ---- Pydantic schemas ----------------------------------------------------
class ServerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(22, ge=1, le=65535)
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=255)


class ServerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    host: Optional[str] = Field(None, min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    username: Optional[str] = Field(None, min_length=1, max_length=100)
    password: Optional[str] = Field(None, max_length=255)


# --------------------------------------------------------------------------
# ROUTES
# --------------------------------------------------------------------------
@router.get("")
def list_servers(repo: Repository = Depends(admin_repo)):
    return {"servers": [server_to_dict(s) for s in repo.list_servers()]}


@router.post("", status_code=201)
def create_server(data: ServerIn, repo: Repository = Depends(admin_repo)):
    server = Server(**data.model_dump())
    repo.add(server)
    repo.log("create_server", {"name": server.name, "host": server.host}, server_id=server.id)
    return server_to_dict(server)


@router.get("/{server_id}")
def get_server(server_id: int, repo: Repository = Depends(admin_repo)):
    return server_to_dict(repo.require_server(server_id))


@router.put("/{server_id}")
def update_server(server_id: int, data: ServerUpdate, repo: Repository = Depends(admin_repo)):
    server = repo.require_server(server_id)
    changes = data.model_dump(exclude_none=True)

    # the UI echoes the mask back when the password is left untouched
    if changes.get("password") in ("", MASKED_PASSWORD):
        changes.pop("password")

    if not changes:
        raise HWLockException(422, "No fields to update", error_code="VALIDATION_FAILED")

    for key, value in changes.items():
        setattr(server, key, value)
    repo.save()
    repo.log("update_server", sorted(changes.keys()), server_id=server.id)
    return server_to_dict(server)


@router.delete("/{server_id}")
def delete_server(server_id: int, repo: Repository = Depends(admin_repo)):
    server = repo.require_server(server_id)
    holder = repo.license_on_server(server_id)
    if holder:
        raise ConflictError(f"Server hosts license {holder.license_id}; transfer or delete it first")

    details = {"name": server.name, "host": server.host}
    repo.delete(server)
    repo.log("delete_server", details, server_id=server_id)
    return {"status": "deleted", "server_id": server_id}


@router.post("/{server_id}/test")
def test_connection(server_id: int, machine: LicenseStateMachine = Depends(admin_machine)):
    repo = machine.repo
    server = repo.require_server(server_id)

    probe = machine.deployer.probe(server)
    machine.record_probe(server, probe)
    repo.log("test_connection", {"connected": probe.connected, "error": probe.error}, server_id=server.id)

    return {
        "connected": probe.connected,
        "hardware_id": probe.hardware_id,
        "error": probe.error,
        "server": server_to_dict(server),
    }
