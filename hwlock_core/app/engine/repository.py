# app/engine/repository.py
# -*- coding: utf-8 -*-
"""
Persistence interface for the license engine.

Wraps one SQLAlchemy Session: lookups that raise NotFoundError,
commits that turn IntegrityError into ConflictError, and the
append-only activity log writer.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.license_model import License, LicenseStatus
from app.models.logs_model import ActivityLog, log_event
from app.models.patch_token_model import PatchToken
from app.models.server_model import Server
from app.utils.exceptions import ConflictError, NotFoundError


class Repository:
    def __init__(self, db: Session, actor: Optional[str] = None):
        self.db = db
        self.actor = actor

    # ---- licenses --------------------------------------------------------
    def get_license(self, license_id: str) -> Optional[License]:
        return self.db.query(License).filter(License.license_id == license_id).first()

    def require_license(self, license_id: str) -> License:
        lic = self.get_license(license_id)
        if not lic:
            raise NotFoundError("License not found")
        return lic

    def license_on_server(self, server_id: int) -> Optional[License]:
        return self.db.query(License).filter(License.server_id == server_id).first()

    def list_licenses(self, status: Optional[LicenseStatus] = None) -> List[License]:
        q = self.db.query(License)
        if status is not None:
            q = q.filter(License.status == status)
        return q.order_by(License.created_at.desc(), License.id.desc()).all()

    def heartbeat_candidates(self) -> List[License]:
        return (
            self.db.query(License)
            .filter(License.status == LicenseStatus.active, License.last_verified_at.isnot(None))
            .all()
        )

    def suspend_if_silent(self, pk: int, cutoff: datetime) -> bool:
        """Suspend one license still active and last verified before cutoff."""
        updated = (
            self.db.query(License)
            .filter(
                License.id == pk,
                License.status == LicenseStatus.active,
                License.last_verified_at < cutoff,
            )
            .update({License.status: LicenseStatus.suspended}, synchronize_session=False)
        )
        return updated == 1

    # ---- servers ---------------------------------------------------------
    def get_server(self, server_id: int) -> Optional[Server]:
        return self.db.query(Server).filter(Server.id == server_id).first()

    def require_server(self, server_id: int) -> Server:
        srv = self.get_server(server_id)
        if not srv:
            raise NotFoundError("Server not found")
        return srv

    def list_servers(self) -> List[Server]:
        return self.db.query(Server).order_by(Server.id).all()

    def delete(self, obj) -> None:
        self.db.delete(obj)
        self.save()

    # ---- patch tokens ----------------------------------------------------
    def get_token(self, token: str) -> Optional[PatchToken]:
        return self.db.query(PatchToken).filter(PatchToken.token == token).first()

    def require_token_by_id(self, token_id: int) -> PatchToken:
        tok = self.db.query(PatchToken).filter(PatchToken.id == token_id).first()
        if not tok:
            raise NotFoundError("Patch token not found")
        return tok

    def list_tokens(self) -> List[PatchToken]:
        return self.db.query(PatchToken).order_by(PatchToken.created_at.desc(), PatchToken.id.desc()).all()

    # ---- writes ----------------------------------------------------------
    def add(self, obj, conflict_detail: str = "Duplicate record"):
        self.db.add(obj)
        self.save(conflict_detail)
        self.db.refresh(obj)
        return obj

    def save(self, conflict_detail: str = "Conflicting update") -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(conflict_detail)

    # ---- activity log ----------------------------------------------------
    def log(self, action: str, details=None, license_id: Optional[str] = None,
            server_id: Optional[int] = None, actor: Optional[str] = None,
            ip_address: Optional[str] = None) -> Optional[ActivityLog]:
        return log_event(
            self.db,
            action=action,
            details=details,
            license_id=license_id,
            server_id=server_id,
            actor=actor or self.actor,
            ip_address=ip_address,
        )

    def recent_activity(self, limit: int = 100, license_id: Optional[str] = None) -> List[ActivityLog]:
        q = self.db.query(ActivityLog)
        if license_id:
            q = q.filter(ActivityLog.license_id == license_id)
        return q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
