# app/api/activity.py
# -*- coding: utf-8 -*-

import json
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, and_
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.engine.repository import Repository
from app.models.license_model import License, LicenseStatus
from app.models.patch_token_model import PatchToken, PatchStatus
from app.models.server_model import Server
from app.utils.auth import get_current_admin

router = APIRouter(prefix="/admin/api", tags=["admin/activity"])


def _details(raw):
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


# --------------------------
# Activity log
# --------------------------
@router.get("/activity")
def recent_activity(
    limit: int = Query(100, ge=1, le=1000),
    license_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _admin: str = Depends(get_current_admin)
):
    rows = Repository(db).recent_activity(limit=limit, license_id=license_id)
    return [
        {
            "id": r.id,
            "license_id": r.license_id,
            "server_id": r.server_id,
            "actor": r.actor,
            "action": r.action,
            "details": _details(r.details),
            "ip_address": r.ip_address,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]


# --------------------------
# Dashboard Stats Endpoint
# --------------------------
@router.get("/stats")
def dashboard_stats(
    db: Session = Depends(get_db),
    _admin: str = Depends(get_current_admin)
):
    now = datetime.utcnow()

    total_licenses = db.query(func.count(License.id)).scalar() or 0

    by_status = {
        st.value: db.query(func.count(License.id)).filter(License.status == st).scalar() or 0
        for st in LicenseStatus
    }

    total_servers = db.query(func.count(Server.id)).scalar() or 0
    connected_servers = db.query(func.count(Server.id)) \
        .filter(Server.is_connected.is_(True)) \
        .scalar() or 0

    # Licenses expiring soon (next 7 days)
    next_7_days = now + timedelta(days=7)
    expiring_soon = db.query(func.count(License.id)) \
        .filter(License.status == LicenseStatus.active) \
        .filter(
            and_(
                License.expires_at >= now,
                License.expires_at <= next_7_days
            )
        ).scalar() or 0

    pending_tokens = db.query(func.count(PatchToken.id)) \
        .filter(PatchToken.status == PatchStatus.pending) \
        .scalar() or 0

    return {
        "total_licenses": total_licenses,
        "active_licenses": by_status[LicenseStatus.active.value],
        "licenses_by_status": by_status,
        "total_servers": total_servers,
        "connected_servers": connected_servers,
        "expiring_within_7_days": expiring_soon,
        "pending_patch_tokens": pending_tokens,
    }
