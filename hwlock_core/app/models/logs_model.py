# -*- coding: utf-8 -*-
"""
ActivityLog Model
-----------------
Append-only audit trail for license, server and token events:
provisioning, verification, hardware mismatches, deployments,
heartbeat suspensions and admin edits.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime
from config import Base
import json
import logging

logger = logging.getLogger(__name__)


class ActivityLog(Base):
    """
    One audited event. Rows are only ever inserted.
    """

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Business license id (string), kept even after the license is detached
    license_id = Column(String(64), nullable=True, index=True)
    server_id = Column(Integer, nullable=True)

    # Admin username, "system" (background tasks) or "agent" (remote calls)
    actor = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False)
    details = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)


def log_event(db_session, action, details=None, license_id=None, server_id=None, actor=None, ip_address=None):
    """
    Store an audit record. Dict/list details are serialized to JSON.
    Audit failures are logged and never break the calling operation.
    """
    if isinstance(details, (dict, list)):
        details = json.dumps(details, default=str)
    elif details is not None:
        details = str(details)

    try:
        entry = ActivityLog(
            license_id=license_id,
            server_id=server_id,
            actor=actor,
            action=action,
            details=details,
            ip_address=ip_address,
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    except Exception:
        db_session.rollback()
        logger.exception("Failed to store audit event %s", action)
        return None
