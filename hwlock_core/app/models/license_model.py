# app/models/license_model.py
# -*- coding: utf-8 -*-
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, ForeignKey
from datetime import datetime
from config import Base
import enum


class LicenseStatus(enum.Enum):
    inactive = "inactive"
    active = "active"
    suspended = "suspended"
    expired = "expired"


class License(Base):
    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, index=True)

    # License identity (admin chosen)
    license_id = Column(String(64), unique=True, nullable=False, index=True)

    # Deployment target; unique so one server never hosts two licenses
    server_id = Column(Integer, ForeignKey("servers.id"), unique=True, nullable=True)

    # Hardware binding
    hardware_id = Column(String(64), nullable=True)
    hwid_salt = Column(String(64), nullable=False)

    # Status
    status = Column(Enum(LicenseStatus), default=LicenseStatus.inactive, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    last_verified_at = Column(DateTime, nullable=True)

    # Entitlements
    max_users = Column(Integer, default=100, nullable=False)
    max_sites = Column(Integer, default=1, nullable=False)

    client_id = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    # Cached encrypted payload from the last provision
    signature = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<License {self.license_id} ({self.status.value}) server={self.server_id}>"
