from sqlalchemy import Column, Integer, String, DateTime, Enum, Text
from datetime import datetime
from config import Base
import enum


class PatchStatus(enum.Enum):
    pending = "pending"
    used = "used"
    revoked = "revoked"


class PatchToken(Base):
    __tablename__ = "patch_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    person_name = Column(String(150), nullable=False)

    # Defaults applied when an admin issues the license
    max_users = Column(Integer, default=100, nullable=False)
    max_sites = Column(Integer, default=1, nullable=False)
    duration_days = Column(Integer, default=30, nullable=False)

    status = Column(Enum(PatchStatus), default=PatchStatus.pending, nullable=False)
    notes = Column(Text, nullable=True)

    # Filled by the public activation call
    activated_hostname = Column(String(255), nullable=True)
    activated_ip = Column(String(64), nullable=True)
    raw_fingerprint = Column(String(1024), nullable=True)
    hardware_id = Column(String(64), nullable=True)
    hwid_salt = Column(String(64), nullable=True)
    used_at = Column(DateTime, nullable=True)

    # Filled when an admin attaches a license
    license_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
