# -*- coding: utf-8 -*-
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from datetime import datetime

from config import Base


class Server(Base):
    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    host = Column(String(255), nullable=False)
    port = Column(Integer, default=22, nullable=False)
    username = Column(String(100), nullable=False)
    password = Column(String(255), nullable=False)

    is_connected = Column(Boolean, default=False)
    last_checked = Column(DateTime, nullable=True)

    # Last fingerprint observed by a connectivity probe
    raw_fingerprint = Column(String(1024), nullable=True)
    hardware_id = Column(String(64), nullable=True)  # unsalted, display only

    created_at = Column(DateTime, default=datetime.utcnow)
