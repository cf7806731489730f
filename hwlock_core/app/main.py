# -*- coding: utf-8 -*-
"""
HWLock Core - License Control Server
------------------------------------
Central engine for:
- License management and hardware binding
- Public provisioning / verification
- Remote agent deployment over SSH
- Patch-token onboarding
- Heartbeat monitoring
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from config import Base, engine, DNS_CACHE_TTL, HEARTBEAT_ENABLED, LOG_LEVEL, LOG_FORMAT

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


# -----------------------------
# Import Models (registers tables on Base)
# -----------------------------
from app.models.license_model import License  # noqa: F401
from app.models.server_model import Server  # noqa: F401
from app.models.patch_token_model import PatchToken  # noqa: F401
from app.models.logs_model import ActivityLog  # noqa: F401


# -----------------------------
# Import Routers
# -----------------------------
from app.api.admin_auth import router as admin_auth_router
from app.api.servers import router as servers_router
from app.api.licenses import router as licenses_router
from app.api.patches import router as patches_router, public_router as patch_public_router
from app.api.activity import router as activity_router
from app.api.provisioning import router as provisioning_router
from app.api.exchange import router as exchange_router

from app.engine.deployer import DeploymentOrchestrator
from app.engine.heartbeat import HeartbeatMonitor
from app.engine.remote_scripts import ScriptBuilder
from app.engine.remote_shell import HostResolver, RemoteShell
from app.engine.ttl_registry import EphemeralExchange, TTLRegistry
from app.utils.exceptions import (
    HWLockException,
    hwlock_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.utils.request_log import log_requests


# ----------------------------------------------------------
# LIFECYCLE
# ----------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    app.state.exchange.registry.start()
    app.state.dns_cache.start()
    if HEARTBEAT_ENABLED:
        app.state.heartbeat.start()
    try:
        yield
    finally:
        await app.state.heartbeat.stop()
        await app.state.exchange.registry.stop()
        await app.state.dns_cache.stop()


# -----------------------------
# FastAPI Init
# -----------------------------
app = FastAPI(title="HWLock Core - License Server", lifespan=lifespan)

app.middleware("http")(log_requests)

app.add_exception_handler(HWLockException, hwlock_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Shared engine objects; tests replace these
app.state.scripts = ScriptBuilder()
app.state.dns_cache = TTLRegistry(default_ttl=DNS_CACHE_TTL, sweep_interval=60, name="dns-cache")
app.state.deployer = DeploymentOrchestrator(
    shell=RemoteShell(resolver=HostResolver(cache=app.state.dns_cache)),
    scripts=app.state.scripts,
)
app.state.exchange = EphemeralExchange()
app.state.heartbeat = HeartbeatMonitor()


# ----------------------------------------------------------
# ROUTERS
# ----------------------------------------------------------

# 1. Admin auth
app.include_router(admin_auth_router)

# 2. Admin functional APIs
app.include_router(servers_router)
app.include_router(licenses_router)
app.include_router(patches_router)
app.include_router(activity_router)

# 3. Public agent / host API
app.include_router(provisioning_router)
app.include_router(patch_public_router)
app.include_router(exchange_router)


# ----------------------------------------------------------
# System Status
# ----------------------------------------------------------
@app.get("/api/status", tags=["system"])
def root_status():
    return {"status": "hwlock_core", "message": "License control server running"}
