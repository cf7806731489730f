# config.py
import os
import urllib.parse
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

DB_USER = os.environ.get("HWLOCK_DB_USER", "hwlock")
DB_PASS = os.environ.get("HWLOCK_DB_PASS", "change-me")
DB_HOST = os.environ.get("HWLOCK_DB_HOST", "127.0.0.1")
DB_NAME = os.environ.get("HWLOCK_DB_NAME", "hwlock_core")
DB_PORT = os.environ.get("HWLOCK_DB_PORT", "3306")

encoded_pass = urllib.parse.quote_plus(DB_PASS)
SQLALCHEMY_DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{encoded_pass}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    # in-memory sqlite must share one connection across the threadpool
    _in_memory = SQLALCHEMY_DATABASE_URL in ("sqlite://", "sqlite:///:memory:")
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if _in_memory else None,
        echo=False,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True, echo=False)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# --------------------------------------------------------
# ADMIN AUTH (cookie JWT)
# --------------------------------------------------------
JWT_SECRET = os.environ.get("HWLOCK_JWT_SECRET", "development-jwt-secret-change-this")
JWT_ALGORITHM = "HS256"
ADMIN_COOKIE_NAME = "hwlock_admin"
ADMIN_USERNAME = os.environ.get("HWLOCK_ADMIN_USERNAME", "admin")
# bcrypt hash of the admin password; empty disables password login
ADMIN_PASSWORD_HASH = os.environ.get("HWLOCK_ADMIN_PASSWORD_HASH", "")
ADMIN_SESSION_MINUTES = int(os.environ.get("HWLOCK_ADMIN_SESSION_MINUTES", "240"))
ADMIN_COOKIE_SECURE = os.environ.get("HWLOCK_ADMIN_COOKIE_SECURE", "0") == "1"


# --------------------------------------------------------
# PUBLIC URL the remote agents call back to
# --------------------------------------------------------
PUBLIC_BASE_URL = os.environ.get("HWLOCK_PUBLIC_BASE_URL", "http://127.0.0.1:8000").rstrip("/")


# --------------------------------------------------------
# PAYLOAD CODEC
# --------------------------------------------------------
PAYLOAD_KEY_PREFIX = os.environ.get("HWLOCK_PAYLOAD_KEY_PREFIX", "hwlock-k")
LICENSE_FEATURES = [
    f.strip()
    for f in os.environ.get(
        "HWLOCK_LICENSE_FEATURES",
        "core,users_manage,sites_manage,reports,export,api_access",
    ).split(",")
    if f.strip()
]

# HMAC secret the deployed agent uses to fetch /license-data
AGENT_SECRET = os.environ.get("HWLOCK_AGENT_SECRET", "development-agent-secret-change-this")


# --------------------------------------------------------
# REMOTE AGENT LAYOUT
# --------------------------------------------------------
AGENT_PORT = int(os.environ.get("HWLOCK_AGENT_PORT", "4000"))
AGENT_REFRESH_SECONDS = int(os.environ.get("HWLOCK_AGENT_REFRESH_SECONDS", "900"))
REMOTE_BASE_DIR = "/opt/hwlock"
REMOTE_UNIT_DIR = "/etc/systemd/system"
REMOTE_VERIFY_LOG = "/var/log/hwlock-verify.log"
VERIFY_INTERVAL = "6h"
WATCHDOG_INTERVAL = "5min"

# artifacts left behind by the 1.x agent layout
LEGACY_ARTIFACTS = [
    "/opt/hwlock/bin/agent.py",
    "/opt/hwlock/bin",
    "/etc/systemd/system/hwlock.service",
    "/etc/systemd/system/hwlock-check.service",
    "/etc/systemd/system/hwlock-check.timer",
]
LEGACY_UNITS = ["hwlock.service", "hwlock-check.timer"]


# --------------------------------------------------------
# SSH
# --------------------------------------------------------
SSH_CONNECT_TIMEOUT = 10
SSH_PROBE_TIMEOUT = 15
DEPLOY_TIMEOUT = 120
UNDEPLOY_TIMEOUT = 60
SSH_STRICT_HOST_KEYS = os.environ.get("HWLOCK_SSH_STRICT_HOST_KEYS", "0") == "1"
DNS_CACHE_TTL = 300


# --------------------------------------------------------
# BACKGROUND TASKS
# --------------------------------------------------------
HEARTBEAT_INTERVAL_SECONDS = 30 * 60
HEARTBEAT_THRESHOLD_HOURS = 12
HEARTBEAT_ENABLED = os.environ.get("HWLOCK_HEARTBEAT_ENABLED", "1") == "1"
EXCHANGE_SWEEP_SECONDS = 5
EXCHANGE_MAX_TTL_SECONDS = 30


# --------------------------------------------------------
# LOGGING
# --------------------------------------------------------
LOG_LEVEL = os.environ.get("HWLOCK_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
