# app/utils/signer.py
import hmac
import hashlib
from typing import Optional
from fastapi import Header

from config import AGENT_SECRET
from app.utils.exceptions import HWLockException


# -----------------------------
# AGENT TOKEN
# -----------------------------
def compute_agent_token(license_id: str, hardware_id: str, secret: Optional[str] = None) -> str:
    """
    Token embedded into a deployed agent. Bound to (license, hardware) so a
    rebind or transfer invalidates every previously shipped agent.
    """
    base = f"{license_id}:{hardware_id}"
    mac = hmac.new((secret or AGENT_SECRET).encode("utf-8"), base.encode("utf-8"), hashlib.sha256)
    return mac.hexdigest().lower()


def verify_agent_token(token: Optional[str], license_id: str, hardware_id: Optional[str]) -> bool:
    if not token or not hardware_id:
        return False
    expected = compute_agent_token(license_id, hardware_id)
    return hmac.compare_digest(expected, token.strip().lower())


# -----------------------------
# FASTAPI DEPENDENCY
# -----------------------------
def require_agent_token(x_agent_token: Optional[str] = Header(None)) -> str:
    if not x_agent_token:
        raise HWLockException(401, "Missing agent token", error_code="AGENT_TOKEN_MISSING")
    return x_agent_token
