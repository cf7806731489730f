# app/engine/payload_codec.py
# -*- coding: utf-8 -*-
"""
License payload codec
---------------------
Builds the wire payload served to the licensed application and wraps it
with an hour-rotating XOR keystream:

    K(h)  = PREFIX + str(h + 1)      h = local wall-clock hour, 0..23
    blob  = base64(payload_json XOR K(h))

This is OBFUSCATION, NOT ENCRYPTION. The key space is 24 values derived
from a constant prefix, and decrypt() simply tries all of them so that
clock skew between server, agent and application never needs a handshake.
Nothing here protects confidentiality or integrity against anyone who has
read this file. It exists for wire compatibility with deployed agents;
swap PayloadCodec for an authenticated scheme (e.g. signed tokens) without
touching callers if that guarantee is ever needed.

hour_key(), xor_bytes() and obfuscate() are stdlib-only and are embedded
verbatim into the generated agent (see primitives_source()).
"""

import base64
import hashlib
import inspect
import json
import logging
import time
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer

from config import PAYLOAD_KEY_PREFIX, LICENSE_FEATURES

logger = logging.getLogger(__name__)

HOURS = 24
EXPIRY_FORMAT = "%Y-%m-%d %H:%M:%S"


# -------------------------------------------------------------
# Primitives (embedded into the remote agent)
# -------------------------------------------------------------
def hour_key(prefix, hour):
    return prefix + str(hour + 1)


def xor_bytes(data, key):
    k = key.encode("utf-8")
    return bytes(b ^ k[i % len(k)] for i, b in enumerate(data))


def obfuscate(data, prefix, hour):
    return base64.b64encode(xor_bytes(data, hour_key(prefix, hour))).decode("ascii")


# -------------------------------------------------------------
# Payload record
# -------------------------------------------------------------
class LicensePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    license_id: str = Field(alias="pid")
    hardware_id: str = Field(alias="hwid")
    expiry: str = Field(alias="exp")
    features: List[str] = Field(alias="ftrs")
    status_flag: str = Field(alias="st")
    max_users: int = Field(alias="mu")
    max_sites: int = Field(alias="ms")
    integrity_hash: str = Field(alias="hash")

    @field_serializer("max_users", "max_sites")
    def _as_decimal_string(self, value: int) -> str:
        return str(value)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def integrity_hash(license_id: str, hardware_id: str, expiry: str) -> str:
    """sha256(licenseId:hardwareId:expiryISO8601) with a second-precision expiry."""
    expiry_iso = expiry.replace(" ", "T")
    return hashlib.sha256(f"{license_id}:{hardware_id}:{expiry_iso}".encode("utf-8")).hexdigest()


def build_payload(
    license_id: str,
    hardware_id: str,
    expires_at: datetime,
    max_users: int,
    max_sites: int,
    status,
    features: Optional[Iterable[str]] = None,
) -> LicensePayload:
    status_value = getattr(status, "value", status)
    expiry = expires_at.strftime(EXPIRY_FORMAT)
    return LicensePayload(
        license_id=license_id,
        hardware_id=hardware_id,
        expiry=expiry,
        features=list(features if features is not None else LICENSE_FEATURES),
        status_flag="1" if status_value == "active" else "0",
        max_users=max_users,
        max_sites=max_sites,
        integrity_hash=integrity_hash(license_id, hardware_id, expiry),
    )


def payload_for_license(lic, hardware_id: Optional[str] = None, status=None) -> LicensePayload:
    return build_payload(
        lic.license_id,
        hardware_id or lic.hardware_id,
        lic.expires_at,
        lic.max_users,
        lic.max_sites,
        status if status is not None else lic.status,
    )


# -------------------------------------------------------------
# Codec
# -------------------------------------------------------------
class PayloadCodec:
    """Rotating-hour XOR codec. See module docstring: not a security boundary."""

    def __init__(self, key_prefix: str = PAYLOAD_KEY_PREFIX, clock: Callable[[], time.struct_time] = time.localtime):
        self.key_prefix = key_prefix
        self._clock = clock

    def current_hour(self) -> int:
        return self._clock().tm_hour

    def encode(self, payload: LicensePayload) -> bytes:
        return json.dumps(payload.to_wire(), separators=(",", ":"), sort_keys=True).encode("utf-8")

    def encrypt(self, payload: LicensePayload, hour: Optional[int] = None) -> str:
        if hour is None:
            hour = self.current_hour()
        if not 0 <= hour < HOURS:
            raise ValueError(f"hour must be in [0, {HOURS}), got {hour}")
        return obfuscate(self.encode(payload), self.key_prefix, hour)

    def decrypt_with_hour(self, blob: str, hour: int) -> Optional[LicensePayload]:
        try:
            raw = xor_bytes(base64.b64decode(blob, validate=True), hour_key(self.key_prefix, hour))
            data = json.loads(raw.decode("utf-8"))
        except (ValueError, TypeError):
            return None
        if not isinstance(data, dict) or not data.get("hwid"):
            return None
        try:
            payload = LicensePayload.model_validate(data)
        except ValidationError:
            return None
        if payload.integrity_hash != integrity_hash(payload.license_id, payload.hardware_id, payload.expiry):
            return None
        return payload

    def decrypt(self, blob: str) -> Optional[LicensePayload]:
        """Try every hour key; first structurally valid payload wins."""
        for hour in range(HOURS):
            payload = self.decrypt_with_hour(blob, hour)
            if payload is not None:
                return payload
        logger.debug("No hour key decoded blob of length %d", len(blob or ""))
        return None


def primitives_source() -> str:
    """Source of the stdlib primitives, for embedding into generated code."""
    return "\n\n".join(inspect.getsource(fn) for fn in (hour_key, xor_bytes, obfuscate))
