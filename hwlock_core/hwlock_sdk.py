# hwlock_sdk.py
# ----------------------------------------
# HWLock Core - Python Client SDK
# Hardware ID from the shared fingerprint probe (auto + override)
# ----------------------------------------

import json
import logging
import subprocess

import requests

from config import AGENT_PORT, PAYLOAD_KEY_PREFIX
from app.engine import fingerprint
from app.engine.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)


class HWLockLicenseClient:
    def __init__(self, base_url: str, license_id: str, hwid_salt: str = None,
                 hardware_id: str = None, timeout: int = 30,
                 key_prefix: str = PAYLOAD_KEY_PREFIX, agent_port: int = AGENT_PORT):
        """
        base_url    = "http://license.example.com"
        hwid_salt   = per-license salt (from the install script)
        hardware_id = None -> computed on this host from hwid_salt
        """
        if hardware_id is None and hwid_salt is None:
            raise ValueError("either hardware_id or hwid_salt is required")

        self.base = base_url.rstrip("/")
        self.license_id = license_id
        self.timeout = timeout
        self.agent_port = agent_port
        self.codec = PayloadCodec(key_prefix)
        self.hardware_id = hardware_id or fingerprint.compute_from_raw(self.raw_fingerprint(), hwid_salt)

    # ----------------------------------------------------------------------
    # LOCAL FINGERPRINT
    # ----------------------------------------------------------------------
    @staticmethod
    def raw_fingerprint() -> str:
        """Run the same probe the deployed scripts use."""
        out = subprocess.run(
            ["bash", "-c", fingerprint.probe_command()],
            capture_output=True, text=True, timeout=30, check=True,
        ).stdout
        return fingerprint.parse_raw(out)

    # ----------------------------------------------------------------------
    # INTERNAL HTTP WRAPPER
    # ----------------------------------------------------------------------
    def _request(self, method, path, **kwargs):
        url = f"{self.base}{path}"

        try:
            res = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as ex:
            logger.warning("License server request failed: %s", ex)
            return {"error": True, "detail": str(ex)}

        # always try json
        try:
            data = res.json()
        except ValueError:
            data = {"detail": res.text}

        data["_status_code"] = res.status_code
        return data

    def _claim(self):
        return {"license_id": self.license_id, "hardware_id": self.hardware_id}

    # ----------------------------------------------------------------------
    # PUBLIC CLIENT METHODS
    # ----------------------------------------------------------------------
    def provision(self):
        """Bind this host to the license; returns payload, blob and scripts."""
        return self._request("POST", "/provision", json=self._claim())

    def verify(self):
        """Periodic check-in; keeps the license out of heartbeat suspension."""
        return self._request("POST", "/verify", json=self._claim())

    def decode(self, blob: str):
        """Decode an encrypted blob; None when no hour key fits."""
        payload = self.codec.decrypt(blob)
        return payload.to_wire() if payload else None

    def local_payload(self):
        """Read and decode the payload served by the local agent."""
        try:
            res = requests.get(f"http://127.0.0.1:{self.agent_port}/", timeout=self.timeout)
        except requests.RequestException as ex:
            return {"error": True, "detail": str(ex)}
        if res.status_code != 200:
            return {"error": True, "_status_code": res.status_code}
        return self.decode(res.text.strip())


# ----------------------------------------------------------------------
# DEMO USAGE (optional)
# ----------------------------------------------------------------------
if __name__ == "__main__":
    import sys

    if len(sys.argv) != 4:
        print("usage: hwlock_sdk.py BASE_URL LICENSE_ID HWID_SALT")
        sys.exit(2)

    sdk = HWLockLicenseClient(base_url=sys.argv[1], license_id=sys.argv[2], hwid_salt=sys.argv[3])

    print("\n--- Hardware ID:", sdk.hardware_id)

    print("\n1) Verify")
    print(json.dumps(sdk.verify(), indent=4))

    print("\n2) Local agent payload")
    print(json.dumps(sdk.local_payload(), indent=4))
