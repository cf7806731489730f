# app/engine/remote_scripts.py
# -*- coding: utf-8 -*-
"""
Renders every artifact shipped to a licensed host (agent, verifier,
watchdog, systemd units, deploy/undeploy bundles, install and patch-run
scripts) from the Jinja2 templates in app/templates.
"""

import base64
import os
import secrets
import shlex
from typing import Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from config import (
    AGENT_PORT,
    AGENT_REFRESH_SECONDS,
    LEGACY_ARTIFACTS,
    LEGACY_UNITS,
    PAYLOAD_KEY_PREFIX,
    PUBLIC_BASE_URL,
    REMOTE_BASE_DIR,
    REMOTE_UNIT_DIR,
    REMOTE_VERIFY_LOG,
    VERIFY_INTERVAL,
    WATCHDOG_INTERVAL,
)
from app.engine import fingerprint
from app.engine.payload_codec import primitives_source
from app.utils.signer import compute_agent_token

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "templates")

AGENT_UNIT = "hwlock-agent.service"
VERIFY_UNIT = "hwlock-verify.service"
VERIFY_TIMER = "hwlock-verify.timer"
WATCHDOG_UNIT = "hwlock-watchdog.service"
WATCHDOG_TIMER = "hwlock-watchdog.timer"

DEPLOY_OK_MARKER = "HWLOCK_DEPLOY_OK"
UNDEPLOY_OK_MARKER = "HWLOCK_UNDEPLOY_OK"


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )
    env.filters["shq"] = lambda value: shlex.quote(str(value))
    env.filters["b64"] = _b64
    return env


class ScriptBuilder:
    def __init__(self, base_url: str = PUBLIC_BASE_URL, base_dir: str = REMOTE_BASE_DIR,
                 unit_dir: str = REMOTE_UNIT_DIR, key_prefix: str = PAYLOAD_KEY_PREFIX,
                 port: int = AGENT_PORT):
        self.base_url = base_url.rstrip("/")
        self.base_dir = base_dir
        self.unit_dir = unit_dir
        self.key_prefix = key_prefix
        self.port = port
        self.env = _build_env()

    def _render(self, name: str, **context) -> str:
        return self.env.get_template(name).render(**context)

    # ---- paths -----------------------------------------------------------
    @property
    def agent_path(self) -> str:
        return f"{self.base_dir}/agent.py"

    @property
    def verify_path(self) -> str:
        return f"{self.base_dir}/verify.sh"

    @property
    def watchdog_path(self) -> str:
        return f"{self.base_dir}/watchdog.sh"

    @property
    def revoked_marker(self) -> str:
        return f"{self.base_dir}/revoked"

    def unit_path(self, unit: str) -> str:
        return f"{self.unit_dir}/{unit}"

    # ---- individual artifacts -------------------------------------------
    def agent(self, license_id: str, hardware_id: str) -> str:
        return self._render(
            "agent.py.j2",
            license_id=license_id,
            server_url=self.base_url,
            agent_token=compute_agent_token(license_id, hardware_id),
            key_prefix=self.key_prefix,
            port=self.port,
            refresh_seconds=AGENT_REFRESH_SECONDS,
            cache_file=f"{self.base_dir}/license.cache",
            codec_source=primitives_source(),
        )

    def verify(self, license_id: str, hwid_salt: str) -> str:
        return self._render(
            "verify.sh.j2",
            license_id=license_id,
            server_url=self.base_url,
            log_file=REMOTE_VERIFY_LOG,
            interval=VERIFY_INTERVAL,
            agent_unit=AGENT_UNIT,
            revoked_marker=self.revoked_marker,
            hwid_snippet=fingerprint.shell_hash_snippet(hwid_salt),
        )

    def units(self) -> Dict[str, str]:
        return {
            AGENT_UNIT: self._render(
                "agent.service.j2", agent_path=self.agent_path, base_dir=self.base_dir,
            ),
            VERIFY_UNIT: self._render(
                "oneshot.service.j2", description="HWLock license verification", exec_path=self.verify_path,
            ),
            VERIFY_TIMER: self._render(
                "timer.j2", description="HWLock license verification timer",
                interval=VERIFY_INTERVAL, unit=VERIFY_UNIT,
            ),
            WATCHDOG_UNIT: self._render(
                "oneshot.service.j2", description="HWLock agent watchdog", exec_path=self.watchdog_path,
            ),
            WATCHDOG_TIMER: self._render(
                "timer.j2", description="HWLock agent watchdog timer",
                interval=WATCHDOG_INTERVAL, unit=WATCHDOG_UNIT,
            ),
        }

    def watchdog(self, agent_script: str, agent_unit_text: str) -> str:
        return self._render(
            "watchdog.sh.j2",
            base_dir=self.base_dir,
            agent_path=self.agent_path,
            agent_unit=AGENT_UNIT,
            agent_unit_path=self.unit_path(AGENT_UNIT),
            revoked_marker=self.revoked_marker,
            agent_script=agent_script,
            agent_unit_text=agent_unit_text,
        )

    # ---- bundles ---------------------------------------------------------
    def deploy_bundle(self, license_id: str, hardware_id: str, hwid_salt: str) -> str:
        agent = self.agent(license_id, hardware_id)
        units = self.units()
        return self._render(
            "deploy.sh.j2",
            license_id=license_id,
            base_dir=self.base_dir,
            port=self.port,
            agent_unit=AGENT_UNIT,
            timers=[VERIFY_TIMER, WATCHDOG_TIMER],
            agent_path=self.agent_path,
            verify_path=self.verify_path,
            watchdog_path=self.watchdog_path,
            revoked_marker=self.revoked_marker,
            agent_script=agent,
            verify_script=self.verify(license_id, hwid_salt),
            watchdog_script=self.watchdog(agent, units[AGENT_UNIT]),
            units={self.unit_path(name): text for name, text in units.items()},
            legacy_units=LEGACY_UNITS,
            legacy_artifacts=LEGACY_ARTIFACTS,
            ok_marker=DEPLOY_OK_MARKER,
        )

    def undeploy_bundle(self) -> str:
        return self._render(
            "undeploy.sh.j2",
            base_dir=self.base_dir,
            stop_order=[WATCHDOG_TIMER, VERIFY_TIMER, AGENT_UNIT, WATCHDOG_UNIT, VERIFY_UNIT],
            unit_paths=[self.unit_path(u) for u in (AGENT_UNIT, VERIFY_UNIT, VERIFY_TIMER, WATCHDOG_UNIT, WATCHDOG_TIMER)],
            legacy_units=LEGACY_UNITS,
            legacy_artifacts=LEGACY_ARTIFACTS,
            log_file=REMOTE_VERIFY_LOG,
            ok_marker=UNDEPLOY_OK_MARKER,
        )

    def install_script(self, license_id: str, hwid_salt: str) -> str:
        return self._render(
            "install.sh.j2",
            license_id=license_id,
            server_url=self.base_url,
            hwid_snippet=fingerprint.shell_hash_snippet(hwid_salt),
        )

    def patch_run(self, token: str, base_url: Optional[str] = None) -> str:
        return self._render(
            "patch_run.sh.j2",
            token=token,
            server_url=(base_url or self.base_url).rstrip("/"),
            probe=fingerprint.probe_command(),
        )

    # ---- transport -------------------------------------------------------
    @staticmethod
    def ship_command(script: str, prefix: str = "hwlock") -> str:
        """
        One remote command line: decode the script to a private temp file,
        run it with bash, delete it, and exit with the script's status.
        """
        tmp = f"/tmp/{prefix}-{secrets.token_hex(6)}.sh"
        return (
            f"umask 077; printf '%s' {shlex.quote(_b64(script))} | base64 -d > {tmp} "
            f"&& bash {tmp}; rc=$?; rm -f {tmp}; exit $rc"
        )
