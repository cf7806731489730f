# app/engine/deployer.py
# -*- coding: utf-8 -*-
"""
Deployment Orchestrator
-----------------------
Pushes the license agent onto a target host over SSH and removes it again.

deploy():   probe fingerprint -> compute salted hardware id -> render the
            bundle -> ship base64 to a temp file -> run -> delete.
undeploy(): stop/disable timers and services, delete files and units.
probe():    connectivity + raw fingerprint, used by "test connection".

Failures come back as DeployResult(success=False); nothing here raises
for a remote problem and nothing here touches the database.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from config import DEPLOY_TIMEOUT, SSH_PROBE_TIMEOUT, UNDEPLOY_TIMEOUT
from app.engine import fingerprint
from app.engine.remote_scripts import DEPLOY_OK_MARKER, UNDEPLOY_OK_MARKER, ScriptBuilder
from app.engine.remote_shell import RemoteShell

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 4000


@dataclass
class DeployResult:
    success: bool
    error: Optional[str] = None
    hardware_id: Optional[str] = None
    output: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ProbeResult:
    connected: bool
    raw_fingerprint: Optional[str] = None
    hardware_id: Optional[str] = None  # unsalted, display only
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


def _tail(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    return text[-_OUTPUT_TAIL:]


class DeploymentOrchestrator:
    def __init__(self, shell: Optional[RemoteShell] = None, scripts: Optional[ScriptBuilder] = None):
        self.shell = shell or RemoteShell()
        self.scripts = scripts or ScriptBuilder()

    def _run(self, server, command: str, timeout: float):
        return self.shell.run(server.host, server.port or 22, server.username, server.password, command, timeout)

    def probe(self, server) -> ProbeResult:
        res = self._run(server, fingerprint.probe_command(), SSH_PROBE_TIMEOUT)
        if not res.success:
            return ProbeResult(connected=False, error=res.error)

        raw = fingerprint.parse_raw(res.output)
        if fingerprint.is_blank_raw(raw):
            return ProbeResult(connected=True, raw_fingerprint=None,
                               error="No hardware sources readable on target")
        return ProbeResult(connected=True, raw_fingerprint=raw, hardware_id=fingerprint.unsalted_id(raw))

    def deploy(self, server, lic, hardware_id: Optional[str] = None) -> DeployResult:
        """
        Deploy the agent bundle for `lic` onto `server`. The hardware id is
        measured on the target unless the caller already did so.
        """
        if hardware_id is None:
            probe = self.probe(server)
            if not probe.connected:
                return DeployResult(success=False, error=probe.error or "Connection failed")
            if not probe.raw_fingerprint:
                return DeployResult(success=False, error=probe.error)
            hardware_id = fingerprint.compute_from_raw(probe.raw_fingerprint, lic.hwid_salt)

        bundle = self.scripts.deploy_bundle(lic.license_id, hardware_id, lic.hwid_salt)
        logger.info("Deploying agent for %s to %s:%s", lic.license_id, server.host, server.port)
        res = self._run(server, self.scripts.ship_command(bundle, "hwlock-deploy"), DEPLOY_TIMEOUT)

        if res.success and DEPLOY_OK_MARKER in res.output:
            return DeployResult(success=True, hardware_id=hardware_id, output=_tail(res.output))
        return DeployResult(
            success=False,
            hardware_id=hardware_id,
            error=res.error or "Deployment script did not complete",
            output=_tail(res.output),
        )

    def undeploy(self, server) -> DeployResult:
        logger.info("Removing agent from %s:%s", server.host, server.port)
        script = self.scripts.undeploy_bundle()
        res = self._run(server, self.scripts.ship_command(script, "hwlock-undeploy"), UNDEPLOY_TIMEOUT)

        if res.success and UNDEPLOY_OK_MARKER in res.output:
            return DeployResult(success=True, output=_tail(res.output))
        return DeployResult(
            success=False,
            error=res.error or "Undeploy script did not complete",
            output=_tail(res.output),
        )
