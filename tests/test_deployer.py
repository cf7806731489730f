"""
Tests for script rendering and the deployment orchestrator (shell mocked)
"""
import base64
import re
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from app.engine import fingerprint
from app.engine.deployer import DeploymentOrchestrator
from app.engine.remote_scripts import (
    AGENT_UNIT,
    DEPLOY_OK_MARKER,
    UNDEPLOY_OK_MARKER,
    VERIFY_TIMER,
    WATCHDOG_TIMER,
    ScriptBuilder,
)
from app.engine.remote_shell import CommandResult
from app.utils.signer import compute_agent_token

from conftest import RAW_A

HWID = "c" * 64
SALT = "0123456789abcdef"


@pytest.fixture
def scripts():
    return ScriptBuilder(base_url="http://license.test/")


@pytest.fixture
def server():
    return SimpleNamespace(host="srv-a.test", port=22, username="root", password="secret")


@pytest.fixture
def lic():
    return SimpleNamespace(license_id="LIC-1", hwid_salt=SALT)


def _decode_shipped(command):
    encoded = re.search(r"printf '%s' (\S+) \| base64 -d", command).group(1)
    return base64.b64decode(encoded.strip("'")).decode("utf-8")


# -----------------------
# ScriptBuilder
# -----------------------
def test_agent_is_valid_python(scripts):
    source = scripts.agent("LIC-1", HWID)
    compile(source, "agent.py", "exec")
    assert compute_agent_token("LIC-1", HWID) in source
    assert '"http://license.test"' in source
    assert "def obfuscate(" in source


def test_verify_script(scripts):
    script = scripts.verify("LIC-1", SALT)
    assert "${SERVER_URL}/verify" in script
    assert f":{SALT}" in script
    assert scripts.revoked_marker in script
    assert f"systemctl stop {AGENT_UNIT}" in script


def test_units(scripts):
    units = scripts.units()
    assert set(units) == {AGENT_UNIT, VERIFY_TIMER, WATCHDOG_TIMER,
                          "hwlock-verify.service", "hwlock-watchdog.service"}
    assert "Restart=always" in units[AGENT_UNIT]
    assert scripts.agent_path in units[AGENT_UNIT]
    assert "hwlock-verify.service" in units[VERIFY_TIMER]


def test_watchdog_embeds_restorable_copies(scripts):
    agent = scripts.agent("LIC-1", HWID)
    unit = scripts.units()[AGENT_UNIT]
    script = scripts.watchdog(agent, unit)
    assert base64.b64encode(agent.encode("utf-8")).decode("ascii") in script
    assert base64.b64encode(unit.encode("utf-8")).decode("ascii") in script
    assert scripts.revoked_marker in script


def test_deploy_bundle(scripts):
    bundle = scripts.deploy_bundle("LIC-1", HWID, SALT)
    assert bundle.startswith("#!/bin/bash")
    assert bundle.rstrip().endswith(f'echo "{DEPLOY_OK_MARKER}"')
    assert "[$1/6]" in bundle
    for path in (scripts.agent_path, scripts.verify_path, scripts.watchdog_path,
                 scripts.unit_path(AGENT_UNIT)):
        assert path in bundle
    assert f"systemctl restart {AGENT_UNIT}" in bundle
    assert "fuser -k 4000/tcp" in bundle
    assert "rm -rf /opt/hwlock/bin" in bundle


def test_deploy_bundle_heredocs_are_closed(scripts):
    bundle = scripts.deploy_bundle("LIC-1", HWID, SALT)
    for tag in ("HWLOCK_AGENT_EOF", "HWLOCK_VERIFY_EOF", "HWLOCK_WATCHDOG_EOF"):
        assert bundle.count(f"<<'{tag}'") == 1
        assert f"\n{tag}\n" in bundle
    assert bundle.count("<<'HWLOCK_UNIT_EOF'") == 5
    assert bundle.count("\nHWLOCK_UNIT_EOF\n") == 5


def test_undeploy_bundle(scripts):
    bundle = scripts.undeploy_bundle()
    assert bundle.rstrip().endswith(f'echo "{UNDEPLOY_OK_MARKER}"')
    assert "rm -rf /opt/hwlock" in bundle
    assert f"systemctl disable --now {WATCHDOG_TIMER}" in bundle


def test_install_script(scripts):
    script = scripts.install_script("LIC-1", SALT)
    assert "LICENSE_ID=LIC-1" in script
    assert "${SERVER_URL}/provision" in script
    assert fingerprint.probe_command() in script


def test_patch_run_base_url_override(scripts):
    script = scripts.patch_run("tok123", base_url="https://other.test/")
    assert "SERVER_URL=https://other.test\n" in script
    assert "token=${TOKEN}" in script


def test_ship_command_round_trips(scripts):
    script = "#!/bin/bash\necho 'quoted' \"and\" $HOME\n"
    command = ScriptBuilder.ship_command(script, "hwlock-test")
    assert command.startswith("umask 077;")
    assert re.search(r"/tmp/hwlock-test-[0-9a-f]{12}\.sh", command)
    assert command.endswith("exit $rc")
    assert _decode_shipped(command) == script


# -----------------------
# DeploymentOrchestrator
# -----------------------
@pytest.fixture
def shell():
    return Mock()


@pytest.fixture
def orchestrator(shell, scripts):
    return DeploymentOrchestrator(shell=shell, scripts=scripts)


def test_probe(orchestrator, shell, server):
    shell.run.return_value = CommandResult(success=True, exit_code=0, output=f"noise\n{RAW_A}\n")
    result = orchestrator.probe(server)
    assert result.connected
    assert result.raw_fingerprint == RAW_A
    assert result.hardware_id == fingerprint.unsalted_id(RAW_A)
    host, port, user, password, command, _ = shell.run.call_args.args
    assert (host, port, user, password) == ("srv-a.test", 22, "root", "secret")
    assert command == fingerprint.probe_command()


def test_probe_blank_fingerprint(orchestrator, shell, server):
    shell.run.return_value = CommandResult(success=True, exit_code=0, output="::::::")
    result = orchestrator.probe(server)
    assert result.connected
    assert result.raw_fingerprint is None
    assert result.error == "No hardware sources readable on target"


def test_probe_connection_failure(orchestrator, shell, server):
    shell.run.return_value = CommandResult(success=False, error="Authentication failed.")
    result = orchestrator.probe(server)
    assert not result.connected
    assert result.error == "Authentication failed."


def test_deploy_measures_hardware(orchestrator, shell, server, lic):
    shell.run.side_effect = [
        CommandResult(success=True, exit_code=0, output=RAW_A),
        CommandResult(success=True, exit_code=0, output=f"[6/6] done\n{DEPLOY_OK_MARKER}"),
    ]
    result = orchestrator.deploy(server, lic)
    assert result.success
    assert result.hardware_id == fingerprint.compute_from_raw(RAW_A, SALT)

    shipped = _decode_shipped(shell.run.call_args_list[1].args[4])
    assert compute_agent_token("LIC-1", result.hardware_id) in shipped


def test_deploy_with_known_hardware_skips_probe(orchestrator, shell, server, lic):
    shell.run.return_value = CommandResult(success=True, exit_code=0, output=DEPLOY_OK_MARKER)
    result = orchestrator.deploy(server, lic, hardware_id=HWID)
    assert result.success
    assert shell.run.call_count == 1


def test_deploy_without_marker_fails(orchestrator, shell, server, lic):
    shell.run.return_value = CommandResult(success=False, exit_code=1, output="[2/6] Writing agent",
                                           error="python3 is required")
    result = orchestrator.deploy(server, lic, hardware_id=HWID)
    assert not result.success
    assert result.error == "python3 is required"
    assert result.output == "[2/6] Writing agent"


def test_deploy_unreachable(orchestrator, shell, server, lic):
    shell.run.return_value = CommandResult(success=False, error="timed out")
    result = orchestrator.deploy(server, lic)
    assert not result.success
    assert result.error == "timed out"
    assert shell.run.call_count == 1


def test_undeploy(orchestrator, shell, server):
    shell.run.return_value = CommandResult(success=True, exit_code=0, output=UNDEPLOY_OK_MARKER)
    assert orchestrator.undeploy(server).success

    shell.run.return_value = CommandResult(success=True, exit_code=0, output="")
    result = orchestrator.undeploy(server)
    assert not result.success
    assert result.error == "Undeploy script did not complete"
