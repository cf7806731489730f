# app/engine/fingerprint.py
# -*- coding: utf-8 -*-
"""
Hardware fingerprint
--------------------
One definition of the per-machine identifier, used in three places:

- server side, to hash a raw fingerprint reported by a target
  (patch activation, deploy probe, transfer rebind);
- inside every generated remote script (verifier, install script,
  patch-run script), through probe_command() / shell_hash_snippet();
- in the client SDK, which runs probe_command() locally.

HWID = sha256("machineId:productUUID:primaryMAC:boardSerial:
               chassisSerial:diskSerial:cpuSerial:salt")

Always the full 64-char hex digest.
"""

import hashlib
import re
from collections import OrderedDict
from typing import Mapping, Optional

# Ordered: the order is part of the hash.
SOURCE_COMMANDS = OrderedDict([
    ("machineId", "cat /etc/machine-id"),
    ("productUUID", "cat /sys/class/dmi/id/product_uuid"),
    ("primaryMAC", "ip link show | awk '/link\\/ether/ {print $2; exit}'"),
    ("boardSerial", "cat /sys/class/dmi/id/board_serial"),
    ("chassisSerial", "cat /sys/class/dmi/id/chassis_serial"),
    ("diskSerial", "lsblk -dno SERIAL | awk 'NF {print; exit}'"),
    ("cpuSerial", "awk -F: 'tolower($1) ~ /serial/ {print $2; exit}' /proc/cpuinfo"),
])

SOURCE_NAMES = tuple(SOURCE_COMMANDS.keys())
HWID_LENGTH = 64
HWID_PATTERN = re.compile(r"[0-9a-fA-F]{%d}" % HWID_LENGTH)


def _clean(value: Optional[str]) -> str:
    # mirrors `tr -d '[:space:]'` in the shell probe
    if value is None:
        return ""
    return "".join(str(value).split())


def raw_from_sources(sources: Mapping[str, Optional[str]]) -> str:
    """Join the seven sources; a missing source contributes an empty string."""
    return ":".join(_clean(sources.get(name)) for name in SOURCE_NAMES)


def compute_from_raw(raw: str, salt: str) -> str:
    return hashlib.sha256(f"{raw}:{salt}".encode("utf-8")).hexdigest()


def compute(sources: Mapping[str, Optional[str]], salt: str) -> str:
    return compute_from_raw(raw_from_sources(sources), salt)


def unsalted_id(raw: str) -> str:
    """Display-only id for a server's last observed fingerprint."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def is_valid_hwid(value: Optional[str]) -> bool:
    return bool(value) and HWID_PATTERN.fullmatch(value) is not None


def parse_raw(output: str) -> str:
    """
    Normalize the probe output: last non-empty line, whitespace removed.
    Not re-split on ':' since the MAC field itself contains colons.
    """
    lines = [line for line in (output or "").splitlines() if line.strip()]
    return _clean(lines[-1]) if lines else ""


# -------------------------------------------------------------
# Shell renderings
# -------------------------------------------------------------
def probe_command() -> str:
    """
    Bash that prints the raw fingerprint string on one line.
    Each source failing on its own yields an empty field.
    """
    lines = []
    for idx, (name, cmd) in enumerate(SOURCE_COMMANDS.items()):
        lines.append(f"_HW{idx}=$( ({cmd}) 2>/dev/null | tr -d '[:space:]' )")
    joined = ":".join(f"${{_HW{idx}}}" for idx in range(len(SOURCE_COMMANDS)))
    lines.append(f"printf '%s\\n' \"{joined}\"")
    return "\n".join(lines)


def shell_hash_snippet(salt: str, var: str = "HWID") -> str:
    """
    Bash defining RAW_HWID (probe) and `var` (salted sha256), matching compute().
    """
    return (
        "RAW_HWID=$(\n" + probe_command() + "\n)\n"
        f"{var}=$(printf '%s' \"${{RAW_HWID}}:{salt}\" | sha256sum | awk '{{print $1}}')"
    )


def is_blank_raw(raw: Optional[str]) -> bool:
    """True when no source could be read (only separators left)."""
    return not (raw or "").replace(":", "")
