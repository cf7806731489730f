"""
Tests for the hardware fingerprint
"""
import hashlib

from app.engine import fingerprint

SOURCES = {
    "machineId": "abc123",
    "productUUID": "4C4C4544-0042",
    "primaryMAC": "aa:bb:cc:dd:ee:ff",
    "boardSerial": "BRD-1",
    "chassisSerial": "CHS-1",
    "diskSerial": "DSK-1",
    "cpuSerial": "",
}


def test_compute_matches_documented_formula():
    raw = "abc123:4C4C4544-0042:aa:bb:cc:dd:ee:ff:BRD-1:CHS-1:DSK-1:"
    expected = hashlib.sha256(f"{raw}:salt1".encode()).hexdigest()
    assert fingerprint.compute(SOURCES, "salt1") == expected


def test_full_length_hex_digest():
    hwid = fingerprint.compute(SOURCES, "s")
    assert len(hwid) == 64
    assert fingerprint.is_valid_hwid(hwid)


def test_missing_sources_are_empty_fields():
    raw = fingerprint.raw_from_sources({"machineId": "m"})
    assert raw == "m::::::"
    assert fingerprint.is_blank_raw("::::::")
    assert not fingerprint.is_blank_raw(raw)


def test_whitespace_is_stripped_like_the_shell_probe():
    noisy = dict(SOURCES, machineId=" abc123\n", boardSerial="BRD -1")
    clean = dict(SOURCES, boardSerial="BRD-1")
    assert fingerprint.compute(noisy, "s") == fingerprint.compute(clean, "s")


def test_salt_changes_the_id():
    assert fingerprint.compute(SOURCES, "a") != fingerprint.compute(SOURCES, "b")


def test_compute_from_raw_agrees_with_compute():
    raw = fingerprint.raw_from_sources(SOURCES)
    assert fingerprint.compute_from_raw(raw, "x") == fingerprint.compute(SOURCES, "x")


def test_parse_raw_keeps_colons_of_mac():
    output = "some banner\n\nabc:uuid:aa:bb:cc:dd:ee:ff:b:c:d:e\n"
    assert fingerprint.parse_raw(output) == "abc:uuid:aa:bb:cc:dd:ee:ff:b:c:d:e"
    assert fingerprint.parse_raw("") == ""


def test_is_valid_hwid_rejects_bad_values():
    assert not fingerprint.is_valid_hwid(None)
    assert not fingerprint.is_valid_hwid("abc")
    assert not fingerprint.is_valid_hwid("z" * 64)
    assert not fingerprint.is_valid_hwid("0x" + "a" * 62)
    assert not fingerprint.is_valid_hwid("ab_" + "a" * 61)
    assert not fingerprint.is_valid_hwid(" " + "a" * 63)
    assert fingerprint.is_valid_hwid("AB" * 32)


def test_probe_command_covers_every_source_in_order():
    cmd = fingerprint.probe_command()
    positions = [cmd.index(f"_HW{i}=") for i in range(len(fingerprint.SOURCE_NAMES))]
    assert positions == sorted(positions)
    assert '"${_HW0}:${_HW1}:${_HW2}:${_HW3}:${_HW4}:${_HW5}:${_HW6}"' in cmd


def test_shell_hash_snippet_uses_salt():
    snippet = fingerprint.shell_hash_snippet("pepper", var="MYID")
    assert "RAW_HWID=$(" in snippet
    assert '"${RAW_HWID}:pepper"' in snippet
    assert snippet.splitlines()[-1].startswith("MYID=$(")
