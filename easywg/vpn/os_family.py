"""
Operating-system family detection and WireGuard install commands.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OSFamily(str, Enum):
    DEBIAN = "debian"
    RHEL = "rhel"
    ARCH = "arch"
    ALPINE = "alpine"
    UNKNOWN = "unknown"


_FAMILY_IDS: dict[OSFamily, frozenset[str]] = {
    OSFamily.DEBIAN: frozenset({"debian", "ubuntu", "raspbian", "linuxmint", "pop"}),
    OSFamily.RHEL: frozenset(
        {"rhel", "centos", "fedora", "rocky", "almalinux", "ol", "amzn"}
    ),
    OSFamily.ARCH: frozenset({"arch", "manjaro", "endeavouros"}),
    OSFamily.ALPINE: frozenset({"alpine"}),
}


@dataclass(frozen=True)
class InstallStep:
    command: str
    optional: bool = False


INSTALL_COMMANDS: dict[OSFamily, tuple[InstallStep, ...]] = {
    OSFamily.DEBIAN: (
        InstallStep("apt-get update"),
        InstallStep(
            "DEBIAN_FRONTEND=noninteractive apt-get install -y "
            "wireguard wireguard-tools"
        ),
    ),
    OSFamily.RHEL: (
        InstallStep("yum install -y epel-release", optional=True),
        InstallStep("yum install -y wireguard-tools"),
    ),
    OSFamily.ARCH: (InstallStep("pacman -Sy --noconfirm wireguard-tools"),),
    OSFamily.ALPINE: (InstallStep("apk add --update wireguard-tools"),),
}

# Tried in order when the release metadata names no known family.
GENERIC_PROBES: tuple[str, ...] = (
    "command -v apt-get >/dev/null && apt-get update && "
    "DEBIAN_FRONTEND=noninteractive apt-get install -y wireguard wireguard-tools",
    "command -v dnf >/dev/null && dnf install -y wireguard-tools",
    "command -v yum >/dev/null && yum install -y wireguard-tools",
    "command -v pacman >/dev/null && pacman -Sy --noconfirm wireguard-tools",
    "command -v apk >/dev/null && apk add --update wireguard-tools",
)


def parse_os_release(text: str) -> dict[str, str]:
    """Parse /etc/os-release KEY=value lines, unquoting values."""
    info = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        info[key.strip()] = value.strip().strip("\"'")
    return info


def classify_os(info: dict[str, str]) -> OSFamily:
    """Map release metadata to a family using ID first, then ID_LIKE."""
    candidates = [info.get("ID", "").lower()]
    candidates += info.get("ID_LIKE", "").lower().split()
    for candidate in candidates:
        for family, ids in _FAMILY_IDS.items():
            if candidate in ids:
                return family
    return OSFamily.UNKNOWN
