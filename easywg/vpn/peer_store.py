"""
The WireGuard interface file as a peer registry.

A peer block is a name comment directly followed by a ``[Peer]`` section::

    # user_7
    [Peer]
    PublicKey = <key>
    AllowedIPs = 10.0.0.7/32

Blocking rewrites the name comment to ``#BLOCKED user_7`` and prefixes every
line of the section with ``#``; unblocking is the exact inverse. Other tooling
reads the same file, so this convention must not change.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import shlex
from typing import TYPE_CHECKING

from easywg.common.exceptions import CommandFailedError
from easywg.common.models import PeerEntry

if TYPE_CHECKING:
    from collections.abc import Iterator

    from easywg.common.interfaces import IRemoteSession

logger = logging.getLogger(__name__)

NAME_PREFIX = "# "
BLOCKED_PREFIX = "#BLOCKED "
PEER_HEADERS = ("[Peer]", "#[Peer]")
PEER_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.@-]{1,64}")


def _content(line: str) -> str:
    return line.rstrip("\r\n")


def _eol(line: str) -> str:
    return line[len(_content(line)):]


class PeerRegistry:
    """In-memory view of the interface file that preserves its exact bytes."""

    def __init__(self, text: str = ""):
        self._lines: list[str] = text.splitlines(keepends=True)

    @property
    def text(self) -> str:
        return "".join(self._lines)

    def _marker_at(self, index: int) -> tuple[str, bool] | None:
        """Return (name, blocked) if the line at index starts a peer block."""
        if index + 1 >= len(self._lines):
            return None
        if _content(self._lines[index + 1]) not in PEER_HEADERS:
            return None
        line = _content(self._lines[index])
        if line.startswith(BLOCKED_PREFIX):
            return line[len(BLOCKED_PREFIX):], True
        if line.startswith(NAME_PREFIX):
            return line[len(NAME_PREFIX):], False
        return None

    def _block_end(self, index: int) -> int:
        """Index one past the last line of the block whose marker is at index."""
        end = index + 2
        while end < len(self._lines):
            line = _content(self._lines[end])
            if not line.strip() or line.lstrip("#").startswith("["):
                break
            if self._marker_at(end) is not None:
                break
            end += 1
        return end

    def _markers(self, name: str | None = None) -> Iterator[tuple[int, str, bool]]:
        for index in range(len(self._lines)):
            marker = self._marker_at(index)
            if marker is None:
                continue
            if name is None or marker[0] == name:
                yield index, marker[0], marker[1]

    def peers(self) -> list[PeerEntry]:
        entries = []
        for index, name, blocked in self._markers():
            entry = PeerEntry(name=name, blocked=blocked)
            for line in self._lines[index + 2:self._block_end(index)]:
                key, _, value = _content(line).lstrip("#").partition("=")
                if key.strip() == "PublicKey":
                    entry.public_key = value.strip()
                elif key.strip() == "AllowedIPs":
                    entry.allowed_ips = value.strip()
            entries.append(entry)
        return entries

    def has_peer(self, name: str) -> bool:
        return any(True for _ in self._markers(name))

    def is_blocked(self, name: str) -> bool:
        marker = f"{BLOCKED_PREFIX}{name}"
        return any(_content(line) == marker for line in self._lines)

    def append_peer(self, name: str, public_key: str, address: str) -> None:
        """Append a peer block. Name collisions are the caller's concern."""
        if not PEER_NAME_PATTERN.fullmatch(name):
            msg = f"Invalid peer name: {name!r}"
            raise ValueError(msg)
        if self._lines and not _eol(self._lines[-1]):
            self._lines[-1] += "\n"
        self._lines.extend(
            [
                "\n",
                f"{NAME_PREFIX}{name}\n",
                "[Peer]\n",
                f"PublicKey = {public_key}\n",
                f"AllowedIPs = {address}\n",
            ]
        )

    def remove_peer(self, name: str) -> bool:
        """Delete every block with this name. Returns False if none matched."""
        matches = [index for index, _, _ in self._markers(name)]
        for index in reversed(matches):
            start = index
            if start > 0 and not _content(self._lines[start - 1]).strip():
                start -= 1
            del self._lines[start:self._block_end(index)]
        return bool(matches)

    def set_blocked(self, name: str, blocked: bool) -> bool:  # noqa: FBT001
        """Comment out or restore the named block. Returns False if absent."""
        found = False
        for index, _, is_blocked in list(self._markers(name)):
            found = True
            if is_blocked == blocked:
                continue
            eol = _eol(self._lines[index])
            body = range(index + 1, self._block_end(index))
            if blocked:
                self._lines[index] = f"{BLOCKED_PREFIX}{name}{eol}"
                for line_no in body:
                    self._lines[line_no] = "#" + self._lines[line_no]
            else:
                self._lines[index] = f"{NAME_PREFIX}{name}{eol}"
                for line_no in body:
                    if self._lines[line_no].startswith("#"):
                        self._lines[line_no] = self._lines[line_no][1:]
        return found

    def allowed_addresses(self) -> list[ipaddress.IPv4Address]:
        """Every /32 address in AllowedIPs lines, blocked peers included."""
        addresses = []
        for line in self._lines:
            key, _, value = _content(line).lstrip("#").partition("=")
            if key.strip() != "AllowedIPs":
                continue
            for item in value.split(","):
                try:
                    iface = ipaddress.ip_interface(item.strip())
                except ValueError:
                    continue
                if iface.version == 4 and iface.network.prefixlen == 32:  # noqa: PLR2004
                    addresses.append(iface.ip)
        return addresses

    def next_free_address(self, network: ipaddress.IPv4Network) -> str:
        """Highest used host offset plus one; gaps are not reused."""
        base = int(network.network_address)
        highest = 1  # the server holds the first address
        for address in self.allowed_addresses():
            if address in network:
                highest = max(highest, int(address) - base)
        candidate = ipaddress.IPv4Address(base + highest + 1)
        if candidate not in network or candidate == network.broadcast_address:
            msg = f"Address pool {network} is exhausted"
            raise ValueError(msg)
        return f"{candidate}/32"

    def _interface_value(self, key: str) -> str | None:
        for line in self._lines:
            content = _content(line)
            if content in PEER_HEADERS:
                break
            name, _, value = content.partition("=")
            if name.strip() == key:
                return value.strip()
        return None

    def listen_port(self) -> int | None:
        value = self._interface_value("ListenPort")
        return int(value) if value and value.isdigit() else None

    def private_key(self) -> str | None:
        return self._interface_value("PrivateKey")

    @staticmethod
    def render_interface(
        private_key: str,
        network: ipaddress.IPv4Network,
        listen_port: int,
        wg_interface: str,
        net_interface: str,
    ) -> str:
        """Base [Interface] section for a freshly configured host."""
        return (
            "[Interface]\n"
            f"PrivateKey = {private_key}\n"
            f"Address = {first_host(network)}/{network.prefixlen}\n"
            f"ListenPort = {listen_port}\n"
            f"PostUp = iptables -A FORWARD -i {wg_interface} -j ACCEPT; "
            f"iptables -t nat -A POSTROUTING -o {net_interface} -j MASQUERADE\n"
            f"PostDown = iptables -D FORWARD -i {wg_interface} -j ACCEPT; "
            f"iptables -t nat -D POSTROUTING -o {net_interface} -j MASQUERADE\n"
        )


def first_host(network: ipaddress.IPv4Network) -> ipaddress.IPv4Address:
    return network.network_address + 1


def first_client_address(network: ipaddress.IPv4Network) -> str:
    return f"{network.network_address + 2}/32"


class PeerConfigStore:
    """Reads and atomically rewrites the registry file on a remote host."""

    def __init__(
        self,
        session: IRemoteSession,
        path: str = "/etc/wireguard/wg0.conf",
        network: str | ipaddress.IPv4Network = "10.0.0.0/24",
    ):
        self.session = session
        self.path = path
        self.network = ipaddress.IPv4Network(network)

    def exists(self) -> bool:
        quoted = shlex.quote(self.path)
        output = self.session.run(f"test -f {quoted} && echo exists || true")
        return output.strip() == "exists"

    def load(self) -> PeerRegistry:
        return PeerRegistry(self.session.run(f"cat {shlex.quote(self.path)}"))

    def commit(self, registry: PeerRegistry) -> None:
        """Replace the whole file via a sibling temp file and a rename."""
        tmp = shlex.quote(f"{self.path}.tmp")
        self.session.write_file(f"{self.path}.tmp", registry.text)
        self.session.run(f"chmod 600 {tmp} && mv -f {tmp} {shlex.quote(self.path)}")

    def next_free_address(self) -> str:
        try:
            registry = self.load()
        except CommandFailedError as e:
            logger.warning("Registry %s unreadable, assuming no peers: %s", self.path, e)
            return first_client_address(self.network)
        return registry.next_free_address(self.network)

    def append_peer(self, name: str, public_key: str, address: str) -> None:
        registry = self.load()
        registry.append_peer(name, public_key, address)
        self.commit(registry)

    def remove_peer(self, name: str) -> bool:
        registry = self.load()
        if not registry.remove_peer(name):
            logger.info("Peer %s not present in %s", name, self.path)
            return False
        self.commit(registry)
        return True

    def set_blocked(self, name: str, blocked: bool) -> bool:  # noqa: FBT001
        registry = self.load()
        before = registry.text
        found = registry.set_blocked(name, blocked)
        if registry.text != before:
            self.commit(registry)
        return found

    def is_blocked(self, name: str) -> bool:
        return self.load().is_blocked(name)

    def has_peer(self, name: str) -> bool:
        return self.load().has_peer(name)
