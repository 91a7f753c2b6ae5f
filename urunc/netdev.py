"""Tap device, address and traffic-control management inside a network namespace."""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import socket
import struct
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass

from urunc.log_forward import STANDARD_LOGGER_NAME

DEFAULT_INTERFACE = "eth0"
DEFAULT_TAP = "tapX_urunc"

SYS_CLASS_NET = "/sys/class/net"
PROC_NET_ROUTE = "/proc/net/route"

_MAX_TAP_DEVICES = 255
_RTF_GATEWAY = 0x2
_INGRESS_PARENT = "ffff:"

_netlog = logging.LoggerAdapter(
    logging.getLogger(STANDARD_LOGGER_NAME), {"fields": {"subsystem": "network"}}
)


class NetworkError(RuntimeError):
    """Raised when a network configuration command fails."""


class LinkNotFoundError(LookupError):
    """Raised when a network link does not exist."""


@dataclass(frozen=True)
class Link:
    """A network link as seen in the current namespace."""

    name: str
    index: int = 0
    mtu: int = 1500
    hardware_addr: str = ""


@dataclass
class Interface:
    """Addressing details handed to the unikernel."""

    ip: str = ""
    default_gateway: str = ""
    mask: str = ""
    interface: str = ""
    mac: str = ""


@dataclass
class UnikernelNetworkInfo:
    """The tap device created for a unikernel and the interface it mirrors."""

    tap_device: str
    eth_device: Interface


def _run(*args: str) -> str:
    """Run a network tool and return its standard output."""
    try:
        result = subprocess.run(list(args), capture_output=True, text=True, check=False)
    except OSError as exc:
        raise NetworkError(f"{' '.join(args)}: {exc}") from exc
    if result.returncode != 0:
        detail = (result.stderr or "").strip() or f"exit status {result.returncode}"
        raise NetworkError(f"{' '.join(args)} failed: {detail}")
    return result.stdout or ""


def _interface_names() -> list[str]:
    return sorted(os.listdir(SYS_CLASS_NET))


def link_by_name(name: str) -> Link:
    """Look up a link by name; raise ``LinkNotFoundError`` if it is absent."""
    base = os.path.join(SYS_CLASS_NET, name)
    if not name or not os.path.isdir(base):
        raise LinkNotFoundError(f"Link not found: {name}")

    def read(attribute: str) -> str:
        try:
            with open(os.path.join(base, attribute), encoding="utf-8") as handle:
                return handle.read().strip()
        except OSError:
            return ""

    return Link(
        name=name,
        index=int(read("ifindex") or 0),
        mtu=int(read("mtu") or 0),
        hardware_addr=read("address"),
    )


def get_tap_index() -> int:
    """Count the tap interfaces present; more than 255 is an error."""
    count = sum(1 for name in _interface_names() if "tap" in name)
    if count > _MAX_TAP_DEVICES:
        raise ValueError("TAP interfaces count higher than 255")
    return count


def create_tap_device(name: str, mtu: int, owner_uid: int, owner_gid: int) -> Link:
    """Create a persistent single-queue tap device owned by the given user and group."""
    try:
        _run(
            "ip", "tuntap", "add", "dev", name, "mode", "tap",
            "user", str(owner_uid), "group", str(owner_gid),
            "one_queue", "vnet_hdr",
        )
    except NetworkError as exc:
        raise NetworkError(f"failed to create tap device: {exc}") from exc
    try:
        _run("ip", "link", "set", "dev", name, "mtu", str(mtu))
    except NetworkError as exc:
        raise NetworkError(f"failed to set tap device MTU to {mtu}: {exc}") from exc
    return link_by_name(name)


def ensure_eth0_exists() -> None:
    """Raise ``LinkNotFoundError`` unless the default interface is present."""
    if DEFAULT_INTERFACE not in _interface_names():
        raise LinkNotFoundError("eth0 device not found")


def mask_to_decimal(mask: bytes | str) -> str:
    """Render a network mask, given as raw bytes or hex, in dotted decimal."""
    raw = bytes.fromhex(mask) if isinstance(mask, str) else bytes(mask)
    if not raw:
        raise ValueError("empty network mask")
    return ".".join(str(part) for part in raw)


def _ipv4_addresses(iface: str) -> Iterator[tuple[str, int]]:
    output = _run("ip", "-j", "-4", "addr", "show", "dev", iface)
    for entry in json.loads(output or "[]"):
        for info in entry.get("addr_info", []):
            if info.get("family", "inet") == "inet" and "local" in info:
                yield info["local"], int(info.get("prefixlen", 32))


def _discover_gateway() -> str:
    with open(PROC_NET_ROUTE, encoding="utf-8") as routes:
        next(routes, None)
        for line in routes:
            fields = line.split()
            if len(fields) < 4:
                continue
            if fields[1] == "00000000" and int(fields[3], 16) & _RTF_GATEWAY:
                return socket.inet_ntoa(struct.pack("<I", int(fields[2], 16)))
    raise LookupError("no gateway found")


def get_interface_info(iface: str) -> Interface:
    """Collect the IPv4 address, mask, gateway and MAC address of ``iface``."""
    link = link_by_name(iface)
    if not link.hardware_addr:
        raise ValueError(f"failed to get MAC address of {iface!r}")

    ip_address = ""
    mask = b""
    for local, prefixlen in _ipv4_addresses(iface):
        address = ipaddress.IPv4Address(local)
        if address.is_loopback:
            continue
        ip_address = str(address)
        mask = ipaddress.IPv4Network(f"0.0.0.0/{prefixlen}").netmask.packed
        break
    if not mask:
        raise ValueError(f"failed to find mask for {DEFAULT_INTERFACE!r}")
    if not ip_address:
        raise ValueError(f"failed to find IPv4 address for {DEFAULT_INTERFACE!r}")

    return Interface(
        ip=ip_address,
        default_gateway=_discover_gateway(),
        mask=mask_to_decimal(mask),
        interface=DEFAULT_INTERFACE,
        mac=link.hardware_addr,
    )


def add_ingress_qdisc(link: Link) -> None:
    """Attach an ingress qdisc to ``link``."""
    _run("tc", "qdisc", "add", "dev", link.name, "ingress")


def add_redirect_filter(source: Link, target: Link) -> None:
    """Redirect every packet arriving on ``source`` to the egress of ``target``."""
    _run(
        "tc", "filter", "add", "dev", source.name, "parent", _INGRESS_PARENT,
        "protocol", "all", "u32", "match", "u32", "0", "0",
        "action", "mirred", "egress", "redirect", "dev", target.name,
    )


def network_setup(
    tap_name: str,
    ip_address: str,
    redirect_link: Link,
    add_tc_rules: bool,
    uid: int,
    gid: int,
) -> Link | None:
    """Create and configure a tap device next to ``redirect_link``.

    Returns ``None`` without doing anything if the default interface is absent.
    """
    try:
        ensure_eth0_exists()
    except (LookupError, OSError):
        _netlog.warning("eth0 interface not found, assuming unikernel was spawned using ctr")
        return None

    tap = create_tap_device(tap_name, redirect_link.mtu, uid, gid)
    if add_tc_rules:
        add_ingress_qdisc(tap)
        add_ingress_qdisc(redirect_link)
        add_redirect_filter(tap, redirect_link)
        add_redirect_filter(redirect_link, tap)

    if "/" not in ip_address:
        raise ValueError(f"invalid CIDR address: {ip_address}")
    address = ipaddress.ip_interface(ip_address)
    _run("ip", "addr", "replace", str(address), "dev", tap.name)
    _run("ip", "link", "set", "dev", tap.name, "up")
    return tap


def _delete_all_tc_filters(device: Link) -> None:
    try:
        tap_filters = _run("tc", "filter", "show", "dev", device.name, "ingress")
    except NetworkError:
        return
    eth = link_by_name(DEFAULT_INTERFACE)
    eth_filters = _run("tc", "filter", "show", "dev", eth.name, "ingress")
    for link, listing in ((device, tap_filters), (eth, eth_filters)):
        if listing.strip():
            _run("tc", "filter", "del", "dev", link.name, "ingress")


def _delete_ingress_qdisc(link: Link) -> None:
    qdiscs = json.loads(_run("tc", "-j", "qdisc", "show", "dev", link.name) or "[]")
    if any(qdisc.get("kind") == "ingress" for qdisc in qdiscs):
        _run("tc", "qdisc", "del", "dev", link.name, "ingress")


def _delete_all_qdiscs(device: Link) -> None:
    _delete_ingress_qdisc(device)
    _delete_ingress_qdisc(link_by_name(DEFAULT_INTERFACE))


def _delete_tap_device(device: Link) -> None:
    try:
        _run("ip", "link", "set", "dev", device.name, "down")
    except NetworkError as exc:
        _netlog.error("Failed to set link down: %s", exc)
        raise
    try:
        _run("ip", "link", "delete", "dev", device.name)
    except NetworkError as exc:
        _netlog.error("Failed to delete link: %s", exc)
        raise


def cleanup(tap_device: str) -> None:
    """Remove the tap device and the traffic-control rules set up for it."""
    _netlog.debug("net cleanup called")
    for name in _interface_names():
        _netlog.debug("Discovered device %s", name)
    try:
        tap = link_by_name(tap_device)
    except LinkNotFoundError as exc:
        _netlog.error("Failed to get link %s by name: %s", tap_device, exc)
        return None
    try:
        _delete_all_tc_filters(tap)
    except (NetworkError, LookupError, ValueError) as exc:
        _netlog.error("Failed to delete all TC filters: %s", exc)
        raise
    try:
        _delete_all_qdiscs(tap)
    except (NetworkError, LookupError, ValueError) as exc:
        _netlog.error("Failed to delete all qdiscs: %s", exc)
        raise
    try:
        _delete_tap_device(tap)
    except NetworkError as exc:
        _netlog.error("Failed to delete link %s: %s", tap_device, exc)
    return None