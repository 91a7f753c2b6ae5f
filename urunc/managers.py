"""Network managers that wire a unikernel's tap device into the container network."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod

from urunc import netdev
from urunc.constants import (
    DYNAMIC_NETWORK_TAP_IP,
    STATIC_NETWORK_TAP_IP,
    STATIC_NETWORK_UNIKERNEL_IP,
)
from urunc.log_forward import STANDARD_LOGGER_NAME
from urunc.netdev import (
    DEFAULT_INTERFACE,
    DEFAULT_TAP,
    Interface,
    Link,
    NetworkError,
    UnikernelNetworkInfo,
)

IP_FORWARD_PATH = "/proc/sys/net/ipv4/ip_forward"
STATIC_IP_ADDR = f"{STATIC_NETWORK_TAP_IP}/24"
STATIC_MASK = "255.255.255.0"

_netlog = logging.LoggerAdapter(
    logging.getLogger(STANDARD_LOGGER_NAME), {"fields": {"subsystem": "network"}}
)


class NetworkManager(ABC):
    """Sets up networking for a unikernel inside the current network namespace."""

    @abstractmethod
    def network_setup(self, uid: int, gid: int) -> UnikernelNetworkInfo:
        """Create the tap device and return what the unikernel needs to use it."""


def _redirect_link() -> Link:
    try:
        return netdev.link_by_name(DEFAULT_INTERFACE)
    except LookupError:
        _netlog.error("failed to find %s interface", DEFAULT_INTERFACE)
        raise


def _require_tap(tap: Link | None) -> Link:
    if tap is None:
        raise NetworkError(f"{DEFAULT_INTERFACE} interface not found, no tap device was created")
    return tap


class DynamicNetwork(NetworkManager):
    """Mirrors all traffic between the default interface and a new tap device.

    Only one unikernel per network namespace is supported.
    """

    def network_setup(self, uid: int, gid: int) -> UnikernelNetworkInfo:
        tap_index = netdev.get_tap_index()
        if tap_index > 0:
            raise NetworkError(
                "unsupported operation: can't spawn multiple unikernels "
                "in the same network namespace"
            )
        redirect_link = _redirect_link()
        tap_name = DEFAULT_TAP.replace("X", str(tap_index))
        ip_address = f"{DYNAMIC_NETWORK_TAP_IP}/24".replace("X", str(tap_index + 1))
        tap = _require_tap(
            netdev.network_setup(tap_name, ip_address, redirect_link, True, uid, gid)
        )
        return UnikernelNetworkInfo(
            tap_device=tap.name,
            eth_device=netdev.get_interface_info(DEFAULT_INTERFACE),
        )


class StaticNetwork(NetworkManager):
    """Gives the unikernel a fixed address behind NAT on the default interface."""

    def network_setup(self, uid: int, gid: int) -> UnikernelNetworkInfo:
        tap_name = DEFAULT_TAP.replace("X", "0")
        redirect_link = _redirect_link()
        tap = _require_tap(
            netdev.network_setup(tap_name, STATIC_IP_ADDR, redirect_link, False, uid, gid)
        )
        set_nat_rule(DEFAULT_INTERFACE, STATIC_IP_ADDR)
        return UnikernelNetworkInfo(
            tap_device=tap.name,
            eth_device=Interface(
                ip=STATIC_NETWORK_UNIKERNEL_IP,
                default_gateway=STATIC_NETWORK_TAP_IP,
                mask=STATIC_MASK,
                interface=DEFAULT_INTERFACE,
                mac=redirect_link.hardware_addr,
            ),
        )


def set_nat_rule(iface: str, source_ip: str) -> None:
    """Enable IP forwarding and masquerade traffic from ``source_ip`` out of ``iface``."""
    path = shutil.which("iptables")
    if path is None:
        raise FileNotFoundError('executable file "iptables" not found in $PATH')

    try:
        fd = os.open(IP_FORWARD_PATH, os.O_WRONLY)
    except OSError as exc:
        raise NetworkError(f"failed to open {IP_FORWARD_PATH}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="ascii") as forward:
            forward.write("1")
    except OSError as exc:
        raise NetworkError(f"failed to enable IP forwarding: {exc}") from exc
    _netlog.debug("Enabled IP forwarding")

    args = [
        path, "-t", "nat", "-A", "POSTROUTING",
        "-s", source_ip, "-o", iface,
        "-j", "MASQUERADE", "--wait", "1",
    ]
    result = subprocess.run(args, capture_output=True, text=True, check=False)
    if result.returncode != 0:
        raise NetworkError(f"iptables command {' '.join(args)} failed: {result.stderr or ''}")
    _netlog.debug("Applied iptables rule for NAT")


def new_network_manager(network_type: str) -> NetworkManager:
    """Return the manager for ``"static"`` or ``"dynamic"`` networking."""
    if network_type == "static":
        return StaticNetwork()
    if network_type == "dynamic":
        return DynamicNetwork()
    raise ValueError(f"network manager {network_type} not supported")