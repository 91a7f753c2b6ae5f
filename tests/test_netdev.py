import json
import subprocess

import pytest

from urunc import netdev
from urunc.netdev import Interface, Link, LinkNotFoundError, NetworkError

TAP = "tap0_urunc"
ETH_MAC = "02:00:00:00:00:01"
TAP_MAC = "02:00:00:00:00:02"


class FakeRunner:
    def __init__(self):
        self.calls = []
        self.rules = []

    def respond(self, prefix, returncode=0, stdout=""):
        self.rules.append((list(prefix), returncode, stdout))

    def __call__(self, cmd, **kwargs):
        cmd = list(cmd)
        self.calls.append(cmd)
        for prefix, returncode, stdout in self.rules:
            if cmd[: len(prefix)] == prefix:
                stderr = "boom" if returncode else ""
                return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def sysfs(tmp_path, monkeypatch):
    root = tmp_path / "net"
    root.mkdir()
    monkeypatch.setattr(netdev, "SYS_CLASS_NET", str(root))

    def add(name, index=1, mtu=1500, mac=""):
        d = root / name
        d.mkdir()
        (d / "ifindex").write_text(f"{index}\n")
        (d / "mtu").write_text(f"{mtu}\n")
        (d / "address").write_text(f"{mac}\n")

    return add


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def routes(tmp_path, monkeypatch):
    path = tmp_path / "route"
    path.write_text(
        "Iface\tDestination\tGateway\tFlags\tRefCnt\tUse\tMetric\tMask\tMTU\tWindow\tIRTT\n"
        "eth0\t000010AC\t00000000\t0001\t0\t0\t0\t00FFFFFF\t0\t0\t0\n"
        "eth0\t00000000\t011010AC\t0003\t0\t0\t0\t00000000\t0\t0\t0\n"
    )
    monkeypatch.setattr(netdev, "PROC_NET_ROUTE", str(path))
    return path


def test_link_by_name_reads_attributes(sysfs):
    sysfs("eth0", index=7, mtu=9000, mac=ETH_MAC)
    assert netdev.link_by_name("eth0") == Link("eth0", 7, 9000, ETH_MAC)


def test_link_by_name_missing(sysfs):
    with pytest.raises(LinkNotFoundError):
        netdev.link_by_name("eth0")


def test_get_tap_index_counts_tap_names(sysfs):
    for name in ("lo", "eth0", TAP, "mytap"):
        sysfs(name)
    assert netdev.get_tap_index() == 2


def test_get_tap_index_too_many(sysfs):
    for i in range(256):
        sysfs(f"tap{i}")
    with pytest.raises(ValueError, match="higher than 255"):
        netdev.get_tap_index()


def test_ensure_eth0_exists(sysfs):
    sysfs("lo")
    with pytest.raises(LinkNotFoundError, match="eth0 device not found"):
        netdev.ensure_eth0_exists()
    sysfs("eth0")
    assert netdev.ensure_eth0_exists() is None


@pytest.mark.parametrize("mask", [bytes([255, 255, 255, 0]), "ffffff00"])
def test_mask_to_decimal(mask):
    assert netdev.mask_to_decimal(mask) == "255.255.255.0"


def test_mask_to_decimal_invalid():
    with pytest.raises(ValueError):
        netdev.mask_to_decimal("zz")
    with pytest.raises(ValueError):
        netdev.mask_to_decimal(b"")


def _addr_json(*entries):
    return json.dumps(
        [{"ifname": "eth0", "addr_info": [{"family": "inet", "local": ip, "prefixlen": p} for ip, p in entries]}]
    )


def test_get_interface_info_without_ipv4(sysfs, runner, routes):
    sysfs("eth0", mac=ETH_MAC)
    runner.respond(["ip", "-j", "-4", "addr"], stdout=_addr_json(("127.0.0.1", 8)))
    with pytest.raises(ValueError, match="failed to find mask"):
        netdev.get_interface_info("eth0")


def test_get_interface_info_without_mac(sysfs, runner, routes):
    sysfs("eth0", mac="")
    with pytest.raises(ValueError, match="MAC address"):
        netdev.get_interface_info("eth0")
    assert runner.calls == []


def test_create_tap_device(sysfs, runner):
    sysfs(TAP, index=3, mtu=1400, mac=TAP_MAC)
    link = netdev.create_tap_device(TAP, 1400, 1000, 1001)
    assert link.name == TAP
    assert runner.calls[0][:6] == ["ip", "tuntap", "add", "dev", TAP, "mode"]
    assert "1000" in runner.calls[0] and "1001" in runner.calls[0]
    assert runner.calls[1] == ["ip", "link", "set", "dev", TAP, "mtu", "1400"]


def test_create_tap_device_failure(sysfs, runner):
    runner.respond(["ip", "tuntap"], returncode=1)
    with pytest.raises(NetworkError, match="failed to create tap device"):
        netdev.create_tap_device(TAP, 1500, 0, 0)
    assert len(runner.calls) == 1


def test_add_redirect_filter(runner):
    netdev.add_redirect_filter(Link(TAP), Link("eth0"))
    cmd = runner.calls[0]
    assert cmd[:5] == ["tc", "filter", "add", "dev", TAP]
    assert cmd[-3:] == ["redirect", "dev", "eth0"]


def test_network_setup_without_eth0(sysfs, runner):
    sysfs("lo")
    assert netdev.network_setup(TAP, "172.16.1.1/24", Link("eth0"), True, 0, 0) is None
    assert runner.calls == []


def test_network_setup_with_tc_rules(sysfs, runner):
    sysfs("eth0", index=2, mtu=1500, mac=ETH_MAC)
    sysfs(TAP, index=3, mtu=1500, mac=TAP_MAC)
    eth = netdev.link_by_name("eth0")
    tap = netdev.network_setup(TAP, "172.16.1.1/24", eth, True, 0, 0)
    assert tap.name == TAP
    assert runner.calls[1] == ["ip", "link", "set", "dev", TAP, "mtu", "1500"]
    assert runner.calls[2] == ["tc", "qdisc", "add", "dev", TAP, "ingress"]
    assert runner.calls[3] == ["tc", "qdisc", "add", "dev", "eth0", "ingress"]
    assert runner.calls[4][4] == TAP and runner.calls[4][-1] == "eth0"
    assert runner.calls[5][4] == "eth0" and runner.calls[5][-1] == TAP
    assert runner.calls[6] == ["ip", "addr", "replace", "172.16.1.1/24", "dev", TAP]
    assert runner.calls[7] == ["ip", "link", "set", "dev", TAP, "up"]


def test_network_setup_without_tc_rules(sysfs, runner):
    sysfs("eth0", mac=ETH_MAC)
    sysfs(TAP, mac=TAP_MAC)
    tap = netdev.network_setup(TAP, "172.16.1.1/24", netdev.link_by_name("eth0"), False, 0, 0)
    assert tap.name == TAP
    assert not any(cmd[0] == "tc" for cmd in runner.calls)


def test_network_setup_bad_address(sysfs, runner):
    sysfs("eth0", mac=ETH_MAC)
    sysfs(TAP, mac=TAP_MAC)
    with pytest.raises(ValueError):
        netdev.network_setup(TAP, "172.16.1.1", netdev.link_by_name("eth0"), False, 0, 0)


def test_cleanup_missing_tap(sysfs, runner):
    sysfs("eth0")
    assert netdev.cleanup(TAP) is None
    assert runner.calls == []


def test_cleanup_removes_everything(sysfs, runner):
    sysfs("eth0", mac=ETH_MAC)
    sysfs(TAP, mac=TAP_MAC)
    runner.respond(["tc", "filter", "show"], stdout="filter protocol all pref 49152 u32\n")
    runner.respond(["tc", "-j", "qdisc", "show"], stdout='[{"kind":"ingress"}]')
    assert netdev.cleanup(TAP) is None
    for name in (TAP, "eth0"):
        assert ["tc", "filter", "del", "dev", name, "ingress"] in runner.calls
        assert ["tc", "qdisc", "del", "dev", name, "ingress"] in runner.calls
    assert runner.calls[-2:] == [
        ["ip", "link", "set", "dev", TAP, "down"],
        ["ip", "link", "delete", "dev", TAP],
    ]


def test_cleanup_without_eth0_raises(sysfs, runner):
    sysfs(TAP, mac=TAP_MAC)
    with pytest.raises(LinkNotFoundError):
        netdev.cleanup(TAP)