"""Shared test fixtures."""

import json

import pytest

from vpnbypass.config import BypassSettings


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory."""
    return BypassSettings(
        app_dir=tmp_path,
        hosts_file=tmp_path / "hosts",
        helper_socket=tmp_path / "helper.sock",
        helper_timeout=1.0,
        apply_cooldown_seconds=5.0,
    )


@pytest.fixture
def ifconfig_vpn_output():
    """Mock `ifconfig` output with a GlobalProtect-style tunnel up."""
    return """lo0: flags=8049<UP,LOOPBACK,RUNNING,MULTICAST> mtu 16384
\toptions=1203<RXCSUM,TXCSUM,TXSTATUS,SW_TIMESTAMP>
\tinet 127.0.0.1 netmask 0xff000000
\tinet6 ::1 prefixlen 128
en0: flags=8863<UP,BROADCAST,SMART,RUNNING,SIMPLEX,MULTICAST> mtu 1500
\tether a4:83:e7:11:22:33
\tinet 192.168.1.23 netmask 0xffffff00 broadcast 192.168.1.255
\tstatus: active
utun0: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1380
\tinet6 fe80::1%utun0 prefixlen 64 scopeid 0x10
utun3: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1400
\tinet 10.20.30.40 --> 10.20.30.40 netmask 0xffffffff
"""


@pytest.fixture
def ifconfig_no_vpn_output():
    """Mock `ifconfig` output with only the physical interface."""
    return """lo0: flags=8049<UP,LOOPBACK,RUNNING,MULTICAST> mtu 16384
\tinet 127.0.0.1 netmask 0xff000000
en0: flags=8863<UP,BROADCAST,SMART,RUNNING,SIMPLEX,MULTICAST> mtu 1500
\tinet 192.168.1.23 netmask 0xffffff00 broadcast 192.168.1.255
utun0: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1380
\tinet6 fe80::1%utun0 prefixlen 64 scopeid 0x10
"""


@pytest.fixture
def ifconfig_mesh_output():
    """Mock `ifconfig` output with a Tailscale interface in the CGNAT range."""
    return """en0: flags=8863<UP,BROADCAST,SMART,RUNNING,SIMPLEX,MULTICAST> mtu 1500
\tinet 192.168.1.23 netmask 0xffffff00 broadcast 192.168.1.255
utun4: flags=8051<UP,POINTOPOINT,RUNNING,MULTICAST> mtu 1280
\tinet 100.70.1.2 --> 100.70.1.2 netmask 0xffffffff
"""


@pytest.fixture
def scutil_dns_output():
    """Mock `scutil --dns` output: tunnel resolver first, Wi-Fi resolver after."""
    return """DNS configuration

resolver #1
  search domain[0] : corp.example.com
  nameserver[0] : 10.0.0.53
  if_index : 18 (utun3)
  flags    : Request A records
  reach    : 0x00000003 (Reachable,Transient Connection)

resolver #2
  domain   : local
  options  : mdns
  timeout  : 5
  flags    : Request A records
  reach    : 0x00000000 (Not Reachable)
  order    : 300000

DNS configuration (for scoped queries)

resolver #1
  nameserver[0] : 192.168.1.1
  if_index : 6 (en0)
  flags    : Scoped, Request A records
  reach    : 0x00020002 (Reachable,Directly Reachable Address)
"""


@pytest.fixture
def networksetup_wifi_output():
    """Mock `networksetup -getinfo Wi-Fi` output."""
    return """DHCP Configuration
IP address: 192.168.1.23
Subnet mask: 255.255.255.0
Router: 192.168.1.1
Client ID:
IPv6: Automatic
IPv6 IP address: none
IPv6 Router: none
Wi-Fi ID: a4:83:e7:11:22:33
"""


@pytest.fixture
def networksetup_no_router_output():
    return """DHCP Configuration
IP address: 192.168.1.23
Subnet mask: 255.255.255.0
Router: none
"""


@pytest.fixture
def route_get_default_output():
    """Mock `route -n get default` output."""
    return """   route to: default
destination: default
       mask: default
    gateway: 192.168.1.1
  interface: en0
      flags: <UP,GATEWAY,DONE,STATIC,PRCLONING,GLOBAL>
 recvpipe  sendpipe  ssthresh  rtt,msec    rttvar  hopcount      mtu     expire
       0         0         0         0         0         0      1500         0
"""


@pytest.fixture
def dig_short_output():
    """Mock `dig +short` output with a CNAME chain."""
    return """edge-star.example.net.
203.0.113.10
203.0.113.11
"""


@pytest.fixture
def tailscale_exit_node_output():
    """Mock `tailscale status --json` with an online exit node."""
    return json.dumps({
        "BackendState": "Running",
        "ExitNodeStatus": {"ID": "n123", "Online": True, "TailscaleIPs": ["100.101.1.1/32"]},
        "Peer": {},
    })


@pytest.fixture
def tailscale_no_exit_node_output():
    return json.dumps({
        "BackendState": "Running",
        "Peer": {
            "nodekey:abc": {"HostName": "nas", "ExitNode": False, "Online": True},
        },
    })


@pytest.fixture
def ping_output():
    """Mock single-packet `ping` output."""
    return """PING 203.0.113.10 (203.0.113.10): 56 data bytes
64 bytes from 203.0.113.10: icmp_seq=0 ttl=56 time=14.532 ms

--- 203.0.113.10 ping statistics ---
1 packets transmitted, 1 packets received, 0.0% packet loss
round-trip min/avg/max/stddev = 14.532/14.532/14.532/0.000 ms
"""
