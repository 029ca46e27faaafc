import logging
from types import SimpleNamespace as NS
from unittest.mock import MagicMock

import pytest
from pyVmomi import vim

from hostnet_report import collect, topology


def _network():
    pnic0 = NS(device="vmnic0", key="key-vim.host.PhysicalNic-vmnic0", mac="00:50:56:00:00:00",
               driver="ixgben", pci="0000:01:00.0", linkSpeed=NS(speedMb=10000, duplex=True))
    pnic1 = NS(device="vmnic1", key="key-vim.host.PhysicalNic-vmnic1", mac="00:50:56:00:00:01",
               driver="i40en", pci="0000:02:00.0", linkSpeed=None)
    vswitch = NS(
        name="vSwitch0", key="key-vim.host.VirtualSwitch-vSwitch0", mtu=1500, numPorts=128,
        pnic=[pnic0.key], portgroup=["key-vim.host.PortGroup-Management Network"],
        spec=NS(bridge=NS(nicDevice=["vmnic0"]),
                policy=NS(nicTeaming=NS(policy="loadbalance_srcid",
                                        nicOrder=NS(activeNic=["vmnic0"], standbyNic=[])))),
    )
    proxy = NS(
        dvsName="dvs-prod", dvsUuid="50 2a", key="DvsPortset-0", mtu=9000, pnic=[pnic1.key],
        uplinkPort=[NS(key="10", value="Uplink 1"), NS(key="11", value="Uplink 2")],
        spec=NS(backing=NS(pnicSpec=[NS(pnicDevice="vmnic1", uplinkPortKey="10")])),
    )
    pg = NS(key="key-vim.host.PortGroup-Management Network",
            spec=NS(name="Management Network", vlanId=0, vswitchName="vSwitch0"))
    vmk0 = NS(device="vmk0", key="key-vim.host.VirtualNic-vmk0", portgroup="Management Network",
              spec=NS(ip=NS(ipAddress="10.0.0.11", subnetMask="255.255.255.0", dhcp=False),
                      mac="00:50:56:aa:00:00", mtu=1500, distributedVirtualPort=None,
                      netStackInstanceKey="defaultTcpipStack"))
    vmk1 = NS(device="vmk1", key="key-vim.host.VirtualNic-vmk1", portgroup="",
              spec=NS(ip=NS(ipAddress="10.0.30.11", subnetMask="255.255.255.0", dhcp=False),
                      mac="00:50:56:aa:00:01", mtu=9000,
                      distributedVirtualPort=NS(switchUuid="50 2a", portgroupKey="dvportgroup-10", portKey="12"),
                      netStackInstanceKey="defaultTcpipStack"))
    return NS(
        pnic=[pnic1, pnic0], vswitch=[vswitch], proxySwitch=[proxy], portgroup=[pg], vnic=[vmk1, vmk0],
        dnsConfig=NS(hostName="esx01", domainName="lab.local", dhcp=False,
                     address=["10.0.0.53", "10.0.0.54"], searchDomain=["lab.local"]),
        ipRouteConfig=NS(defaultGateway="10.0.0.1", gatewayDevice="vmk0", ipV6DefaultGateway=None),
        routeTableInfo=NS(ipRoute=[
            NS(network="10.0.0.0", prefixLength=24, gateway="0.0.0.0", deviceName="vmk0"),
            NS(network="0.0.0.0", prefixLength=0, gateway="10.0.0.1", deviceName="vmk0"),
        ]),
    )


def _config():
    firewall = NS(
        defaultPolicy=NS(incomingBlocked=True, outgoingBlocked=True),
        ruleset=[
            NS(key="sshServer", label="SSH Server", enabled=True, required=False,
               rule=[NS(port=22, endPort=None, direction="inbound", portType="dst", protocol="tcp")],
               allowedHosts=NS(allIp=False, ipAddress=["10.0.0.5"],
                               ipNetwork=[NS(network="10.1.0.0", prefixLength=16)])),
            NS(key="ntpClient", label="NTP Client", enabled=True, required=False,
               rule=[NS(port=123, endPort=None, direction="outbound", portType="dst", protocol="udp")],
               allowedHosts=NS(allIp=True, ipAddress=[], ipNetwork=[])),
            NS(key="vMotion", label="vMotion", enabled=True, required=False,
               rule=[NS(port=8000, endPort=8100, direction="inbound", portType="dst", protocol="tcp")],
               allowedHosts=None),
        ],
    )
    return NS(
        network=_network(),
        firewall=firewall,
        dateTimeInfo=NS(timeZone=NS(name="UTC"), ntpConfig=NS(server=["0.pool.ntp.org", "1.pool.ntp.org"])),
        service=NS(service=[NS(key="TSM-SSH", running=False, policy="off"),
                            NS(key="ntpd", running=True, policy="on")]),
    )


def _dvportgroup():
    dvs = NS(name="dvs-prod", uuid="50 2a", config=NS(defaultPortConfig=NS(
        uplinkTeamingPolicy=NS(policy=NS(value="loadbalance_srcid"),
                               uplinkPortOrder=NS(activeUplinkPort=["Uplink 1"], standbyUplinkPort=["Uplink 2"])))))
    return NS(name="dv-storage", key="dvportgroup-10",
              config=NS(key="dvportgroup-10", uplink=False, distributedVirtualSwitch=dvs,
                        defaultPortConfig=NS(vlan=NS(vlanId=30))))


def _hints():
    return [
        NS(device="vmnic0",
           connectedSwitchPort=NS(devId="core-sw1", portId="Eth1/1", address="10.0.0.2",
                                  hardwarePlatform="N9K-C93180YC", vlan=0, mtu=9216),
           lldpInfo=None),
        NS(device="vmnic1", connectedSwitchPort=None,
           lldpInfo=NS(chassisId="aa:bb:cc:dd:ee:ff", portId="Ethernet7",
                       parameter=[NS(key="System Name", value="leaf-a"),
                                  NS(key="Port Description", value="esx01 vmnic1")])),
    ]


def _host(network_system=None):
    if network_system is None:
        network_system = MagicMock()
        network_system.QueryNetworkHint.return_value = _hints()
    vnic_mgr = NS(info=NS(netConfig=[
        NS(nicType="management", selectedVnic=["management.key-vim.host.VirtualNic-vmk0"],
           candidateVnic=[NS(key="key-vim.host.VirtualNic-vmk0", device="vmk0"),
                          NS(key="key-vim.host.VirtualNic-vmk1", device="vmk1")]),
        NS(nicType="vmotion", selectedVnic=["vmotion.key-vim.host.VirtualNic-vmk1"], candidateVnic=[]),
    ]))
    return NS(
        name="esx01.lab.local",
        config=_config(),
        network=[NS(name="VM Network"), _dvportgroup()],
        configManager=NS(networkSystem=network_system, virtualNicManager=vnic_mgr),
        summary=NS(config=NS(product=NS(fullName="VMware ESXi 8.0.2 build-22380479"))),
    )


@pytest.fixture(autouse=True)
def duck_typed_dvportgroups(monkeypatch):
    monkeypatch.setattr(collect, "_is_dvportgroup", lambda net: getattr(net, "key", "").startswith("dvportgroup-"))


def test_collect_host_sections():
    data = collect.collect_host(_host(), datacenter="DC1", cluster="Prod")
    assert data["hostname"] == "esx01.lab.local"
    assert data["cluster"] == "Prod"
    assert data["version"] == "VMware ESXi 8.0.2 build-22380479"
    assert [p["device"] for p in data["pnics"]] == ["vmnic0", "vmnic1"]
    assert data["pnics"][0]["speed_mb"] == 10000
    assert data["pnics"][1]["speed_mb"] is None

    vsw = data["vswitches"][0]
    assert vsw["pnic_keys"] == ["key-vim.host.PhysicalNic-vmnic0"]
    assert vsw["active_nics"] == ["vmnic0"]
    assert vsw["standby_nics"] == []

    proxy = data["proxy_switches"][0]
    assert proxy["pnic_specs"] == [{"device": "vmnic1", "uplink_port_key": "10"}]
    assert proxy["uplink_ports"] == {"10": "Uplink 1", "11": "Uplink 2"}
    assert data["dvs_teaming"] == {
        "50 2a": {"policy": "loadbalance_srcid", "active": ["Uplink 1"], "standby": ["Uplink 2"]},
    }


def test_collect_portgroups_and_vmknics():
    data = collect.collect_host(_host())
    assert data["portgroups"] == [
        {"type": "standard", "key": "key-vim.host.PortGroup-Management Network",
         "name": "Management Network", "switch": "vSwitch0", "vlan_id": 0},
        {"type": "distributed", "key": "dvportgroup-10", "name": "dv-storage", "switch": "dvs-prod",
         "dvs_uuid": "50 2a", "vlan": "30", "uplink": False},
    ]
    vmk0, vmk1 = data["vmknics"]
    assert vmk0["device"] == "vmk0"
    assert vmk0["portgroup"] == "Management Network"
    assert vmk0["dvs_uuid"] is None
    assert vmk0["services"] == ["management"]
    assert vmk1["portgroup"] is None
    assert vmk1["dvs_uuid"] == "50 2a"
    assert vmk1["dvportgroup_key"] == "dvportgroup-10"
    assert vmk1["services"] == ["vmotion"]


def test_collect_dns_routing_firewall_time():
    data = collect.collect_host(_host())
    assert data["dns"]["servers"] == ["10.0.0.53", "10.0.0.54"]
    assert data["routing"]["default_gateway"] == "10.0.0.1"
    assert [r["network"] for r in data["routing"]["routes"]] == ["0.0.0.0/0", "10.0.0.0/24"]

    rulesets = {r["key"]: r for r in data["firewall"]["rulesets"]}
    assert data["firewall"]["incoming_blocked"] is True
    assert rulesets["sshServer"]["allowed_hosts"] == ["10.0.0.5", "10.1.0.0/16"]
    assert rulesets["ntpClient"]["allowed_hosts"] == "all"
    assert rulesets["vMotion"]["rules"][0]["port"] == "8000-8100"
    assert rulesets["sshServer"]["rules"][0]["port"] == "22"

    assert data["time_sync"] == {
        "time_zone": "UTC",
        "ntp_servers": ["0.pool.ntp.org", "1.pool.ntp.org"],
        "ntpd_running": True,
        "ntpd_policy": "on",
    }


def test_collect_neighbor_hints():
    network_system = MagicMock()
    network_system.QueryNetworkHint.return_value = _hints()
    data = collect.collect_host(_host(network_system))
    network_system.QueryNetworkHint.assert_called_once_with(device=["vmnic0", "vmnic1"])
    assert data["neighbor_hints"]["vmnic0"]["cdp"]["device_id"] == "core-sw1"
    assert data["neighbor_hints"]["vmnic0"]["lldp"] is None
    assert data["neighbor_hints"]["vmnic1"]["lldp"]["system_name"] == "leaf-a"
    assert data["neighbor_hints"]["vmnic1"]["cdp"] is None


def test_neighbor_query_failure_degrades(caplog):
    network_system = MagicMock()
    network_system.QueryNetworkHint.side_effect = RuntimeError("not supported")
    data = collect.collect_host(_host(network_system))
    assert data["neighbor_hints"] == {}
    assert "Neighbor discovery query failed" in caplog.text
    view = topology.build_topology(data)
    assert {a["neighbor"] for a in view["adapters"]} == {"n/a"}


def test_disconnected_host_raises():
    with pytest.raises(collect.CollectionError):
        collect.collect_host(NS(name="esx09", config=None))


def test_collected_host_reconciles():
    view = topology.build_topology(collect.collect_host(_host()))
    claims = {a["device"]: a["switches"] for a in view["adapters"]}
    assert claims == {"vmnic0": ["vSwitch0"], "vmnic1": ["dvs-prod"]}
    dvs = next(sw for sw in view["switches"] if sw["type"] == "distributed")
    assert dvs["uplinks"] == [{"device": "vmnic1", "state": "active", "uplink": "Uplink 1"}]
    assert dvs["vmknics"][0]["vlan"] == "30"


def test_format_vlan_spec():
    assert collect.format_vlan_spec(None) is None
    assert collect.format_vlan_spec(NS(vlanId=0)) == "0"
    trunk = NS(vlanId=[NS(start=100, end=200), NS(start=300, end=300)])
    assert collect.format_vlan_spec(trunk) == "100-200, 300"
    assert collect.format_vlan_spec(NS(pvlanId=15)) == "pvlan 15"
    assert collect.format_vlan_spec(NS()) is None


class _RestrictedPortgroup:
    name = "dv-secure"
    key = "dvportgroup-77"

    @property
    def config(self):
        raise vim.fault.NoPermission(privilegeId="System.Read")


class _BrokenVnicManager:
    @property
    def info(self):
        raise vim.fault.NoPermission(privilegeId="Host.Config.Network")


def test_restricted_portgroup_degrades_to_unknown_vlan(caplog):
    caplog.set_level(logging.DEBUG, logger="hostnet_report.collect")
    host = _host()
    host.network.append(_RestrictedPortgroup())
    data = collect.collect_host(host)

    restricted = next(pg for pg in data["portgroups"] if pg["key"] == "dvportgroup-77")
    assert restricted == {"type": "distributed", "key": "dvportgroup-77", "name": "dv-secure",
                          "switch": None, "dvs_uuid": None, "vlan": None, "uplink": False}
    assert "50 2a" in data["dvs_teaming"]
    assert "Config lookup failed for portgroup dv-secure" in caplog.text

    view = topology.build_topology(data)
    dvs = next(sw for sw in view["switches"] if sw["type"] == "distributed")
    assert dvs["vmknics"][0]["vlan"] == "30"


def test_vnic_manager_failure_leaves_services_empty(caplog):
    caplog.set_level(logging.DEBUG, logger="hostnet_report.collect")
    host = _host()
    host.configManager.virtualNicManager = _BrokenVnicManager()
    data = collect.collect_host(host)
    assert [v["services"] for v in data["vmknics"]] == [[], []]
    assert "Virtual NIC manager unavailable on esx01.lab.local" in caplog.text


def test_firewall_rule_without_port():
    config = NS(firewall=NS(defaultPolicy=None, ruleset=[
        NS(key="dhcp", label="DHCP Client", enabled=True, required=False, allowedHosts=None,
           rule=[NS(port=None, endPort=None, direction="outbound", portType="dst", protocol="udp")]),
    ]))
    rules = collect.collect_firewall(config)["rulesets"][0]["rules"]
    assert rules[0]["port"] == "n/a"
