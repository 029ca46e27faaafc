#!/usr/bin/env python3
"""
Host network data collection
----------------------------
Projects one ESXi host's network configuration (as exposed by pyVmomi) into
plain dicts/lists so the rest of the report never touches SDK objects.

Optional attributes degrade to None/[]; a missing host configuration raises
CollectionError so the caller can skip the host.
"""
import logging
from typing import Any, Dict, List, Optional

from pyVmomi import vim

from hostnet_report.topology import NOT_AVAILABLE

log = logging.getLogger(__name__)


class CollectionError(Exception):
    """Raised when a host's network configuration cannot be read at all."""


# ---------------------------
# Helpers
# ---------------------------

def _get(obj, path: str, default=None):
    """Follow a dotted attribute path; None anywhere along it yields default."""
    current = obj
    for attr in path.split("."):
        if current is None:
            return default
        try:
            current = getattr(current, attr)
        except AttributeError:
            return default
    return default if current is None else current


def _list(value) -> List[Any]:
    return list(value) if value else []


def format_vlan_spec(spec) -> Optional[str]:
    """Render a distributed port VLAN spec (single id, trunk ranges or PVLAN)."""
    if spec is None:
        return None
    vlan_id = getattr(spec, "vlanId", None)
    if isinstance(vlan_id, int):
        return str(vlan_id)
    if isinstance(vlan_id, (list, tuple)):
        parts = []
        for rng in vlan_id:
            start = getattr(rng, "start", None)
            end = getattr(rng, "end", None)
            if start is None:
                continue
            parts.append(str(start) if end in (None, start) else f"{start}-{end}")
        return ", ".join(parts) if parts else None
    pvlan = getattr(spec, "pvlanId", None)
    if pvlan is not None:
        return f"pvlan {pvlan}"
    return None


def _is_dvportgroup(net) -> bool:
    return isinstance(net, vim.dvs.DistributedVirtualPortgroup)


# ---------------------------
# Sections
# ---------------------------

def collect_pnics(network) -> List[Dict[str, Any]]:
    pnics = []
    for pnic in _list(_get(network, "pnic")):
        pnics.append({
            "device": pnic.device,
            "key": _get(pnic, "key"),
            "mac": _get(pnic, "mac"),
            "driver": _get(pnic, "driver"),
            "pci": _get(pnic, "pci"),
            "speed_mb": _get(pnic, "linkSpeed.speedMb"),
            "duplex": _get(pnic, "linkSpeed.duplex"),
        })
    return sorted(pnics, key=lambda p: p["device"] or "")


def collect_vswitches(network) -> List[Dict[str, Any]]:
    vswitches = []
    for vsw in _list(_get(network, "vswitch")):
        teaming = _get(vsw, "spec.policy.nicTeaming")
        vswitches.append({
            "name": vsw.name,
            "key": _get(vsw, "key"),
            "mtu": _get(vsw, "mtu"),
            "num_ports": _get(vsw, "numPorts"),
            "pnic_keys": _list(_get(vsw, "pnic")),
            "bridge_nics": _list(_get(vsw, "spec.bridge.nicDevice")),
            "teaming_policy": _get(teaming, "policy"),
            # None means no explicit NIC order was returned
            "active_nics": _list(_get(teaming, "nicOrder.activeNic")) if _get(teaming, "nicOrder") else None,
            "standby_nics": _list(_get(teaming, "nicOrder.standbyNic")) if _get(teaming, "nicOrder") else None,
            "portgroup_keys": _list(_get(vsw, "portgroup")),
        })
    return sorted(vswitches, key=lambda v: v["name"] or "")


def collect_proxy_switches(network) -> List[Dict[str, Any]]:
    proxies = []
    for proxy in _list(_get(network, "proxySwitch")):
        pnic_specs = []
        for spec in _list(_get(proxy, "spec.backing.pnicSpec")):
            pnic_specs.append({
                "device": _get(spec, "pnicDevice"),
                "uplink_port_key": _get(spec, "uplinkPortKey"),
            })
        uplink_ports = {}
        for kv in _list(_get(proxy, "uplinkPort")):
            uplink_ports[str(kv.key)] = kv.value
        proxies.append({
            "name": _get(proxy, "dvsName"),
            "uuid": _get(proxy, "dvsUuid"),
            "key": _get(proxy, "key"),
            "mtu": _get(proxy, "mtu"),
            "pnic_keys": _list(_get(proxy, "pnic")),
            "pnic_specs": pnic_specs,
            "uplink_ports": uplink_ports,
        })
    return sorted(proxies, key=lambda p: p["name"] or "")


def _uplink_order(port_setting) -> Optional[Dict[str, List[str]]]:
    order = _get(port_setting, "uplinkTeamingPolicy.uplinkPortOrder")
    if order is None:
        return None
    return {
        "policy": _get(port_setting, "uplinkTeamingPolicy.policy.value"),
        "active": _list(_get(order, "activeUplinkPort")),
        "standby": _list(_get(order, "standbyUplinkPort")),
    }


def collect_distributed_portgroups(host) -> Dict[str, Any]:
    """Return distributed portgroups and per-switch teaming, keyed off host.network."""
    portgroups = []
    teaming: Dict[str, Dict[str, Any]] = {}
    for net in _list(_get(host, "network")):
        if not _is_dvportgroup(net):
            continue
        name = _get(net, "name")
        cfg = dvs = uuid = vlan = None
        try:
            # config may require extra permissions on restricted portgroups
            cfg = _get(net, "config")
            dvs = _get(cfg, "distributedVirtualSwitch")
            uuid = _get(dvs, "uuid")
            vlan = format_vlan_spec(_get(cfg, "defaultPortConfig.vlan"))
        except Exception as e:
            log.debug("Config lookup failed for portgroup %s: %s", name, e)
        portgroups.append({
            "type": "distributed",
            "key": _get(net, "key") or _get(cfg, "key"),
            "name": name,
            "switch": _get(dvs, "name"),
            "dvs_uuid": uuid,
            "vlan": vlan,
            "uplink": bool(_get(cfg, "uplink", False)),
        })
        if uuid and uuid not in teaming:
            try:
                order = _uplink_order(_get(dvs, "config.defaultPortConfig"))
            except Exception as e:
                log.debug("Teaming lookup failed for switch %s: %s", _get(dvs, "name"), e)
                order = None
            if order is not None:
                teaming[uuid] = order
    portgroups.sort(key=lambda p: (p["switch"] or "", p["name"] or ""))
    return {"portgroups": portgroups, "dvs_teaming": teaming}


def collect_standard_portgroups(network) -> List[Dict[str, Any]]:
    portgroups = []
    for pg in _list(_get(network, "portgroup")):
        portgroups.append({
            "type": "standard",
            "key": _get(pg, "key"),
            "name": _get(pg, "spec.name"),
            "switch": _get(pg, "spec.vswitchName"),
            "vlan_id": _get(pg, "spec.vlanId"),
        })
    return sorted(portgroups, key=lambda p: (p["switch"] or "", p["name"] or ""))


def collect_vmknic_services(host) -> Dict[str, List[str]]:
    """Map vmk device -> enabled service types (management, vmotion, ...)."""
    services: Dict[str, set] = {}
    try:
        net_configs = _list(_get(host, "configManager.virtualNicManager.info.netConfig"))
    except Exception as e:
        log.debug("Virtual NIC manager unavailable on %s: %s", _get(host, "name"), e)
        return {}
    for nc in net_configs:
        candidates = {_get(c, "key"): _get(c, "device") for c in _list(_get(nc, "candidateVnic"))}
        for selected in _list(_get(nc, "selectedVnic")):
            device = None
            for key, dev in candidates.items():
                if key and selected.endswith(key):
                    device = dev
                    break
            if device is None:
                # e.g. "management.key-vim.host.VirtualNic-vmk0"
                device = selected.rsplit("-", 1)[-1]
            services.setdefault(device, set()).add(nc.nicType)
    return {dev: sorted(types) for dev, types in services.items()}


def collect_vmknics(network, services: Dict[str, List[str]]) -> List[Dict[str, Any]]:
    vmknics = []
    for vnic in _list(_get(network, "vnic")):
        vmknics.append({
            "device": vnic.device,
            "key": _get(vnic, "key"),
            "portgroup": _get(vnic, "portgroup") or None,
            "dvs_uuid": _get(vnic, "spec.distributedVirtualPort.switchUuid"),
            "dvportgroup_key": _get(vnic, "spec.distributedVirtualPort.portgroupKey"),
            "ip": _get(vnic, "spec.ip.ipAddress"),
            "netmask": _get(vnic, "spec.ip.subnetMask"),
            "dhcp": bool(_get(vnic, "spec.ip.dhcp", False)),
            "mac": _get(vnic, "spec.mac"),
            "mtu": _get(vnic, "spec.mtu"),
            "netstack": _get(vnic, "spec.netStackInstanceKey"),
            "services": services.get(vnic.device, []),
        })
    return sorted(vmknics, key=lambda v: v["device"] or "")


def collect_dns(network) -> Dict[str, Any]:
    dns = _get(network, "dnsConfig")
    return {
        "hostname": _get(dns, "hostName"),
        "domain": _get(dns, "domainName"),
        "dhcp": bool(_get(dns, "dhcp", False)),
        "servers": [str(s) for s in _list(_get(dns, "address"))],
        "search_domains": [str(s) for s in _list(_get(dns, "searchDomain"))],
    }


def collect_routing(network) -> Dict[str, Any]:
    routes = []
    for route in _list(_get(network, "routeTableInfo.ipRoute")):
        routes.append({
            "network": f"{_get(route, 'network')}/{_get(route, 'prefixLength')}",
            "gateway": _get(route, "gateway"),
            "device": _get(route, "deviceName"),
        })
    return {
        "default_gateway": _get(network, "ipRouteConfig.defaultGateway"),
        "gateway_device": _get(network, "ipRouteConfig.gatewayDevice"),
        "ipv6_default_gateway": _get(network, "ipRouteConfig.ipV6DefaultGateway"),
        "routes": sorted(routes, key=lambda r: (r["network"], r["gateway"] or "", r["device"] or "")),
    }


def collect_firewall(config) -> Dict[str, Any]:
    fw = _get(config, "firewall")
    rulesets = []
    for rs in _list(_get(fw, "ruleset")):
        rules = []
        for rule in _list(_get(rs, "rule")):
            port = _get(rule, "port")
            end_port = _get(rule, "endPort")
            if port is None:
                port_text = NOT_AVAILABLE
            elif end_port and end_port != port:
                port_text = f"{port}-{end_port}"
            else:
                port_text = str(port)
            rules.append({
                "port": port_text,
                "direction": _get(rule, "direction"),
                "protocol": _get(rule, "protocol"),
                "port_type": _get(rule, "portType"),
            })
        allowed = _get(rs, "allowedHosts")
        if allowed is None or _get(allowed, "allIp", True):
            allowed_hosts = "all"
        else:
            nets = [f"{n.network}/{n.prefixLength}" for n in _list(_get(allowed, "ipNetwork"))]
            allowed_hosts = sorted(_list(_get(allowed, "ipAddress")) + nets)
        rulesets.append({
            "key": _get(rs, "key"),
            "label": _get(rs, "label"),
            "enabled": bool(_get(rs, "enabled", False)),
            "required": bool(_get(rs, "required", False)),
            "allowed_hosts": allowed_hosts,
            "rules": sorted(rules, key=lambda r: (str(r["direction"]), str(r["protocol"]), r["port"])),
        })
    return {
        "incoming_blocked": _get(fw, "defaultPolicy.incomingBlocked"),
        "outgoing_blocked": _get(fw, "defaultPolicy.outgoingBlocked"),
        "rulesets": sorted(rulesets, key=lambda r: r["key"] or ""),
    }


def collect_time_sync(config) -> Dict[str, Any]:
    ntpd = {"running": None, "policy": None}
    for service in _list(_get(config, "service.service")):
        if _get(service, "key") == "ntpd":
            ntpd = {"running": bool(_get(service, "running", False)), "policy": _get(service, "policy")}
            break
    return {
        "time_zone": _get(config, "dateTimeInfo.timeZone.name"),
        "ntp_servers": [str(s) for s in _list(_get(config, "dateTimeInfo.ntpConfig.server"))],
        "ntpd_running": ntpd["running"],
        "ntpd_policy": ntpd["policy"],
    }


def _cdp(info) -> Optional[Dict[str, Any]]:
    if info is None or not _get(info, "devId"):
        return None
    return {
        "device_id": _get(info, "devId"),
        "port_id": _get(info, "portId"),
        "address": _get(info, "address"),
        "platform": _get(info, "hardwarePlatform"),
        "vlan": _get(info, "vlan"),
        "mtu": _get(info, "mtu"),
    }


def _lldp(info) -> Optional[Dict[str, Any]]:
    if info is None or not (_get(info, "chassisId") or _get(info, "portId")):
        return None
    params = {}
    for p in _list(_get(info, "parameter")):
        params[_get(p, "key")] = _get(p, "value")
    return {
        "chassis_id": _get(info, "chassisId"),
        "port_id": _get(info, "portId"),
        "system_name": params.get("System Name"),
        "port_description": params.get("Port Description"),
    }


def collect_neighbor_hints(host, devices: List[str]) -> Dict[str, Dict[str, Any]]:
    """Query CDP/LLDP hints for all physical adapters in one call.

    A failing query degrades to an empty mapping so rows show a placeholder.
    """
    if not devices:
        return {}
    network_system = _get(host, "configManager.networkSystem")
    if network_system is None:
        return {}
    try:
        hints = network_system.QueryNetworkHint(device=devices)
    except Exception as e:
        log.warning("Neighbor discovery query failed on %s: %s", _get(host, "name"), e)
        return {}
    result = {}
    for hint in _list(hints):
        result[hint.device] = {
            "cdp": _cdp(_get(hint, "connectedSwitchPort")),
            "lldp": _lldp(_get(hint, "lldpInfo")),
        }
    return result


# ---------------------------
# Entry point
# ---------------------------

def collect_host(host, datacenter: str = "", cluster: str = "") -> Dict[str, Any]:
    """Collect every network section for one vim.HostSystem."""
    name = _get(host, "name", "unknown-host")
    config = _get(host, "config")
    network = _get(config, "network")
    if network is None:
        raise CollectionError(f"{name}: no network configuration (host disconnected or not responding?)")

    log.debug("Collecting network data for %s", name)
    pnics = collect_pnics(network)
    distributed = collect_distributed_portgroups(host)
    services = collect_vmknic_services(host)

    return {
        "hostname": name,
        "datacenter": datacenter,
        "cluster": cluster,
        "version": _get(host, "summary.config.product.fullName"),
        "pnics": pnics,
        "vswitches": collect_vswitches(network),
        "proxy_switches": collect_proxy_switches(network),
        "dvs_teaming": distributed["dvs_teaming"],
        "portgroups": collect_standard_portgroups(network) + distributed["portgroups"],
        "vmknics": collect_vmknics(network, services),
        "dns": collect_dns(network),
        "routing": collect_routing(network),
        "firewall": collect_firewall(config),
        "time_sync": collect_time_sync(config),
        "neighbor_hints": collect_neighbor_hints(host, [p["device"] for p in pnics]),
    }
