#!/usr/bin/env python3
"""
Host network topology reconciliation
------------------------------------
Pure functions over the dicts produced by collect.py. They answer:

  * which virtual switches claim each physical adapter (vmnic)
  * which uplinks each switch has and their teaming state
  * which VMkernel NICs ride on each switch, and on which VLAN

Standard switches own adapters directly (pnic keys / bridge devices).
Distributed switches own them through the host proxy switch, where each
adapter is bound to an uplink port key that maps to an uplink name
("Uplink 1") used by the switch teaming order.

Nothing here raises for missing data: unresolvable values become
NONE / UNKNOWN / NOT_AVAILABLE.
"""
from typing import Any, Dict, List, Optional, Tuple

NONE = "none"
UNKNOWN = "unknown"
NOT_AVAILABLE = "n/a"

STANDARD = "standard"
DISTRIBUTED = "distributed"

ACTIVE = "active"
STANDBY = "standby"
UNUSED = "unused"

NO_UPLINK_ROW = {"device": NONE, "state": "", "uplink": ""}
NO_VMKNIC_ROW = {"device": NONE, "portgroup": "", "vlan": "", "ip": ""}


# ---------------------------
# Uplink identity
# ---------------------------

def pnic_key_index(pnics: List[Dict[str, Any]]) -> Dict[str, str]:
    """Map both pnic keys and device names to the device name."""
    index = {}
    for p in pnics:
        dev = p.get("device")
        if not dev:
            continue
        index[dev] = dev
        if p.get("key"):
            index[p["key"]] = dev
    return index


def _to_device(ident: str, index: Dict[str, str]) -> str:
    if ident in index:
        return index[ident]
    # "key-vim.host.PhysicalNic-vmnic0" for adapters missing from the pnic list
    if "PhysicalNic-" in ident:
        return ident.rsplit("PhysicalNic-", 1)[-1]
    return ident


def standard_uplinks(vswitch: Dict[str, Any], index: Dict[str, str]) -> List[str]:
    devices = {_to_device(k, index) for k in vswitch.get("pnic_keys") or []}
    devices.update(vswitch.get("bridge_nics") or [])
    return sorted(d for d in devices if d)


def distributed_uplinks(proxy: Dict[str, Any], index: Dict[str, str]) -> Dict[str, Optional[str]]:
    """Map adapter device -> uplink port key (None when only the pnic key is known)."""
    uplinks: Dict[str, Optional[str]] = {}
    for k in proxy.get("pnic_keys") or []:
        uplinks.setdefault(_to_device(k, index), None)
    for spec in proxy.get("pnic_specs") or []:
        dev = spec.get("device")
        if dev:
            uplinks[_to_device(dev, index)] = spec.get("uplink_port_key")
    return {d: k for d, k in uplinks.items() if d}


def uplink_claims(pnics, vswitches, proxy_switches) -> Dict[str, List[str]]:
    """For each physical adapter, the sorted names of switches claiming it."""
    index = pnic_key_index(pnics)
    claims: Dict[str, set] = {p["device"]: set() for p in pnics if p.get("device")}
    for vsw in vswitches:
        for dev in standard_uplinks(vsw, index):
            claims.setdefault(dev, set()).add(vsw.get("name") or UNKNOWN)
    for proxy in proxy_switches:
        for dev in distributed_uplinks(proxy, index):
            claims.setdefault(dev, set()).add(proxy.get("name") or UNKNOWN)
    return {dev: sorted(names) if names else [NONE] for dev, names in sorted(claims.items())}


# ---------------------------
# Teaming state
# ---------------------------

def standard_teaming_state(vswitch: Dict[str, Any], device: str) -> str:
    active = vswitch.get("active_nics")
    standby = vswitch.get("standby_nics")
    if active is None and standby is None:
        return UNKNOWN
    if device in (active or []):
        return ACTIVE
    if device in (standby or []):
        return STANDBY
    return UNUSED


def distributed_teaming_state(proxy: Dict[str, Any], teaming: Optional[Dict[str, Any]],
                              uplink_port_key: Optional[str]) -> Tuple[str, str]:
    """Return (state, uplink name) for one adapter bound to a distributed switch."""
    uplink_name = None
    if uplink_port_key is not None:
        uplink_name = (proxy.get("uplink_ports") or {}).get(str(uplink_port_key))
    if not uplink_name or not teaming:
        return UNKNOWN, uplink_name or ""
    if uplink_name in (teaming.get("active") or []):
        return ACTIVE, uplink_name
    if uplink_name in (teaming.get("standby") or []):
        return STANDBY, uplink_name
    return UNUSED, uplink_name


def switch_uplinks(pnics, vswitches, proxy_switches, dvs_teaming) -> List[Dict[str, Any]]:
    """One entry per switch with its uplink rows, standard switches first."""
    index = pnic_key_index(pnics)
    switches = []
    for vsw in vswitches:
        rows = [
            {"device": dev, "state": standard_teaming_state(vsw, dev), "uplink": ""}
            for dev in standard_uplinks(vsw, index)
        ]
        switches.append({
            "name": vsw.get("name"),
            "type": STANDARD,
            "id": vsw.get("name"),
            "mtu": vsw.get("mtu"),
            "teaming_policy": vsw.get("teaming_policy") or UNKNOWN,
            "uplinks": rows or [dict(NO_UPLINK_ROW)],
        })
    for proxy in proxy_switches:
        teaming = (dvs_teaming or {}).get(proxy.get("uuid"))
        rows = []
        for dev, port_key in sorted(distributed_uplinks(proxy, index).items()):
            state, uplink_name = distributed_teaming_state(proxy, teaming, port_key)
            rows.append({"device": dev, "state": state, "uplink": uplink_name})
        switches.append({
            "name": proxy.get("name"),
            "type": DISTRIBUTED,
            "id": proxy.get("uuid"),
            "mtu": proxy.get("mtu"),
            "teaming_policy": (teaming or {}).get("policy") or UNKNOWN,
            "uplinks": rows or [dict(NO_UPLINK_ROW)],
        })
    return switches


# ---------------------------
# VLANs and VMkernel NICs
# ---------------------------

def format_vlan_id(vlan_id) -> str:
    if vlan_id == 0:
        return "0 (untagged)"
    if vlan_id == 4095:
        return "4095 (all)"
    return str(vlan_id)


def _dvportgroup(vmknic, portgroups) -> Optional[Dict[str, Any]]:
    key = vmknic.get("dvportgroup_key")
    if not key:
        return None
    for pg in portgroups:
        if pg.get("type") == DISTRIBUTED and pg.get("key") == key:
            return pg
    return None


def _std_portgroup(vmknic, portgroups) -> Optional[Dict[str, Any]]:
    name = vmknic.get("portgroup")
    if not name:
        return None
    for pg in portgroups:
        if pg.get("type") == STANDARD and pg.get("name") == name:
            return pg
    return None


def resolve_vlan(vmknic: Dict[str, Any], portgroups: List[Dict[str, Any]]) -> str:
    """VLAN text for a VMkernel NIC; UNKNOWN when it cannot be resolved."""
    if vmknic.get("dvs_uuid") or vmknic.get("dvportgroup_key"):
        pg = _dvportgroup(vmknic, portgroups)
        vlan = pg.get("vlan") if pg else None
        if vlan is None or vlan == "":
            return UNKNOWN
        return format_vlan_id(int(vlan)) if str(vlan).isdigit() else str(vlan)
    pg = _std_portgroup(vmknic, portgroups)
    if pg is None or pg.get("vlan_id") is None:
        return UNKNOWN
    return format_vlan_id(pg["vlan_id"])


def vmknic_switch(vmknic, portgroups) -> Optional[Tuple[str, str]]:
    """(switch type, switch id) the VMkernel NIC is attached to, or None."""
    uuid = vmknic.get("dvs_uuid")
    if uuid:
        return DISTRIBUTED, uuid
    pg = _dvportgroup(vmknic, portgroups)
    if pg is not None and pg.get("dvs_uuid"):
        return DISTRIBUTED, pg["dvs_uuid"]
    pg = _std_portgroup(vmknic, portgroups)
    if pg is not None and pg.get("switch"):
        return STANDARD, pg["switch"]
    return None


def _portgroup_name(vmknic, portgroups) -> str:
    if vmknic.get("portgroup"):
        return vmknic["portgroup"]
    pg = _dvportgroup(vmknic, portgroups)
    if pg is not None and pg.get("name"):
        return pg["name"]
    return vmknic.get("dvportgroup_key") or UNKNOWN


def vmknic_rows(vmknics, portgroups, proxy_switches) -> List[Dict[str, Any]]:
    dvs_names = {p.get("uuid"): p.get("name") for p in proxy_switches}
    for pg in portgroups:
        if pg.get("type") == DISTRIBUTED and pg.get("dvs_uuid"):
            dvs_names.setdefault(pg["dvs_uuid"], pg.get("switch"))
    rows = []
    for vmk in vmknics:
        attached = vmknic_switch(vmk, portgroups)
        if attached is None:
            switch_type, switch_id, switch_name = UNKNOWN, None, UNKNOWN
        elif attached[0] == DISTRIBUTED:
            switch_type, switch_id = attached
            switch_name = dvs_names.get(switch_id) or switch_id
        else:
            switch_type, switch_id = attached
            switch_name = switch_id
        rows.append({
            "device": vmk.get("device"),
            "switch": switch_name,
            "switch_type": switch_type,
            "switch_id": switch_id,
            "portgroup": _portgroup_name(vmk, portgroups),
            "vlan": resolve_vlan(vmk, portgroups),
            "ip": vmk.get("ip") or ("dhcp" if vmk.get("dhcp") else NOT_AVAILABLE),
            "netmask": vmk.get("netmask") or "",
            "mac": vmk.get("mac") or "",
            "mtu": vmk.get("mtu"),
            "services": vmk.get("services") or [],
        })
    return sorted(rows, key=lambda r: r["device"] or "")


def switch_vmknics(switches, vmk_rows) -> Dict[Tuple[str, str], List[Dict[str, Any]]]:
    """For each (type, id) switch, the VMkernel NICs riding on it."""
    result = {}
    for sw in switches:
        ident = (sw["type"], sw["id"])
        rows = [
            {"device": r["device"], "portgroup": r["portgroup"], "vlan": r["vlan"], "ip": r["ip"]}
            for r in vmk_rows
            if (r["switch_type"], r["switch_id"]) == ident
        ]
        result[ident] = rows or [dict(NO_VMKNIC_ROW)]
    return result


# ---------------------------
# Neighbor discovery
# ---------------------------

def neighbor_summary(hint: Optional[Dict[str, Any]]) -> str:
    """Short CDP/LLDP text for one adapter, NOT_AVAILABLE when nothing was learned."""
    if not hint:
        return NOT_AVAILABLE
    parts = []
    cdp = hint.get("cdp")
    if cdp:
        parts.append(f"CDP: {cdp.get('device_id') or UNKNOWN} {cdp.get('port_id') or UNKNOWN}")
    lldp = hint.get("lldp")
    if lldp:
        who = lldp.get("system_name") or lldp.get("chassis_id") or UNKNOWN
        parts.append(f"LLDP: {who} {lldp.get('port_id') or UNKNOWN}")
    return "; ".join(parts) if parts else NOT_AVAILABLE


# ---------------------------
# Full view
# ---------------------------

def build_topology(host_data: Dict[str, Any]) -> Dict[str, Any]:
    """Reconcile one host's collected data into the tables the report renders."""
    pnics = host_data.get("pnics") or []
    vswitches = host_data.get("vswitches") or []
    proxies = host_data.get("proxy_switches") or []
    portgroups = host_data.get("portgroups") or []
    hints = host_data.get("neighbor_hints") or {}

    claims = uplink_claims(pnics, vswitches, proxies)
    adapters = []
    for p in pnics:
        dev = p["device"]
        speed = p.get("speed_mb")
        adapters.append({
            "device": dev,
            "mac": p.get("mac") or "",
            "driver": p.get("driver") or "",
            "pci": p.get("pci") or "",
            "link": f"{speed} Mb" if speed else "down",
            "duplex": ("full" if p.get("duplex") else "half") if speed else "",
            "switches": claims.get(dev, [NONE]),
            "neighbor": neighbor_summary(hints.get(dev)),
        })

    switches = switch_uplinks(pnics, vswitches, proxies, host_data.get("dvs_teaming") or {})
    vmk_rows = vmknic_rows(host_data.get("vmknics") or [], portgroups, proxies)
    per_switch = switch_vmknics(switches, vmk_rows)
    for sw in switches:
        sw["vmknics"] = per_switch[(sw["type"], sw["id"])]

    return {
        "adapters": sorted(adapters, key=lambda a: a["device"]),
        "switches": switches,
        "vmknics": vmk_rows,
    }
