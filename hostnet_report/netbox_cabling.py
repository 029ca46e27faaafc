#!/usr/bin/env python3
"""
NetBox cabling cross-check (optional)
-------------------------------------
Looks up the ESXi host in NetBox and reads the documented cable peer of each
vmnic interface, so the report can show it next to the CDP/LLDP neighbor the
host actually sees.

DEPENDENCIES:
    pip install pynetbox

Every NetBox error degrades to "no data" for that host; the report itself
never fails because of NetBox.
"""
import logging
from typing import Any, Dict, Optional

import pynetbox

from hostnet_report.topology import NOT_AVAILABLE

log = logging.getLogger(__name__)

MATCH = "match"
MISMATCH = "mismatch"


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Short lowercase hostname (domain stripped)."""
    if not name:
        return None
    return name.strip().lower().split(".")[0]


def _field(obj, name: str):
    """pynetbox returns Records, generic relations sometimes come back as dicts."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def get_netbox(url: str, token: str, verify_ssl: bool = True):
    """Connect to NetBox API client."""
    nb = pynetbox.api(url, token=token)
    # Control SSL verification (useful with self-signed certs)
    nb.http_session.verify = verify_ssl
    return nb


def _find_device(nb, hostname: str):
    device = nb.dcim.devices.get(name=hostname)
    if device is None:
        short = normalize_name(hostname)
        if short and short != hostname:
            device = nb.dcim.devices.get(name=short)
    return device


def _cable_peer(iface) -> Optional[Dict[str, str]]:
    peers = _field(iface, "link_peers") or _field(iface, "connected_endpoints") or []
    for peer in peers:
        device = _field(_field(peer, "device"), "name")
        port = _field(peer, "name")
        if device or port:
            return {"device": device or "", "port": port or ""}
    return None


def cable_peers(nb, hostname: str) -> Dict[str, Dict[str, str]]:
    """Map vmnic name -> {device, port} documented in NetBox for this host."""
    try:
        device = _find_device(nb, hostname)
        if device is None:
            log.info("Host %s not found in NetBox", hostname)
            return {}
        peers = {}
        for iface in nb.dcim.interfaces.filter(device_id=device.id):
            name = (iface.name or "").strip()
            if not name.lower().startswith("vmnic"):
                continue
            peer = _cable_peer(iface)
            if peer:
                peers[name] = peer
        return peers
    except Exception as e:
        log.warning("NetBox lookup failed for %s: %s", hostname, e)
        return {}


def compare_neighbor(hint: Optional[Dict[str, Any]], peer: Optional[Dict[str, str]]) -> str:
    """Compare a CDP/LLDP hint against the documented cable peer."""
    if not hint or not peer:
        return NOT_AVAILABLE
    seen = []
    cdp = hint.get("cdp")
    if cdp:
        seen.append((cdp.get("device_id"), cdp.get("port_id")))
    lldp = hint.get("lldp")
    if lldp:
        seen.append((lldp.get("system_name") or lldp.get("chassis_id"), lldp.get("port_id")))
    if not seen:
        return NOT_AVAILABLE
    want_dev = normalize_name(peer.get("device"))
    want_port = (peer.get("port") or "").strip().lower()
    for dev, port in seen:
        if normalize_name(dev) == want_dev and (port or "").strip().lower() == want_port:
            return MATCH
    return MISMATCH


def cabling_rows(topology_adapters, hints, peers) -> Dict[str, Dict[str, str]]:
    """Per adapter: documented peer text and comparison status."""
    rows = {}
    for adapter in topology_adapters:
        dev = adapter["device"]
        peer = peers.get(dev)
        rows[dev] = {
            "documented": f"{peer['device']} {peer['port']}".strip() if peer else NOT_AVAILABLE,
            "status": compare_neighbor(hints.get(dev), peer),
        }
    return rows
