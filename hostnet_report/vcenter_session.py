#!/usr/bin/env python3
"""
vCenter session helpers
-----------------------
Connect/disconnect to vCenter and walk the inventory down to ESXi hosts.

Hosts are returned together with the datacenter and cluster they live in so
the report can label them. Nested host folders are followed.
"""
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

from pyVim.connect import SmartConnect, Disconnect
from pyVmomi import vim

log = logging.getLogger(__name__)

STANDALONE = "standalone"


@dataclass
class HostRef:
    host: Any
    datacenter: str
    cluster: str

    @property
    def name(self) -> str:
        return getattr(self.host, "name", None) or "unknown-host"


# ---------------------------
# Connection
# ---------------------------

def connect_vcenter(host: str, user: str, password: str, verify_ssl: bool = False) -> Any:
    """Connect to vCenter and return the ServiceInstance handle."""
    if verify_ssl:
        context = None
    else:
        # Insecure context: skip SSL verification (for labs/self-signed)
        context = ssl._create_unverified_context()

    try:
        si = SmartConnect(host=host, user=user, pwd=password, sslContext=context)
    except Exception as e:
        log.error("Failed to connect to vCenter %s: %s", host, e)
        raise
    log.info("Connected to vCenter %s", host)
    return si


def disconnect(si) -> None:
    if si is None:
        return
    try:
        Disconnect(si)
    except Exception as e:
        log.debug("Disconnect failed: %s", e)


# ---------------------------
# Inventory walk
# ---------------------------

def _is_cluster(entity) -> bool:
    return isinstance(entity, vim.ClusterComputeResource)


def _walk_host_folder(entity, datacenter: str) -> Iterator[HostRef]:
    # Folders carry childEntity, compute resources carry host
    if hasattr(entity, "childEntity"):
        for child in entity.childEntity or []:
            yield from _walk_host_folder(child, datacenter)
        return
    if hasattr(entity, "host"):
        cluster = entity.name if _is_cluster(entity) else STANDALONE
        for host in entity.host or []:
            yield HostRef(host=host, datacenter=datacenter, cluster=cluster)


def _walk_datacenters(folder) -> Iterator[HostRef]:
    for dc in folder.childEntity or []:
        if hasattr(dc, "hostFolder"):
            yield from _walk_host_folder(dc.hostFolder, getattr(dc, "name", ""))
        elif hasattr(dc, "childEntity"):
            # datacenter folder
            yield from _walk_datacenters(dc)


def iter_hosts(content) -> Iterator[HostRef]:
    """Yield every ESXi host visible under the root folder."""
    yield from _walk_datacenters(content.rootFolder)


def _short(name: str) -> str:
    return (name or "").strip().lower().split(".")[0]


def host_matches(name: str, wanted: List[str]) -> bool:
    """Case-insensitive match; a short name in `wanted` also matches the FQDN."""
    if not wanted:
        return True
    n = (name or "").strip().lower()
    for w in wanted:
        w = w.strip().lower()
        if n == w or _short(n) == w:
            return True
    return False


def select_hosts(refs, clusters: Optional[List[str]] = None, hosts: Optional[List[str]] = None) -> List[HostRef]:
    """Apply cluster/host filters and return refs sorted by host name."""
    wanted_clusters = {c.strip().lower() for c in (clusters or []) if c.strip()}
    selected = []
    for ref in refs:
        if wanted_clusters and ref.cluster.lower() not in wanted_clusters:
            continue
        if not host_matches(ref.name, hosts or []):
            continue
        selected.append(ref)
    return sorted(selected, key=lambda r: r.name.lower())
