#!/usr/bin/env python3
"""
ESXi Host Network Report (HTML)
-------------------------------
Connects to vCenter, walks every ESXi host and writes one HTML document per
host describing its network setup: physical adapters and the switches that
claim them, standard/distributed switch uplinks with teaming state, VMkernel
NICs with their VLANs, port groups, DNS/routing, firewall and time sync.
An index.html links all host reports. No changes are made to vCenter.

DEPENDENCIES (install on the machine that will run this script):
    pip install pyvmomi
    pip install pynetbox        # only for the optional NetBox cabling check

USAGE (basic):
    export VCENTER_HOST=vcenter.example.com VCENTER_USER=... VCENTER_PASS=...
    python -m hostnet_report.network_report --output-dir reports/

    # limit to one cluster / a couple of hosts
    python -m hostnet_report.network_report --cluster Prod --host esx01 --host esx02

OUTPUT:
    - <output-dir>/<host>.html for every host, <output-dir>/index.html
    - Optional JSON dump if --output-json is provided.

EXIT CODES:
    0 -> every host reported, 2 -> at least one host failed, 1 -> fatal error
"""
import argparse
import json
import logging
import os
import re
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from hostnet_report import collect, netbox_cabling, render, topology, vcenter_session

log = logging.getLogger("hostnet_report")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ---------------------------
# CONFIG (override with env/CLI)
# ---------------------------

VCENTER_HOST = os.getenv("VCENTER_HOST", "")
VCENTER_USER = os.getenv("VCENTER_USER", "")
VCENTER_PASS = os.getenv("VCENTER_PASS", "")
VCENTER_VERIFY_SSL = _env_bool("VCENTER_VERIFY_SSL")

# Optional NetBox cabling cross-check; disabled while NETBOX_URL is empty
NETBOX_URL = os.getenv("NETBOX_URL", "")
NETBOX_TOKEN = os.getenv("NETBOX_TOKEN", "")
NETBOX_VERIFY_SSL = _env_bool("NETBOX_VERIFY_SSL", "true")

OUTPUT_DIR = os.getenv("OUTPUT_DIR", "host_network_reports")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Comma-separated filters
CLUSTERS = [c for c in os.getenv("REPORT_CLUSTERS", "").split(",") if c.strip()]
HOSTS = [h for h in os.getenv("REPORT_HOSTS", "").split(",") if h.strip()]


# ---------------------------
# Per-host processing
# ---------------------------

def safe_filename(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name or "").strip("._")
    return (cleaned or "host") + ".html"


def report_host(ref, output_dir: str, generated_at: str, nb=None) -> Dict[str, Any]:
    """Collect, reconcile and render one host. Raises on failure."""
    host_data = collect.collect_host(ref.host, datacenter=ref.datacenter, cluster=ref.cluster)
    view = topology.build_topology(host_data)

    cabling = None
    if nb is not None:
        peers = netbox_cabling.cable_peers(nb, host_data["hostname"])
        cabling = netbox_cabling.cabling_rows(view["adapters"], host_data["neighbor_hints"], peers)

    html = render.render_host(host_data, view, generated_at, cabling=cabling)
    filename = safe_filename(host_data["hostname"])
    with open(os.path.join(output_dir, filename), "w", encoding="utf-8") as f:
        f.write(html)
    return {"file": filename, "data": host_data, "topology": view, "cabling": cabling}


def run_report(refs, output_dir: str, generated_at: str, nb=None) -> List[Dict[str, Any]]:
    """Report every host; one host failing never stops the others."""
    os.makedirs(output_dir, exist_ok=True)
    results = []
    for ref in refs:
        name = ref.name
        entry = {"hostname": name, "cluster": ref.cluster, "datacenter": ref.datacenter,
                 "status": "OK", "error": None, "file": None}
        try:
            log.info("[*] Reporting %s", name)
            entry.update(report_host(ref, output_dir, generated_at, nb=nb))
        except Exception as e:
            log.exception("[!] Failed to report host %s", name)
            entry["status"] = "FAILED"
            entry["error"] = f"{type(e).__name__}: {e}"
        results.append(entry)
    return results


def write_index(results, output_dir: str, generated_at: str) -> str:
    path = os.path.join(output_dir, "index.html")
    with open(path, "w", encoding="utf-8") as f:
        f.write(render.render_index(results, generated_at))
    return path


def write_json(results, path: str, generated_at: str) -> None:
    payload = {
        "generated_at": generated_at,
        "hosts": {
            r["hostname"]: {
                "status": r["status"],
                "error": r["error"],
                "cluster": r["cluster"],
                "datacenter": r["datacenter"],
                "network": r.get("data"),
                "topology": r.get("topology"),
                "cabling": r.get("cabling"),
            }
            for r in results
        },
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)


# ---------------------------
# CLI / MAIN
# ---------------------------

def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Write one HTML network report per ESXi host managed by vCenter.")
    p.add_argument("--vcenter-host", default=VCENTER_HOST, help="vCenter host (FQDN/IP)")
    p.add_argument("--vcenter-user", default=VCENTER_USER, help="vCenter username")
    p.add_argument("--vcenter-pass", default=VCENTER_PASS, help="vCenter password")
    p.add_argument("--vcenter-verify-ssl", action="store_true", default=VCENTER_VERIFY_SSL, help="Verify vCenter SSL certs")
    p.add_argument("--cluster", action="append", default=None, help="Only report hosts in this cluster (repeatable)")
    p.add_argument("--host", action="append", default=None, help="Only report this host, short name or FQDN (repeatable)")
    p.add_argument("--output-dir", default=OUTPUT_DIR, help="Directory for the HTML reports")
    p.add_argument("--output-json", default=None, help="Optional path to also write a JSON dump")
    p.add_argument("--netbox-url", default=NETBOX_URL, help="NetBox base URL (enables the cabling cross-check)")
    p.add_argument("--netbox-token", default=NETBOX_TOKEN, help="NetBox API token")
    p.add_argument("--netbox-verify-ssl", action="store_true", default=NETBOX_VERIFY_SSL, help="Verify NetBox SSL certs")
    p.add_argument("--netbox-insecure", action="store_false", dest="netbox_verify_ssl",
                   help="Skip NetBox SSL verification (overrides NETBOX_VERIFY_SSL)")
    p.add_argument("--log-level", default=LOG_LEVEL, choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper)
    args = p.parse_args(argv)
    if args.cluster is None:
        args.cluster = list(CLUSTERS)
    if args.host is None:
        args.host = list(HOSTS)
    return args


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if not args.vcenter_host:
        log.error("[!] No vCenter host given (use --vcenter-host or VCENTER_HOST)")
        sys.exit(1)

    si = None
    try:
        si = vcenter_session.connect_vcenter(args.vcenter_host, args.vcenter_user, args.vcenter_pass,
                                             verify_ssl=args.vcenter_verify_ssl)
        content = si.RetrieveContent()
        refs = vcenter_session.select_hosts(vcenter_session.iter_hosts(content), args.cluster, args.host)
        print(f"[*] Found {len(refs)} hosts to report")

        nb = None
        if args.netbox_url:
            nb = netbox_cabling.get_netbox(args.netbox_url, args.netbox_token, args.netbox_verify_ssl)

        generated_at = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        results = run_report(refs, args.output_dir, generated_at, nb=nb)
        index = write_index(results, args.output_dir, generated_at)
        print(f"[✓] HTML reports written to: {args.output_dir} (index: {index})")

        if args.output_json:
            write_json(results, args.output_json, generated_at)
            print(f"[✓] JSON report written to: {args.output_json}")
    except Exception as e:
        log.error("[!] Error: %s", e)
        sys.exit(1)
    finally:
        vcenter_session.disconnect(si)

    if any(r["status"] != "OK" for r in results):
        sys.exit(2)
    sys.exit(0)


if __name__ == "__main__":
    main()
