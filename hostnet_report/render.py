#!/usr/bin/env python3
"""
HTML rendering
--------------
One self-contained HTML document per host plus an index page. Output depends
only on the input data and the `generated_at` string, so re-running against an
unchanged environment yields identical files apart from that line.
"""
from typing import Any, Dict, Iterable, List, Optional

from hostnet_report.topology import NOT_AVAILABLE, STANDARD, UNKNOWN, format_vlan_id

STYLE = """
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Arial, sans-serif; margin: 24px; }
    h1 { margin-top: 0; }
    .summary { display: grid; grid-template-columns: repeat(5, 1fr); gap: 12px; margin: 16px 0 24px; }
    .card { border: 1px solid #e3e3e3; border-radius: 12px; padding: 12px; text-align: center; }
    .card h2 { margin: 8px 0 4px; font-size: 14px; font-weight: 600; color: #555; }
    .card .num { font-size: 24px; font-weight: 700; }
    table { width: 100%; border-collapse: collapse; margin-bottom: 16px; }
    table thead th { text-align: left; background: #fafafa; border-bottom: 1px solid #e6e6e6; padding: 8px; }
    table td, table th { padding: 8px; border-bottom: 1px solid #f0f0f0; vertical-align: top; }
    tr:hover td { background: #fcfcfc; }
    .status.ok, .state.active, .cabling.match { color: #0a7; font-weight: 700; }
    .state.standby { color: #d67a00; font-weight: 700; }
    .status.failed, .state.unused, .cabling.mismatch { color: #d00; font-weight: 700; }
    .muted { color: #888; }
    .footer { margin-top: 40px; color: #888; font-size: 12px; }
    code { background: #f6f8fa; padding: 1px 6px; border-radius: 6px; }
"""


def html_escape(s) -> str:
    return (str(s) if s is not None else "").replace("&", "&amp;").replace("<", "&lt;") \
        .replace(">", "&gt;").replace('"', "&quot;")


def human(v) -> str:
    """Render Python value as friendly text for HTML."""
    if v is None or v == "":
        return NOT_AVAILABLE
    if isinstance(v, bool):
        return "yes" if v else "no"
    if isinstance(v, (list, set, tuple)):
        return ", ".join(map(str, v)) if v else NOT_AVAILABLE
    return str(v)


def table(headers: List[str], rows: Iterable[List[Any]], empty: str = "none") -> str:
    body = []
    for row in rows:
        cells = "".join(f"<td>{html_escape(human(c))}</td>" for c in row)
        body.append(f"<tr>{cells}</tr>")
    if not body:
        body.append(f'<tr><td colspan="{len(headers)}" class="muted">{html_escape(empty)}</td></tr>')
    head = "".join(f"<th>{html_escape(h)}</th>" for h in headers)
    return f"<table><thead><tr>{head}</tr></thead><tbody>{''.join(body)}</tbody></table>"


def _page(title: str, generated_at: str, body: str) -> str:
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>{html_escape(title)}</title>
  <style>{STYLE}</style>
</head>
<body>
  <h1>{html_escape(title)}</h1>
  <div>Generated: {html_escape(generated_at)}</div>
{body}
  <div class="footer">
    This report is read-only. No changes were made to vCenter or the hosts.
  </div>
</body>
</html>
"""


# ---------------------------
# Host sections
# ---------------------------

def _adapters_section(adapters, cabling: Optional[Dict[str, Dict[str, str]]]) -> str:
    rows = []
    for a in adapters:
        cells = [
            f"<td>{html_escape(a['device'])}</td>",
            f"<td>{html_escape(human(a['mac']))}</td>",
            f"<td>{html_escape(a['link'])}</td>",
            f"<td>{html_escape(human(a['duplex']))}</td>",
            f"<td>{html_escape(human(a['driver']))}</td>",
            f"<td>{html_escape(human(a['pci']))}</td>",
            f"<td>{html_escape(human(a['switches']))}</td>",
            f"<td>{html_escape(a['neighbor'])}</td>",
        ]
        if cabling is not None:
            c = cabling.get(a["device"]) or {"documented": NOT_AVAILABLE, "status": NOT_AVAILABLE}
            cells.append(f"<td>{html_escape(c['documented'])}</td>")
            cells.append(f"<td class=\"cabling {html_escape(c['status'])}\">{html_escape(c['status'])}</td>")
        rows.append(f"<tr>{''.join(cells)}</tr>")
    headers = ["Device", "MAC", "Link", "Duplex", "Driver", "PCI", "Switches", "Neighbor (CDP/LLDP)"]
    if cabling is not None:
        headers += ["NetBox cable peer", "Cabling"]
    if not rows:
        rows.append(f'<tr><td colspan="{len(headers)}" class="muted">none</td></tr>')
    head = "".join(f"<th>{html_escape(h)}</th>" for h in headers)
    return f"""
  <h2>Physical adapters</h2>
  <table><thead><tr>{head}</tr></thead><tbody>{''.join(rows)}</tbody></table>"""


def _switch_section(sw) -> str:
    uplinks = []
    for u in sw["uplinks"]:
        state = u["state"]
        uplinks.append(
            f"<tr><td>{html_escape(u['device'])}</td>"
            f"<td>{html_escape(u['uplink'])}</td>"
            f"<td class=\"state {html_escape(state)}\">{html_escape(state)}</td></tr>"
        )
    vmk_rows = [[v["device"], v["portgroup"], v["vlan"], v["ip"]] for v in sw["vmknics"]]
    return f"""
  <h3>{html_escape(sw['name'])} <span class="muted">({html_escape(sw['type'])}, MTU {html_escape(human(sw['mtu']))}, teaming {html_escape(sw['teaming_policy'])})</span></h3>
  <table><thead><tr><th>Uplink device</th><th>Uplink name</th><th>Teaming state</th></tr></thead>
  <tbody>{''.join(uplinks)}</tbody></table>
  {table(["VMkernel NIC", "Port group", "VLAN", "IP"], vmk_rows)}"""


def _vmknic_section(vmknics) -> str:
    rows = [
        [v["device"], v["switch"], v["switch_type"], v["portgroup"], v["vlan"], v["ip"],
         v["netmask"], v["mac"], v["mtu"], v["services"]]
        for v in vmknics
    ]
    headers = ["Device", "Switch", "Switch type", "Port group", "VLAN", "IP", "Netmask", "MAC", "MTU", "Services"]
    return f"""
  <h2>VMkernel NICs</h2>
  {table(headers, rows)}"""


def _portgroup_section(portgroups) -> str:
    rows = []
    for pg in portgroups:
        if pg["type"] == STANDARD:
            vlan = format_vlan_id(pg["vlan_id"]) if pg.get("vlan_id") is not None else UNKNOWN
        else:
            vlan = pg.get("vlan") or UNKNOWN
            if vlan.isdigit():
                vlan = format_vlan_id(int(vlan))
        rows.append([pg.get("name"), pg.get("switch"), pg["type"], vlan])
    return f"""
  <h2>Port groups</h2>
  {table(["Name", "Switch", "Type", "VLAN"], rows)}"""


def _dns_routing_section(dns, routing) -> str:
    facts = [
        ["Hostname", dns.get("hostname")],
        ["Domain", dns.get("domain")],
        ["DNS via DHCP", dns.get("dhcp")],
        ["DNS servers", dns.get("servers")],
        ["Search domains", dns.get("search_domains")],
        ["Default gateway", routing.get("default_gateway")],
        ["Gateway device", routing.get("gateway_device")],
        ["IPv6 default gateway", routing.get("ipv6_default_gateway")],
    ]
    routes = [[r["network"], r["gateway"], r["device"]] for r in routing.get("routes") or []]
    return f"""
  <h2>DNS &amp; routing</h2>
  {table(["Setting", "Value"], facts)}
  <h3>Route table</h3>
  {table(["Network", "Gateway", "Device"], routes)}"""


def _firewall_section(firewall) -> str:
    rows = []
    for rs in firewall.get("rulesets") or []:
        rules = ", ".join(f"{r['port']}/{r['protocol']} {r['direction']}" for r in rs["rules"])
        rows.append([rs["label"] or rs["key"], rs["key"], rs["enabled"], rs["required"], rs["allowed_hosts"], rules])
    policy = [
        ["Incoming blocked", firewall.get("incoming_blocked")],
        ["Outgoing blocked", firewall.get("outgoing_blocked")],
    ]
    return f"""
  <h2>Firewall</h2>
  {table(["Default policy", "Value"], policy)}
  {table(["Ruleset", "Key", "Enabled", "Required", "Allowed hosts", "Rules"], rows)}"""


def _time_section(time_sync) -> str:
    facts = [
        ["Time zone", time_sync.get("time_zone")],
        ["NTP servers", time_sync.get("ntp_servers")],
        ["NTP service running", time_sync.get("ntpd_running")],
        ["NTP service policy", time_sync.get("ntpd_policy")],
    ]
    return f"""
  <h2>Time sync</h2>
  {table(["Setting", "Value"], facts)}"""


# ---------------------------
# Documents
# ---------------------------

def render_host(host_data: Dict[str, Any], topology: Dict[str, Any], generated_at: str,
                cabling: Optional[Dict[str, Dict[str, str]]] = None) -> str:
    """Render the network report for one host."""
    switches = topology["switches"]
    std = sum(1 for s in switches if s["type"] == STANDARD)
    dist = len(switches) - std
    cards = f"""
  <div class="summary">
    <div class="card"><h2>Physical adapters</h2><div class="num">{len(topology['adapters'])}</div></div>
    <div class="card"><h2>Standard switches</h2><div class="num">{std}</div></div>
    <div class="card"><h2>Distributed switches</h2><div class="num">{dist}</div></div>
    <div class="card"><h2>VMkernel NICs</h2><div class="num">{len(topology['vmknics'])}</div></div>
    <div class="card"><h2>Port groups</h2><div class="num">{len(host_data.get('portgroups') or [])}</div></div>
  </div>
  <div>Datacenter: <code>{html_escape(human(host_data.get('datacenter')))}</code>
    Cluster: <code>{html_escape(human(host_data.get('cluster')))}</code>
    Version: <code>{html_escape(human(host_data.get('version')))}</code></div>"""

    sections = [
        cards,
        _adapters_section(topology["adapters"], cabling),
        "\n  <h2>Virtual switches</h2>",
        "".join(_switch_section(sw) for sw in switches) or "\n  <p class=\"muted\">none</p>",
        _vmknic_section(topology["vmknics"]),
        _portgroup_section(host_data.get("portgroups") or []),
        _dns_routing_section(host_data.get("dns") or {}, host_data.get("routing") or {}),
        _firewall_section(host_data.get("firewall") or {}),
        _time_section(host_data.get("time_sync") or {}),
    ]
    return _page(f"Host network report: {host_data['hostname']}", generated_at, "".join(sections))


def render_index(results: List[Dict[str, Any]], generated_at: str) -> str:
    """Overview of all hosts; each result has hostname, cluster, status, error, file."""
    ok = sum(1 for r in results if r["status"] == "OK")
    failed = len(results) - ok
    rows = []
    for r in sorted(results, key=lambda x: (x.get("cluster") or "", x["hostname"])):
        status = r["status"]
        link = f'<a href="{html_escape(r["file"])}">Report</a>' if r.get("file") else ""
        rows.append(
            f"<tr><td>{html_escape(r['hostname'])}</td>"
            f"<td>{html_escape(human(r.get('cluster')))}</td>"
            f"<td class=\"status {status.lower()}\">{html_escape(status)}</td>"
            f"<td>{html_escape(r.get('error') or '')}</td>"
            f"<td>{link}</td></tr>"
        )
    body = f"""
  <div class="summary">
    <div class="card"><h2>Hosts</h2><div class="num">{len(results)}</div></div>
    <div class="card"><h2>OK</h2><div class="num">{ok}</div></div>
    <div class="card"><h2>Failed</h2><div class="num">{failed}</div></div>
  </div>

  <h2>Hosts Overview</h2>
  <table>
    <thead><tr><th>Host</th><th>Cluster</th><th>Status</th><th>Error</th><th>Details</th></tr></thead>
    <tbody>
      {''.join(rows)}
    </tbody>
  </table>"""
    return _page("ESXi Host Network Reports", generated_at, body)
