"""
reportingAdapter.py — Human-readable rendering of one traced request.

Two shapes:
  summary_line()   one line per request, for a daily access log
                   "time | IP | location | VPN/proxy/Tor status | source IP"
  detail_block()   multi-line block with the full detection audit trail

Both are pure string builders; writing them anywhere is the caller's job.
"""

from datetime import datetime
from typing import List, Optional

from anonymityClassifier import UNKNOWN, DetectionResult
from clientAddress import IpAddress
from userAgentParser import UserAgentInfo

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def anonymity_status(detection: DetectionResult) -> str:
    """VPN beats proxy beats Tor, matching the summary log convention."""
    if detection.is_vpn:
        return f"VPN: {detection.vpn_type}"
    if detection.is_proxy:
        return f"Proxy: {detection.proxy_type}"
    if detection.is_tor:
        return "Tor network"
    return ""


def summary_line(client_ip: IpAddress, location: str, detection: DetectionResult,
                 when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    parts = [
        f"Time: {when.strftime(TIME_FORMAT)}",
        f"IP: {client_ip}",
        f"Location: {location}",
    ]
    status = anonymity_status(detection)
    if status:
        parts.append(status)
    if detection.possible_source_ip.text != client_ip.text:
        parts.append(f"Possible source IP: {detection.possible_source_ip}")
    return " | ".join(parts)


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def detail_block(client_ip: IpAddress, location: str, detection: DetectionResult,
                 user_agent: Optional[UserAgentInfo] = None,
                 when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    lines: List[str] = [
        f"=== Access record (IP: {client_ip}) ===",
        f"Time: {when.strftime(TIME_FORMAT)}",
        f"IP: {client_ip}",
        f"Location: {location}",
        "",
        "[ANONYMITY DETECTION]",
        f"  VPN: {_yes_no(detection.is_vpn)}",
        f"  Proxy: {_yes_no(detection.is_proxy)}",
        f"  Tor: {_yes_no(detection.is_tor)}",
    ]
    if detection.is_cdn:
        lines.append(f"  CDN: {', '.join(detection.cdn_providers)}")
    if detection.vpn_type:
        lines.append(f"  VPN type: {detection.vpn_type}")
    if detection.proxy_type:
        lines.append(f"  Proxy type: {detection.proxy_type}")
    if detection.confidence > 0:
        lines.append(f"  Confidence: {detection.confidence}")
    if detection.possible_source_ip.text != client_ip.text:
        lines.append(f"  Possible source IP: {detection.possible_source_ip}")
    if len(detection.source_ip_chain) > 1:
        lines.append("  IP chain (X-Forwarded-For): "
                     + " -> ".join(ip.text for ip in detection.source_ip_chain))

    info = detection.ip_info
    if info is not None:
        known = [f"{label}: {value}" for label, value in
                 (("Country", info.country), ("ISP", info.isp), ("Org", info.org))
                 if value and value != UNKNOWN]
        if known:
            lines.append("  IP info: " + " | ".join(known))

    if detection.detection_methods:
        lines.append("  Detection methods: " + "; ".join(detection.detection_methods))

    if user_agent is not None:
        lines += [
            "",
            "[CLIENT SOFTWARE]",
            f"  Browser: {user_agent.browser_name} {user_agent.browser_version}",
            f"  OS: {user_agent.os_name} {user_agent.os_version}",
            f"  Device: {user_agent.device_type}",
        ]
        if user_agent.device_model != UNKNOWN:
            brand = "" if user_agent.device_brand == UNKNOWN else user_agent.device_brand + " "
            lines.append(f"  Model: {brand}{user_agent.device_model}")
        if user_agent.is_bot:
            lines.append("  Bot: yes")

    lines.append("=== End of record ===")
    return "\n".join(lines)
