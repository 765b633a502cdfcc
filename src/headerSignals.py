"""
headerSignals.py — Request header snapshot for client-IP resolution.

RequestSignals is built exactly once per incoming request, at the entry
boundary (web framework handler, WSGI middleware, CLI), and then passed by
value into the resolution chain and the classifier. Nothing downstream reads
ambient request state.

Header groups:
  CDN_HEADERS            vendor headers set by a CDN edge (hard to forge once
                         the origin only accepts edge traffic)
  PROXY_HEADERS          legacy forward-proxy markers (client-injectable)
  X-Forwarded-For        comma-separated hop chain, client first
  X-Real-IP              single value from an nginx-style reverse proxy
  X-Tor                  Tor marker header

Usage:
    signals = RequestSignals.from_headers(request.headers, request.remote_addr)
    signals = RequestSignals.from_wsgi_environ(environ)
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional, Tuple

from clientAddress import IpAddress


# ─────────────────────────────────────────────────────────────────────────────
#  Header tables
# ─────────────────────────────────────────────────────────────────────────────

# header name → RequestSignals attribute
HEADER_FIELDS: Dict[str, str] = {
    "CF-Connecting-IP":          "cf_connecting_ip",
    "CF-Ray":                    "cf_ray",
    "CF-IPCountry":              "cf_ipcountry",
    "Fastly-Client-IP":          "fastly_client_ip",
    "True-Client-IP":            "true_client_ip",
    "CloudFront-Viewer-Address": "cloudfront_viewer_address",
    "X-Forwarded-For":           "x_forwarded_for",
    "X-Real-IP":                 "x_real_ip",
    "Forwarded":                 "forwarded",
    "Forwarded-For":             "forwarded_for",
    "X-Forwarded":               "x_forwarded",
    "X-Cluster-Client-IP":       "x_cluster_client_ip",
    "X-Proxy-ID":                "x_proxy_id",
    "Via":                       "via",
    "Proxy-Connection":          "proxy_connection",
    "X-Tor":                     "x_tor",
    "User-Agent":                "user_agent",
}

# Order matters: it is the order proxy evidence is reported in
PROXY_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Via",                 "via"),
    ("X-Proxy-ID",          "x_proxy_id"),
    ("X-Cluster-Client-IP", "x_cluster_client_ip"),
    ("X-Forwarded",         "x_forwarded"),
    ("Forwarded-For",       "forwarded_for"),
    ("Forwarded",           "forwarded"),
    ("Proxy-Connection",    "proxy_connection"),
)

# (vendor label, attributes whose presence identifies the vendor)
CDN_HEADERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Cloudflare CDN",     ("cf_connecting_ip", "cf_ray", "cf_ipcountry")),
    ("Fastly CDN",         ("fastly_client_ip",)),
    ("Akamai/KeyCDN",      ("true_client_ip",)),
    ("AWS CloudFront CDN", ("cloudfront_viewer_address",)),
)


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ─────────────────────────────────────────────────────────────────────────────
#  Snapshot
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestSignals:
    """Immutable snapshot of every request value the engine looks at."""
    # CDN
    cf_connecting_ip:          Optional[str] = None
    cf_ray:                    Optional[str] = None
    cf_ipcountry:              Optional[str] = None
    fastly_client_ip:          Optional[str] = None
    true_client_ip:            Optional[str] = None
    cloudfront_viewer_address: Optional[str] = None
    # Forwarding
    x_forwarded_for:           Optional[str] = None
    x_real_ip:                 Optional[str] = None
    # Legacy proxy markers
    forwarded:                 Optional[str] = None
    forwarded_for:             Optional[str] = None
    x_forwarded:               Optional[str] = None
    x_cluster_client_ip:       Optional[str] = None
    x_proxy_id:                Optional[str] = None
    via:                       Optional[str] = None
    proxy_connection:          Optional[str] = None
    # Tor marker
    x_tor:                     Optional[str] = None
    # Transport peer + client software
    remote_addr:               Optional[str] = None
    user_agent:                Optional[str] = None

    def __post_init__(self):
        # Blank header values are treated as absent
        for f in fields(self):
            object.__setattr__(self, f.name, _clean(getattr(self, f.name)))

    # ── constructors ────────────────────────────────────────────────────────

    @classmethod
    def from_headers(cls, headers: Mapping[str, str],
                     remote_addr: Optional[str] = None) -> "RequestSignals":
        """Build from any header mapping; header names match case-insensitively."""
        lowered = {str(k).lower(): v for k, v in headers.items()}
        values = {attr: lowered.get(name.lower())
                  for name, attr in HEADER_FIELDS.items()}
        return cls(remote_addr=remote_addr, **values)

    @classmethod
    def from_wsgi_environ(cls, environ: Mapping[str, str]) -> "RequestSignals":
        """Build from a WSGI/CGI environ (HTTP_* keys plus REMOTE_ADDR)."""
        values = {}
        for name, attr in HEADER_FIELDS.items():
            key = "HTTP_" + name.upper().replace("-", "_")
            values[attr] = environ.get(key)
        return cls(remote_addr=environ.get("REMOTE_ADDR"), **values)

    # ── derived views ───────────────────────────────────────────────────────

    @property
    def peer(self) -> Optional[IpAddress]:
        return IpAddress.parse(self.remote_addr)

    @property
    def has_tor_marker(self) -> bool:
        return self.x_tor is not None

    @property
    def cdn_providers(self) -> List[str]:
        """Vendor labels whose headers are present, without duplicates."""
        return [label for label, attrs in CDN_HEADERS
                if any(getattr(self, a) for a in attrs)]

    @property
    def is_cdn(self) -> bool:
        return bool(self.cdn_providers)

    @property
    def present_proxy_headers(self) -> List[Tuple[str, str]]:
        """(header name, value) for every legacy proxy header present."""
        return [(name, getattr(self, attr)) for name, attr in PROXY_HEADERS
                if getattr(self, attr)]

    def header(self, name: str) -> Optional[str]:
        attr = HEADER_FIELDS.get(name)
        if attr is None:
            for known, known_attr in HEADER_FIELDS.items():
                if known.lower() == name.lower():
                    attr = known_attr
                    break
        return getattr(self, attr) if attr else None
