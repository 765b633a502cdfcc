"""
ipResolution.py — Client IP resolution chain.

Picks the single most plausible client address for a request, in priority
order:

  1. CDN client-IP headers (CF-Connecting-IP → Fastly-Client-IP →
     True-Client-IP → CloudFront-Viewer-Address). The first IPv4 wins
     outright; the first IPv6 is kept as a fallback.
  2. X-Forwarded-For: public entries only, IPv4 preferred.
  3. X-Real-IP: any valid entry, IPv4 preferred.
  4. The socket peer. A private/reserved peer means a front-end (reverse
     proxy, load balancer, CDN) terminated the connection, so header
     candidates win over it. A public IPv4 peer with no CDN header is the
     client itself.
  5. 127.0.0.1 when nothing validates.

The chain is pure: it reads only the RequestSignals passed in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from clientAddress import LOOPBACK_DEFAULT, IpAddress, parse_ip_list, prefer_ipv4
from headerSignals import RequestSignals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionResult:
    client_ip:    IpAddress
    via_frontend: bool
    source:       str       # header (or "REMOTE_ADDR" / "default") that won

    def to_dict(self) -> dict:
        return {
            "client_ip":    self.client_ip.text,
            "via_frontend": self.via_frontend,
            "source":       self.source,
        }


# ─────────────────────────────────────────────────────────────────────────────
#  CDN header extractors
# ─────────────────────────────────────────────────────────────────────────────

def _header_value(attr: str) -> Callable[[RequestSignals], Optional[IpAddress]]:
    def extract(signals: RequestSignals) -> Optional[IpAddress]:
        return IpAddress.parse(getattr(signals, attr))
    return extract


def _viewer_address(signals: RequestSignals) -> Optional[IpAddress]:
    """
    CloudFront-Viewer-Address is "ip:port". IPv6 arrives either bare
    ("2001:db8::1:443") or bracketed ("[2001:db8::1]:443").
    """
    raw = signals.cloudfront_viewer_address
    if not raw:
        return None
    if raw.startswith("["):
        return IpAddress.parse(raw[1:].split("]", 1)[0])
    if ":" not in raw:
        return IpAddress.parse(raw)
    # Strip the trailing port first; a bare address without port still parses
    return IpAddress.parse(raw.rsplit(":", 1)[0]) or IpAddress.parse(raw)


# Evaluated top to bottom; the first IPv4 hit short-circuits the whole chain
CDN_IP_CHAIN: Tuple[Tuple[str, Callable[[RequestSignals], Optional[IpAddress]]], ...] = (
    ("CF-Connecting-IP",          _header_value("cf_connecting_ip")),
    ("Fastly-Client-IP",          _header_value("fastly_client_ip")),
    ("True-Client-IP",            _header_value("true_client_ip")),
    ("CloudFront-Viewer-Address", _viewer_address),
)


# ─────────────────────────────────────────────────────────────────────────────
#  Resolution
# ─────────────────────────────────────────────────────────────────────────────

class _Candidates:
    """Running state: best IPv4 seen so far plus a first-come fallback."""

    def __init__(self):
        self.ipv4:          Optional[IpAddress] = None
        self.ipv4_source:   Optional[str]       = None
        self.fallback:      Optional[IpAddress] = None
        self.fallback_src:  Optional[str]       = None

    def offer_fallback(self, ip: IpAddress, source: str):
        if self.fallback is None:
            self.fallback = ip
            self.fallback_src = source

    def offer(self, ip: IpAddress, source: str):
        if ip.is_v4:
            self.ipv4 = ip
            self.ipv4_source = source
        self.offer_fallback(ip, source)

    def best(self) -> Optional[Tuple[IpAddress, str]]:
        if self.ipv4 is not None:
            return self.ipv4, self.ipv4_source
        if self.fallback is not None:
            return self.fallback, self.fallback_src
        return None


def resolve(signals: RequestSignals) -> ResolutionResult:
    """Resolve the client address for one request."""
    peer = signals.peer
    via_frontend = peer is not None and not peer.is_public
    candidates = _Candidates()

    # Priority 1: CDN client-IP headers
    for header, extract in CDN_IP_CHAIN:
        ip = extract(signals)
        if ip is None:
            continue
        if ip.is_v4:
            logger.debug("Client IP %s from %s", ip, header)
            return ResolutionResult(ip, via_frontend, header)
        candidates.offer_fallback(ip, header)

    # Priority 2: X-Forwarded-For, public hops only
    public_hops = [ip for ip in parse_ip_list(signals.x_forwarded_for) if ip.is_public]
    preferred = prefer_ipv4(public_hops)
    if preferred:
        candidates.offer(preferred[0], "X-Forwarded-For")

    # Priority 3: X-Real-IP
    real_ip = IpAddress.parse(signals.x_real_ip)
    if real_ip is not None:
        candidates.offer(real_ip, "X-Real-IP")

    # Priority 4: socket peer
    if via_frontend:
        best = candidates.best()
        if best is not None:
            return ResolutionResult(best[0], True, best[1])
        return ResolutionResult(peer, True, "REMOTE_ADDR")

    if peer is not None:
        if peer.is_public and peer.is_v4:
            return ResolutionResult(peer, False, "REMOTE_ADDR")
        candidates.offer(peer, "REMOTE_ADDR")

    best = candidates.best()
    if best is not None:
        return ResolutionResult(best[0], via_frontend, best[1])

    logger.debug("No usable client address, defaulting to %s", LOOPBACK_DEFAULT)
    return ResolutionResult(IpAddress.parse(LOOPBACK_DEFAULT), via_frontend, "default")


def resolve_client_ip(signals: RequestSignals) -> IpAddress:
    return resolve(signals).client_ip
