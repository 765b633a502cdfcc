"""
ipIntelligence.py — ip-api.com client for ISP/organization/geolocation data.

One GET per lookup:
    http://ip-api.com/json/{ip}?fields=status,country,regionName,city,zip,isp,org,query,proxy,hosting

Design:
  • lookup() never raises. It returns a LookupResult that carries either an
    IpApiInfo or an IpLookupError, so every caller decides explicitly what
    "no data" means for it.
  • Short connect/read timeouts; no retries. A failed call degrades to no
    data instead of adding latency to the request being served.
  • ip-api's free tier is rate limited (45 req/min). The X-Rl / X-Ttl
    response headers are honoured: once the remaining quota hits zero, the
    client fails fast with a "rate_limited" error until the window resets.

Usage:
    client = IpIntelligenceClient()
    result = client.lookup("8.8.8.8")
    if result.ok:
        print(result.info.isp, result.info.hosting)
    else:
        print(result.error)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from traceConfig import ClientTraceConfig

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
#  Data classes
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IpApiInfo:
    """The subset of an ip-api.com answer the engine uses."""
    query:       str
    country:     Optional[str]  = None
    region_name: Optional[str]  = None
    city:        Optional[str]  = None
    zip:         Optional[str]  = None
    isp:         Optional[str]  = None
    org:         Optional[str]  = None
    proxy:       Optional[bool] = None    # pro tier only
    hosting:     Optional[bool] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], ip: str) -> "IpApiInfo":
        # Fields of the wrong JSON type are dropped
        return cls(
            query       = _typed(payload, "query", str) or ip,
            country     = _typed(payload, "country", str),
            region_name = _typed(payload, "regionName", str),
            city        = _typed(payload, "city", str),
            zip         = _typed(payload, "zip", str),
            isp         = _typed(payload, "isp", str),
            org         = _typed(payload, "org", str),
            proxy       = _typed(payload, "proxy", bool),
            hosting     = _typed(payload, "hosting", bool),
        )


def _typed(payload: Dict[str, Any], key: str, kind: type):
    value = payload.get(key)
    return value if isinstance(value, kind) else None


class IpLookupError(Exception):
    """Why a lookup produced no data. Returned, not raised, by lookup()."""

    NETWORK       = "network"
    HTTP_STATUS   = "http_status"
    MALFORMED     = "malformed"
    FAILED_STATUS = "failed_status"
    RATE_LIMITED  = "rate_limited"

    def __init__(self, kind: str, message: str):
        super().__init__(f"{kind}: {message}")
        self.kind    = kind
        self.message = message


@dataclass(frozen=True)
class LookupResult:
    info:  Optional[IpApiInfo]     = None
    error: Optional[IpLookupError] = None

    @property
    def ok(self) -> bool:
        return self.info is not None


# ─────────────────────────────────────────────────────────────────────────────
#  Client
# ─────────────────────────────────────────────────────────────────────────────

class IpIntelligenceClient:
    """Thin ip-api.com client with rate-limit awareness."""

    DEFAULT_FIELDS = "status,message,country,regionName,city,zip,isp,org,query,proxy,hosting"

    def __init__(
        self,
        config:  Optional[ClientTraceConfig] = None,
        session: Optional[requests.Session]  = None,
        verbose: bool                        = False,
    ):
        self.config   = config or ClientTraceConfig()
        self._owns_session = session is None
        self.session  = session or requests.Session()
        self.verbose  = verbose
        self._lock    = threading.Lock()
        self._blocked_until: float = 0.0

    def lookup(self, ip: str, fields: Optional[str] = None) -> LookupResult:
        """Query ip-api.com for one address."""
        with self._lock:
            wait = self._blocked_until - time.time()
        if wait > 0:
            return self._fail(ip, IpLookupError.RATE_LIMITED,
                              f"quota exhausted, resets in {wait:.0f}s")

        url = self.config.ip_api_url.format(ip=ip)
        try:
            resp = self.session.get(
                url,
                params={"fields": fields or self.DEFAULT_FIELDS},
                headers={"Accept": "application/json",
                         "User-Agent": self.config.user_agent},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            return self._fail(ip, IpLookupError.NETWORK, str(e))

        self._track_rate_limit(resp)

        if resp.status_code != 200:
            return self._fail(ip, IpLookupError.HTTP_STATUS, f"HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as e:
            return self._fail(ip, IpLookupError.MALFORMED, f"invalid JSON ({e})")

        if not isinstance(payload, dict):
            return self._fail(ip, IpLookupError.MALFORMED, "response is not a JSON object")

        if payload.get("status") != "success":
            reason = payload.get("message") or payload.get("status") or "no status"
            return self._fail(ip, IpLookupError.FAILED_STATUS, str(reason))

        info = IpApiInfo.from_payload(payload, ip)
        logger.debug("ip-api: %s → %s / %s / %s", ip, info.country, info.isp, info.org)
        return LookupResult(info=info)

    def close(self):
        """Close the HTTP session if this client created it."""
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── helpers ─────────────────────────────────────────────────────────────

    def _track_rate_limit(self, resp):
        headers = getattr(resp, "headers", None) or {}
        remaining = headers.get("X-Rl")
        reset_in  = headers.get("X-Ttl")
        if remaining is None or reset_in is None:
            return
        try:
            remaining, reset_in = int(remaining), int(reset_in)
        except (TypeError, ValueError):
            return
        if remaining <= 0:
            with self._lock:
                self._blocked_until = time.time() + reset_in
            logger.warning("ip-api quota exhausted, pausing lookups for %ds", reset_in)

    def _fail(self, ip: str, kind: str, message: str) -> LookupResult:
        error = IpLookupError(kind, message)
        if self.verbose:
            logger.info("ip-api lookup failed for %s: %s", ip, error)
        else:
            logger.debug("ip-api lookup failed for %s: %s", ip, error)
        return LookupResult(error=error)
