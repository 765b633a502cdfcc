"""
GEOLOCATION CACHE MODULE
Human-readable location string for a client IP, backed by a 24h disk cache

Provides:
- One JSON file per IP: <cache_dir>/<md5(ip)>.json = {"location", "timestamp"}
- Fresh entries (younger than the TTL) are returned verbatim, no network
- Stale or missing entries trigger one ip-api.com lookup; success overwrites
- Lookup failure falls back to the stale entry, marked with CACHED_SUFFIX
- Atomic writes (temp file + os.replace): readers never see half a file

locate() always returns a string. Cache I/O problems are logged, never raised.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from clientAddress import IpAddress
from ipIntelligence import IpApiInfo, IpIntelligenceClient
from traceConfig import ClientTraceConfig

logger = logging.getLogger(__name__)

LOCAL_HOST_LOCATION    = "Local host - internal network"
LOOKUP_FAILED_LOCATION = "Location lookup failed"
CACHED_SUFFIX          = " (cached)"

GEO_FIELDS = "status,message,country,regionName,city,zip,isp,query"


@dataclass(frozen=True)
class GeoCacheEntry:
    location:  str
    timestamp: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return (now - self.timestamp) < ttl


def format_location(info: IpApiInfo) -> str:
    """'Country - Region City Zip - ISP' with Unknown for missing parts."""
    return "{} - {} {} {} - {}".format(
        info.country or "Unknown",
        info.region_name or "Unknown",
        info.city or "Unknown",
        info.zip or "",
        info.isp or "Unknown",
    )


class GeolocationCache:
    """Disk-cached wrapper around the ip-api.com geolocation lookup."""

    CACHE_TTL = 86_400  # 24 hours

    def __init__(
        self,
        cache_dir:    Optional[str]                  = None,
        intelligence: Optional[IpIntelligenceClient] = None,
        config:       Optional[ClientTraceConfig]    = None,
        ttl:          Optional[float]                = None,
        clock:        Callable[[], float]            = time.time,
        verbose:      bool                           = False,
    ):
        self.config       = config or ClientTraceConfig()
        self.cache_dir    = Path(cache_dir or self.config.cache_dir)
        self.ttl          = ttl or self.config.cache_ttl or self.CACHE_TTL
        self.intelligence = intelligence or IpIntelligenceClient(self.config, verbose=verbose)
        self.clock        = clock
        self.verbose      = verbose
        self._write_lock  = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────────
    #  Public API
    # ─────────────────────────────────────────────────────────────────────────

    def locate(self, ip) -> str:
        addr = ip if isinstance(ip, IpAddress) else IpAddress.parse(ip)
        if addr is None:
            return LOOKUP_FAILED_LOCATION
        if addr.is_loopback_or_unspecified:
            return LOCAL_HOST_LOCATION

        entry = self.read_entry(addr.text)
        if entry and entry.is_fresh(self.clock(), self.ttl):
            return entry.location

        if not self.config.enable_lookup:
            return self._fallback(addr.text, entry)

        result = self.intelligence.lookup(addr.text, fields=GEO_FIELDS)
        if not result.ok:
            return self._fallback(addr.text, entry)

        location = format_location(result.info)
        self.write_entry(addr.text, location)
        return location

    def read_entry(self, ip: str) -> Optional[GeoCacheEntry]:
        path = self.cache_path(ip)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Geo cache read failed for %s: %s", path, e)
            return None

        try:
            data = json.loads(raw.decode("utf-8"))
            location = data["location"]
        except (ValueError, KeyError, TypeError) as e:
            logger.debug("Ignoring corrupt geo cache file %s: %s", path, e)
            return None
        if not isinstance(location, str) or not location:
            return None

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            try:
                timestamp = path.stat().st_mtime
            except OSError:
                timestamp = 0.0
        return GeoCacheEntry(location=location, timestamp=float(timestamp))

    def write_entry(self, ip: str, location: str, timestamp: Optional[float] = None) -> bool:
        """Persist (overwrite) the entry for ip. Returns False on I/O failure."""
        path = self.cache_path(ip)
        payload = json.dumps(
            {"location": location, "timestamp": int(self.clock() if timestamp is None else timestamp)},
            ensure_ascii=False,
        )
        with self._write_lock:
            tmp_name = None
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=".", suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, path)
                tmp_name = None
                return True
            except OSError as e:
                logger.warning("Geo cache write failed for %s: %s", path, e)
                return False
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass

    def cache_path(self, ip: str) -> Path:
        return self.cache_dir / (hashlib.md5(ip.encode("utf-8")).hexdigest() + ".json")

    def clear(self) -> int:
        """Remove every cache file. Returns how many were deleted."""
        removed = 0
        if not self.cache_dir.is_dir():
            return removed
        for path in self.cache_dir.glob("*.json"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
        return removed

    # ─────────────────────────────────────────────────────────────────────────
    #  Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _fallback(self, ip: str, entry: Optional[GeoCacheEntry]) -> str:
        if entry is not None:
            if self.verbose:
                logger.info("Serving stale geolocation for %s", ip)
            return entry.location + CACHED_SUFFIX
        return LOOKUP_FAILED_LOCATION


def locate(ip, cache_dir: Optional[str] = None) -> str:
    """Convenience wrapper with default settings."""
    config = ClientTraceConfig()
    with IpIntelligenceClient(config) as client:
        return GeolocationCache(cache_dir=cache_dir, intelligence=client, config=config).locate(ip)
