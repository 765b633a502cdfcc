#!/usr/bin/env python3
"""
CLIENTTRACE — CLIENT IDENTITY ORCHESTRATOR
==========================================

Runs the full per-request pipeline:

    RequestSignals
      → ipResolution.resolve()            client IP + "behind a front-end?"
      → AnonymityClassifier.classify()    CDN / proxy / VPN / Tor verdict
      → GeolocationCache.locate()         human-readable location (24h cache)
      → parse_user_agent()                browser / OS / device

One IpIntelligenceClient is shared by the classifier and the geolocation
cache, so both see the same ip-api.com rate-limit window.

USAGE:
    from clientTrace import ClientTraceEngine

    engine = ClientTraceEngine(verbose=True)
    report = engine.analyze_headers(request.headers, request.remote_addr)
    print(report.summary_line())

CLI:
    clienttrace -H "X-Forwarded-For: 10.0.0.5, 203.0.113.9" --peer 10.0.0.1
    clienttrace -H "CF-Connecting-IP: 198.51.100.7" -H "CF-Ray: 8a1b" --json
    clienttrace --peer 8.8.8.8 --no-lookup
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Mapping, Optional

import requests

import reportingAdapter
from anonymityClassifier import AnonymityClassifier, DetectionResult
from geolocationCache import GeolocationCache
from headerSignals import RequestSignals
from ipIntelligence import IpIntelligenceClient
from ipResolution import ResolutionResult, resolve
from traceConfig import ClientTraceConfig
from userAgentParser import UserAgentInfo, parse_user_agent

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
#  Report
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TraceReport:
    """Everything the engine learned about one request."""
    resolution:  ResolutionResult
    detection:   DetectionResult
    location:    str
    user_agent:  UserAgentInfo
    analyzed_at: datetime

    @property
    def client_ip(self) -> str:
        return self.resolution.client_ip.text

    def summary_line(self) -> str:
        return reportingAdapter.summary_line(
            self.resolution.client_ip, self.location, self.detection, self.analyzed_at)

    def detail_block(self) -> str:
        return reportingAdapter.detail_block(
            self.resolution.client_ip, self.location, self.detection,
            self.user_agent, self.analyzed_at)

    def to_dict(self) -> dict:
        return {
            "analyzed_at": self.analyzed_at.isoformat(timespec="seconds"),
            "resolution":  self.resolution.to_dict(),
            "location":    self.location,
            "detection":   self.detection.to_dict(),
            "user_agent":  self.user_agent.to_dict(),
        }


# ─────────────────────────────────────────────────────────────────────────────
#  Engine
# ─────────────────────────────────────────────────────────────────────────────

class ClientTraceEngine:

    def __init__(
        self,
        config:  Optional[ClientTraceConfig] = None,
        session: Optional[requests.Session]  = None,
        verbose: bool                        = False,
    ):
        self.config       = config or ClientTraceConfig()
        self.verbose      = verbose
        self.intelligence = IpIntelligenceClient(self.config, session=session, verbose=verbose)
        self.classifier   = AnonymityClassifier(self.intelligence, self.config, verbose=verbose)
        self.geolocation  = GeolocationCache(intelligence=self.intelligence,
                                             config=self.config, verbose=verbose)

    def analyze(self, signals: RequestSignals) -> TraceReport:
        resolution = resolve(signals)
        detection  = self.classifier.classify(resolution.client_ip, signals)
        location   = self.geolocation.locate(resolution.client_ip)
        report = TraceReport(
            resolution  = resolution,
            detection   = detection,
            location    = location,
            user_agent  = parse_user_agent(signals.user_agent),
            analyzed_at = datetime.now(),
        )
        if self.verbose:
            logger.info(report.summary_line())
        return report

    def analyze_headers(self, headers: Mapping[str, str],
                        remote_addr: Optional[str] = None) -> TraceReport:
        return self.analyze(RequestSignals.from_headers(headers, remote_addr))

    def analyze_environ(self, environ: Mapping[str, str]) -> TraceReport:
        return self.analyze(RequestSignals.from_wsgi_environ(environ))

    def close(self):
        self.intelligence.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ─────────────────────────────────────────────────────────────────────────────
#  CLI
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_header_args(raw_headers: List[str]) -> dict:
    """["Name: value", ...] → {"Name": "value"}. Later duplicates win."""
    headers = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"header must look like 'Name: value', got {raw!r}")
        headers[name.strip()] = value.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clienttrace",
        description="ClientTrace: resolve the real client IP and detect CDN/proxy/VPN/Tor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  Behind a reverse proxy:
    clienttrace -H "X-Forwarded-For: 10.0.0.5, 203.0.113.9" --peer 10.0.0.1

  Cloudflare edge, JSON output:
    clienttrace -H "CF-Connecting-IP: 198.51.100.7" -H "CF-Ray: 8a1b" --json

  Headers only, no outbound calls:
    clienttrace --peer 8.8.8.8 --no-lookup
        """
    )
    parser.add_argument("-H", "--header", action="append", default=[], dest="headers",
                        metavar="'NAME: VALUE'", help="Request header (repeatable)")
    parser.add_argument("--peer", help="Socket peer address (REMOTE_ADDR)")
    parser.add_argument("--cache-dir", default=None,
                        help="Geolocation cache directory (default: ./ip_cache)")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Connect and read timeout for ip-api.com, in seconds")
    parser.add_argument("--no-lookup", action="store_true",
                        help="Never call ip-api.com (headers only)")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        headers = parse_header_args(args.headers)
    except ValueError as e:
        parser.error(str(e))

    overrides = {}
    if args.cache_dir:
        overrides["cache_dir"] = args.cache_dir
    if args.timeout is not None:
        overrides["connect_timeout"] = args.timeout
        overrides["read_timeout"] = args.timeout
    if args.no_lookup:
        overrides["enable_lookup"] = False
    config = replace(ClientTraceConfig(), **overrides)

    try:
        with ClientTraceEngine(config=config, verbose=args.verbose) as engine:
            report = engine.analyze_headers(headers, args.peer)
    except KeyboardInterrupt:
        print("\n[!] Interrupted", file=sys.stderr)
        return 130

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(report.summary_line())
        print()
        print(report.detail_block())
    return 0


if __name__ == "__main__":
    sys.exit(main())
