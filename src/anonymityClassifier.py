"""
anonymityClassifier.py — CDN / proxy / VPN / Tor signal fusion.

Takes the resolved client address plus the request's RequestSignals and
decides whether the client is connecting directly, through a CDN edge, an
HTTP proxy, a VPN or Tor.

TECHNIQUES (applied in this order, each one appends Evidence when it fires):
    1. CDN vendor headers           — gate for 2 and 6, no weight of their own
    2. Legacy proxy headers         — +25 per header, only outside a CDN
    3. X-Forwarded-For chain        — source-IP candidate, no weight
    4. Tor marker header            — +50
    5. ip-api.com intelligence      — CDN ISP (0), VPN keyword (+30),
                                      hosting flag (+15), proxy flag (+40)
    6. Private peer address         — +20, only outside a CDN
    7. Known commercial VPN brand   — +50
    8. CDN misfire suppression      — cancels a weak proxy verdict under a CDN
    9. Label precedence             — Tor > VPN > proxy

Confidence is the sum of Evidence weights. It is not a probability and has
no upper bound: overlapping techniques (hosting flag + VPN brand, several
proxy headers at once) add up. Suppression is itself an Evidence entry with
a negative weight, so the audit trail always sums to the reported score.

Usage:
    from anonymityClassifier import AnonymityClassifier
    result = AnonymityClassifier().classify(client_ip, signals)
    print(result.confidence, result.detection_methods)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from clientAddress import IpAddress, parse_ip_list
from headerSignals import RequestSignals
from ipIntelligence import IpApiInfo, IpIntelligenceClient, LookupResult
from traceConfig import ClientTraceConfig

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
#  Keyword tables
# ─────────────────────────────────────────────────────────────────────────────

CDN_ISP_KEYWORDS = [
    "cloudflare", "fastly", "akamai", "cloudfront", "keycdn", "maxcdn", "cdn",
    "alibaba", "tencent cloud", "aliyun", "aws", "azure", "google cloud",
]

VPN_ISP_KEYWORDS = ["vpn", "proxy", "tor"]

KNOWN_VPN_BRANDS = [
    "NordVPN", "ExpressVPN", "Surfshark", "CyberGhost", "Private Internet Access",
    "PureVPN", "Hotspot Shield", "VyprVPN", "TunnelBear", "Windscribe",
    "Mullvad", "ProtonVPN", "IPVanish", "StrongVPN",
]

# Weights
PROXY_HEADER_WEIGHT   = 25
TOR_MARKER_WEIGHT     = 50
VPN_KEYWORD_WEIGHT    = 30
HOSTING_FLAG_WEIGHT   = 15
PROXY_FLAG_WEIGHT     = 40
PEER_MISMATCH_WEIGHT  = 20
VPN_BRAND_WEIGHT      = 50

# Hosting flag only counts once other evidence passed this score
HOSTING_FLAG_MIN_SCORE = 30
# A proxy verdict under a CDN must reach this score to survive
CDN_SUPPRESSION_THRESHOLD = 50

# Labels
LABEL_HTTP_PROXY    = "HTTP proxy"
LABEL_TOR           = "Tor network"
LABEL_VPN_PROVIDER  = "VPN/proxy service provider"
LABEL_DATACENTER    = "datacenter/hosted"
LABEL_CONFIRMED     = "confirmed proxy"
LABEL_REVERSE_PROXY = "reverse proxy/load balancer"

UNKNOWN = "Unknown"


# ─────────────────────────────────────────────────────────────────────────────
#  Data classes
# ─────────────────────────────────────────────────────────────────────────────

class DetectionMethod(Enum):
    CDN_HEADERS       = "cdn_headers"
    PROXY_HEADERS     = "proxy_headers"
    FORWARDED_CHAIN   = "forwarded_chain"
    TOR_MARKER        = "tor_marker"
    LOOKUP            = "ip_intelligence"
    ISP_CDN           = "isp_cdn"
    ISP_VPN_KEYWORD   = "isp_vpn_keyword"
    HOSTING_FLAG      = "hosting_flag"
    PROXY_FLAG        = "proxy_flag"
    PEER_MISMATCH     = "peer_mismatch"
    VPN_BRAND         = "vpn_brand"
    CDN_SUPPRESSION   = "cdn_suppression"


@dataclass(frozen=True)
class Evidence:
    """One signed contribution to the confidence score."""
    method: DetectionMethod
    weight: int
    note:   str

    def to_dict(self) -> dict:
        return {"method": self.method.value, "weight": self.weight, "note": self.note}


@dataclass(frozen=True)
class IpInfoSummary:
    country: str
    isp:     str
    org:     str
    query:   str

    @classmethod
    def from_info(cls, info: IpApiInfo, ip: str) -> "IpInfoSummary":
        return cls(
            country = info.country or UNKNOWN,
            isp     = info.isp or UNKNOWN,
            org     = info.org or UNKNOWN,
            query   = info.query or ip,
        )


@dataclass(frozen=True)
class DetectionResult:
    """Anonymization verdict for one request. Immutable once returned."""
    possible_source_ip: IpAddress
    is_vpn:             bool                    = False
    is_proxy:           bool                    = False
    is_tor:             bool                    = False
    is_cdn:             bool                    = False
    vpn_type:           Optional[str]           = None
    proxy_type:         Optional[str]           = None
    cdn_providers:      Tuple[str, ...]         = ()
    source_ip_chain:    Tuple[IpAddress, ...]   = ()
    ip_info:            Optional[IpInfoSummary] = None
    evidence:           Tuple[Evidence, ...]    = ()

    @property
    def confidence(self) -> int:
        return total_confidence(self.evidence)

    @property
    def detection_methods(self) -> List[str]:
        return [e.note for e in self.evidence]

    def to_dict(self) -> dict:
        return {
            "is_vpn":             self.is_vpn,
            "is_proxy":           self.is_proxy,
            "is_tor":             self.is_tor,
            "is_cdn":             self.is_cdn,
            "vpn_type":           self.vpn_type,
            "proxy_type":         self.proxy_type,
            "cdn_providers":      list(self.cdn_providers),
            "confidence":         self.confidence,
            "source_ip_chain":    [ip.text for ip in self.source_ip_chain],
            "possible_source_ip": self.possible_source_ip.text,
            "detection_methods":  self.detection_methods,
            "ip_info":            asdict(self.ip_info) if self.ip_info else None,
            "evidence":           [e.to_dict() for e in self.evidence],
        }


@dataclass
class _DetectionDraft:
    """Mutable working state while the techniques run."""
    possible_source_ip: IpAddress
    is_vpn:             bool                    = False
    is_proxy:           bool                    = False
    is_tor:             bool                    = False
    is_cdn:             bool                    = False
    vpn_type:           Optional[str]           = None
    proxy_type:         Optional[str]           = None
    cdn_providers:      List[str]               = field(default_factory=list)
    source_ip_chain:    List[IpAddress]         = field(default_factory=list)
    ip_info:            Optional[IpInfoSummary] = None
    evidence:           List[Evidence]          = field(default_factory=list)

    @property
    def confidence(self) -> int:
        return total_confidence(self.evidence)

    def add(self, method: DetectionMethod, note: str, weight: int = 0):
        self.evidence.append(Evidence(method, weight, note))

    def freeze(self) -> DetectionResult:
        return DetectionResult(
            possible_source_ip = self.possible_source_ip,
            is_vpn             = self.is_vpn,
            is_proxy           = self.is_proxy,
            is_tor             = self.is_tor,
            is_cdn             = self.is_cdn,
            vpn_type           = self.vpn_type,
            proxy_type         = self.proxy_type,
            cdn_providers      = tuple(self.cdn_providers),
            source_ip_chain    = tuple(self.source_ip_chain),
            ip_info            = self.ip_info,
            evidence           = tuple(self.evidence),
        )


def total_confidence(evidence: Iterable[Evidence]) -> int:
    return sum(e.weight for e in evidence)


def _first_keyword(haystacks: List[str], keywords: List[str]) -> Optional[str]:
    for kw in keywords:
        if any(kw in h for h in haystacks):
            return kw
    return None


# ─────────────────────────────────────────────────────────────────────────────
#  Classifier
# ─────────────────────────────────────────────────────────────────────────────

class AnonymityClassifier:
    """Fuses header evidence and ip-api.com data into a DetectionResult."""

    def __init__(
        self,
        intelligence: Optional[IpIntelligenceClient] = None,
        config:       Optional[ClientTraceConfig]    = None,
        verbose:      bool                           = False,
    ):
        self.config       = config or ClientTraceConfig()
        self.intelligence = intelligence
        if self.intelligence is None and self.config.enable_lookup:
            self.intelligence = IpIntelligenceClient(self.config, verbose=verbose)
        self.verbose = verbose

    def classify(self, ip: Union[IpAddress, str], signals: RequestSignals) -> DetectionResult:
        if not isinstance(ip, IpAddress):
            parsed = IpAddress.parse(ip)
            if parsed is None:
                logger.debug("Refusing to classify invalid address %r", ip)
                return DetectionResult(possible_source_ip=IpAddress.parse("127.0.0.1"))
            ip = parsed

        result = _DetectionDraft(possible_source_ip=ip)
        if ip.is_loopback_or_unspecified:
            return result.freeze()

        self._detect_cdn(result, signals)
        self._detect_proxy_headers(result, signals)
        self._analyze_forwarded_chain(result, signals, ip)
        self._detect_tor_marker(result, signals)
        self._apply_intelligence(result, ip)
        self._check_peer_mismatch(result, signals, ip)
        self._match_vpn_brand(result)
        self._suppress_cdn_misfire(result)
        self._finalize_labels(result)

        if self.verbose:
            logger.info("Classified %s: vpn=%s proxy=%s tor=%s cdn=%s confidence=%d",
                        ip, result.is_vpn, result.is_proxy, result.is_tor,
                        result.is_cdn, result.confidence)
        return result.freeze()

    # ── 1. CDN vendor headers ───────────────────────────────────────────────

    def _detect_cdn(self, result: _DetectionDraft, signals: RequestSignals):
        providers = signals.cdn_providers
        if not providers:
            return
        result.is_cdn = True
        result.cdn_providers = providers
        result.add(DetectionMethod.CDN_HEADERS,
                   f"CDN service detected: {', '.join(providers)} (CDN headers excluded as proxy evidence)")

    # ── 2. Legacy proxy headers ─────────────────────────────────────────────

    def _detect_proxy_headers(self, result: _DetectionDraft, signals: RequestSignals):
        present = signals.present_proxy_headers
        if not present:
            return
        listed = ", ".join(f"{name}: {value}" for name, value in present)

        if result.is_cdn:
            result.add(DetectionMethod.PROXY_HEADERS,
                       f"Proxy headers expected behind CDN, not counted: {listed}")
            return

        for name, value in present:
            result.is_proxy = True
            result.proxy_type = LABEL_HTTP_PROXY
            result.add(DetectionMethod.PROXY_HEADERS, f"Proxy header {name}: {value}",
                       PROXY_HEADER_WEIGHT)

    # ── 3. X-Forwarded-For chain ────────────────────────────────────────────

    def _analyze_forwarded_chain(self, result: _DetectionDraft, signals: RequestSignals,
                                 ip: IpAddress):
        chain = parse_ip_list(signals.x_forwarded_for)
        result.source_ip_chain = chain
        if len(chain) <= 1:
            return
        for hop in chain:
            if hop.is_public:
                result.possible_source_ip = hop
                result.add(DetectionMethod.FORWARDED_CHAIN,
                           f"Possible source IP from X-Forwarded-For chain: {hop}")
                return

    # ── 4. Tor marker ───────────────────────────────────────────────────────

    def _detect_tor_marker(self, result: _DetectionDraft, signals: RequestSignals):
        if not signals.has_tor_marker:
            return
        result.is_tor = True
        result.proxy_type = LABEL_TOR
        result.add(DetectionMethod.TOR_MARKER, "Tor network marker header present",
                   TOR_MARKER_WEIGHT)

    # ── 5. ip-api.com intelligence ──────────────────────────────────────────

    def _apply_intelligence(self, result: _DetectionDraft, ip: IpAddress):
        if self.intelligence is None or not self.config.enable_lookup:
            return

        threshold = self.config.skip_lookup_above
        if threshold is not None and result.confidence > threshold:
            result.add(DetectionMethod.LOOKUP,
                       f"IP intelligence lookup skipped: header evidence already at {result.confidence}")
            return

        lookup: LookupResult = self.intelligence.lookup(ip.text)
        if not lookup.ok:
            # Best effort: carry on with header evidence only
            result.add(DetectionMethod.LOOKUP, f"IP intelligence unavailable ({lookup.error})")
            return

        info = lookup.info
        result.ip_info = IpInfoSummary.from_info(info, ip.text)
        haystacks = [(info.isp or "").lower(), (info.org or "").lower()]

        cdn_keyword = _first_keyword(haystacks, CDN_ISP_KEYWORDS)
        if cdn_keyword:
            result.add(DetectionMethod.ISP_CDN,
                       f"CDN provider ISP/organization: {info.org or info.isp or UNKNOWN} (not counted as VPN)")
        elif not result.is_cdn:
            vpn_keyword = _first_keyword(haystacks, VPN_ISP_KEYWORDS)
            if vpn_keyword:
                result.is_vpn = True
                result.vpn_type = LABEL_VPN_PROVIDER
                result.add(DetectionMethod.ISP_VPN_KEYWORD,
                           f"ISP/organization name contains VPN keyword: {vpn_keyword}",
                           VPN_KEYWORD_WEIGHT)

        if (info.hosting and not result.is_cdn and not cdn_keyword
                and result.confidence > HOSTING_FLAG_MIN_SCORE):
            result.is_proxy = True
            result.proxy_type = LABEL_DATACENTER
            result.add(DetectionMethod.HOSTING_FLAG, "Address belongs to a datacenter/hosting provider",
                       HOSTING_FLAG_WEIGHT)

        if info.proxy:
            result.is_proxy = True
            result.proxy_type = LABEL_CONFIRMED
            result.add(DetectionMethod.PROXY_FLAG, "IP intelligence service flags this address as a proxy",
                       PROXY_FLAG_WEIGHT)

    # ── 6. Private peer behind the resolved address ─────────────────────────

    def _check_peer_mismatch(self, result: _DetectionDraft, signals: RequestSignals,
                             ip: IpAddress):
        peer = signals.peer
        if peer is None or peer.text == ip.text or peer.is_public:
            return
        if result.is_cdn:
            result.add(DetectionMethod.PEER_MISMATCH,
                       f"Peer address {peer} is private, expected behind CDN (not counted)")
            return
        result.is_proxy = True
        result.proxy_type = LABEL_REVERSE_PROXY
        result.add(DetectionMethod.PEER_MISMATCH,
                   f"Peer address {peer} is private, request passed a proxy layer",
                   PEER_MISMATCH_WEIGHT)

    # ── 7. Known VPN brands ─────────────────────────────────────────────────

    def _match_vpn_brand(self, result: _DetectionDraft):
        if result.ip_info is None or result.ip_info.org == UNKNOWN:
            return
        org_lower = result.ip_info.org.lower()
        for brand in KNOWN_VPN_BRANDS:
            if brand.lower() in org_lower:
                result.is_vpn = True
                result.vpn_type = f"{brand} VPN"
                result.add(DetectionMethod.VPN_BRAND, f"Known VPN provider: {brand}", VPN_BRAND_WEIGHT)
                return

    # ── 8. CDN misfire suppression ──────────────────────────────────────────

    def _suppress_cdn_misfire(self, result: _DetectionDraft):
        score = result.confidence
        if not (result.is_cdn and result.is_proxy and score < CDN_SUPPRESSION_THRESHOLD):
            return
        result.is_proxy = False
        result.proxy_type = None
        result.add(DetectionMethod.CDN_SUPPRESSION,
                   "CDN false positive suppressed, no real proxy detected", -score)
        logger.debug("Suppressed low-confidence (%d) proxy verdict behind CDN", score)

    # ── 9. Label precedence ─────────────────────────────────────────────────

    @staticmethod
    def _finalize_labels(result: _DetectionDraft):
        if result.is_tor:
            result.vpn_type = LABEL_TOR
            result.proxy_type = LABEL_TOR
        elif result.is_vpn and not result.is_proxy:
            result.proxy_type = result.vpn_type


def classify(ip: Union[IpAddress, str], signals: RequestSignals,
             intelligence: Optional[IpIntelligenceClient] = None,
             config: Optional[ClientTraceConfig] = None) -> DetectionResult:
    """One-shot classification. A client created here is closed before returning."""
    config = config or ClientTraceConfig()
    if intelligence is not None or not config.enable_lookup:
        return AnonymityClassifier(intelligence, config).classify(ip, signals)
    with IpIntelligenceClient(config) as client:
        return AnonymityClassifier(client, config).classify(ip, signals)
