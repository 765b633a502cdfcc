"""
USER-AGENT PARSER
Browser / OS / device fingerprint from a raw User-Agent header

Pattern tables only, no external database. Order matters in every ladder:
Chromium derivatives (Edge, Opera) must be tested before plain Chrome, and
Safari only counts when no Chrome token is present.
"""

import re
from dataclasses import asdict, dataclass
from typing import Optional

UNKNOWN = "Unknown"

BOT_TOKENS = ["bot", "crawler", "spider", "scraper", "googlebot", "bingbot", "slurp", "duckduckbot"]

WINDOWS_VERSIONS = {
    "10.0": "Windows 10/11",
    "6.3":  "Windows 8.1",
    "6.2":  "Windows 8",
    "6.1":  "Windows 7",
    "6.0":  "Windows Vista",
    "5.1":  "Windows XP",
}

DEVICE_DESKTOP = "Desktop"
DEVICE_MOBILE  = "Mobile"
DEVICE_TABLET  = "Tablet"

_CHROME      = re.compile(r"Chrome/([\d.]+)")
_EDGE        = re.compile(r"Edg/([\d.]+)")
_OPERA       = re.compile(r"OPR/([\d.]+)")
_FIREFOX     = re.compile(r"Firefox/([\d.]+)")
_SAFARI      = re.compile(r"Safari/([\d.]+)")
_SAFARI_VER  = re.compile(r"Version/([\d.]+)")
_MSIE        = re.compile(r"MSIE ([\d.]+)")
_TRIDENT     = re.compile(r"Trident/.*rv:([\d.]+)")

_WINDOWS     = re.compile(r"Windows NT ([\d.]+)")
_MACOS       = re.compile(r"Mac OS X ([\d_]+)")
_ANDROID     = re.compile(r"Android ([\d.]+)")
_IOS         = re.compile(r"(iPhone|iPad|iPod).*OS ([\d_]+)")
_ANDROID_DEV = re.compile(r"(SM-\w+|Pixel \d+|MI \d+|OnePlus|Huawei|Xiaomi|OPPO|Vivo)")
_APPLE_DEV   = re.compile(r"(iPhone\d+,\d+|iPad\d+,\d+)")
_LINUX_DIST  = re.compile(r"(Ubuntu|Debian|CentOS|Fedora|Red Hat|SUSE)")


@dataclass
class UserAgentInfo:
    browser_name:    str  = UNKNOWN
    browser_version: str  = UNKNOWN
    os_name:         str  = UNKNOWN
    os_version:      str  = UNKNOWN
    device_type:     str  = UNKNOWN
    device_brand:    str  = UNKNOWN
    device_model:    str  = UNKNOWN
    is_mobile:       bool = False
    is_tablet:       bool = False
    is_bot:          bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        browser = self.browser_name
        if self.browser_version != UNKNOWN:
            browser += f" {self.browser_version}"
        os_part = self.os_name
        if self.os_version != UNKNOWN and self.os_version not in self.os_name:
            os_part += f" {self.os_version}"
        return f"{browser} on {os_part} ({self.device_type})"


def parse_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    info = UserAgentInfo()
    if not user_agent:
        return info

    lowered = user_agent.lower()
    if any(token in lowered for token in BOT_TOKENS):
        info.is_bot = True
        info.browser_name = "Bot/crawler"

    _parse_browser(user_agent, info)
    _parse_os(user_agent, info)

    # A Mobile token outranks is_tablet: iPad Safari sends "Mobile/15E148" and
    # is reported as Mobile with is_tablet still True
    if info.is_mobile or "mobile" in lowered:
        info.device_type = DEVICE_MOBILE
    elif info.is_tablet:
        info.device_type = DEVICE_TABLET
    else:
        info.device_type = DEVICE_DESKTOP
    return info


def _parse_browser(ua: str, info: UserAgentInfo):
    m = _CHROME.search(ua)
    if m:
        lowered = ua.lower()
        if "edg" in lowered:
            info.browser_name = "Microsoft Edge"
            edge = _EDGE.search(ua)
            if edge:
                info.browser_version = edge.group(1)
        elif "opr" in lowered:
            info.browser_name = "Opera"
            opera = _OPERA.search(ua)
            if opera:
                info.browser_version = opera.group(1)
        else:
            info.browser_name = "Google Chrome"
            info.browser_version = m.group(1)
        return

    m = _FIREFOX.search(ua)
    if m:
        info.browser_name = "Mozilla Firefox"
        info.browser_version = m.group(1)
        return

    if _SAFARI.search(ua) and "chrome" not in ua.lower():
        info.browser_name = "Apple Safari"
        ver = _SAFARI_VER.search(ua)
        if ver:
            info.browser_version = ver.group(1)
        return

    m = _TRIDENT.search(ua) or _MSIE.search(ua)
    if m:
        info.browser_name = "Internet Explorer"
        info.browser_version = m.group(1)


def _parse_os(ua: str, info: UserAgentInfo):
    m = _WINDOWS.search(ua)
    if m:
        nt = m.group(1)
        info.os_name = WINDOWS_VERSIONS.get(nt, f"Windows NT {nt}")
        info.os_version = nt
        return

    m = _MACOS.search(ua)
    if m:
        info.os_name = "macOS"
        info.os_version = m.group(1).replace("_", ".")
        return

    m = _ANDROID.search(ua)
    if m:
        info.os_name = "Android"
        info.os_version = m.group(1)
        info.is_mobile = True
        dev = _ANDROID_DEV.search(ua)
        if dev:
            info.device_model = dev.group(1)
        return

    m = _IOS.search(ua)
    if m:
        info.os_name = "iOS"
        info.os_version = m.group(2).replace("_", ".")
        info.device_brand = "Apple"
        if "ipad" in ua.lower():
            info.is_tablet = True
        else:
            info.is_mobile = True
        dev = _APPLE_DEV.search(ua)
        if dev:
            info.device_model = dev.group(1)
        return

    if "linux" in ua.lower():
        distro = _LINUX_DIST.search(ua)
        info.os_name = distro.group(1) if distro else "Linux"
