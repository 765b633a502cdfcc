"""ClientTrace configuration: one dataclass shared by every component."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ClientTraceConfig:
    """
    Runtime settings for the engine.

    Example:
        ClientTraceConfig()                          # defaults
        ClientTraceConfig(cache_dir="/var/cache/ct") # move the geo cache
        ClientTraceConfig(enable_lookup=False)       # headers only, no network
    """

    # ip-api.com endpoint ({ip} is substituted)
    ip_api_url:        str   = "http://ip-api.com/json/{ip}"
    user_agent:        str   = "ClientTrace/1.0"

    # Requests must fail fast: they run inline in the request path
    connect_timeout:   float = 3.0
    read_timeout:      float = 5.0

    # Geolocation cache
    cache_dir:         str   = "ip_cache"
    cache_ttl:         int   = 86_400       # 24 hours

    # Skip the intelligence lookup once header evidence alone exceeds this.
    # None always performs the lookup.
    skip_lookup_above: Optional[int] = 50

    # False disables every outbound call (classification uses headers only)
    enable_lookup:     bool  = True

    @property
    def timeout(self):
        return (self.connect_timeout, self.read_timeout)
