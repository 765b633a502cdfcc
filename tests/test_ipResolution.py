"""Client IP resolution chain."""

from headerSignals import RequestSignals
from ipResolution import CDN_IP_CHAIN, resolve, resolve_client_ip


# ---------------------------------------------------------------------------
# CDN headers
# ---------------------------------------------------------------------------


class TestCdnHeaders:
    def test_cdn_ipv4_short_circuits_everything(self):
        signals = RequestSignals(
            cf_connecting_ip="198.51.100.7",
            x_forwarded_for="203.0.113.9",
            x_real_ip="203.0.113.10",
            remote_addr="8.8.8.8",
        )
        result = resolve(signals)
        assert result.client_ip.text == "198.51.100.7"
        assert result.source == "CF-Connecting-IP"

    def test_chain_order(self):
        assert [name for name, _ in CDN_IP_CHAIN] == [
            "CF-Connecting-IP", "Fastly-Client-IP", "True-Client-IP", "CloudFront-Viewer-Address",
        ]

    def test_later_cdn_ipv4_beats_earlier_ipv6(self):
        signals = RequestSignals(cf_connecting_ip="2001:db8::1", true_client_ip="203.0.113.9")
        assert resolve_client_ip(signals).text == "203.0.113.9"

    def test_ipv6_only_cdn_header(self):
        signals = RequestSignals(cf_connecting_ip="2001:db8::1", remote_addr="172.16.0.3")
        result = resolve(signals)
        assert result.client_ip.text == "2001:db8::1"
        assert result.via_frontend

    def test_invalid_cdn_value_is_ignored(self):
        signals = RequestSignals(fastly_client_ip="not-an-ip", remote_addr="8.8.4.4")
        assert resolve_client_ip(signals).text == "8.8.4.4"

    def test_cloudfront_viewer_address_strips_port(self):
        assert resolve_client_ip(RequestSignals(cloudfront_viewer_address="203.0.113.9:46532")).text == "203.0.113.9"

    def test_cloudfront_viewer_address_ipv6_forms(self):
        bracketed = RequestSignals(cloudfront_viewer_address="[2001:db8::5]:443")
        bare = RequestSignals(cloudfront_viewer_address="2001:db8::5:443")
        assert resolve_client_ip(bracketed).text == "2001:db8::5"
        assert resolve_client_ip(bare).text == "2001:db8::5"


# ---------------------------------------------------------------------------
# Forwarding headers and the peer
# ---------------------------------------------------------------------------


class TestForwarding:
    def test_xff_first_public_entry(self):
        signals = RequestSignals(
            x_forwarded_for="10.0.0.5, 203.0.113.9, 198.51.100.2",
            remote_addr="10.0.0.1",
        )
        result = resolve(signals)
        assert result.client_ip.text == "203.0.113.9"
        assert result.via_frontend
        assert result.source == "X-Forwarded-For"

    def test_xff_prefers_ipv4_over_earlier_ipv6(self):
        signals = RequestSignals(x_forwarded_for="2001:db8::1, 203.0.113.9", remote_addr="10.0.0.1")
        assert resolve_client_ip(signals).text == "203.0.113.9"

    def test_xff_private_only_falls_back_to_peer(self):
        signals = RequestSignals(x_forwarded_for="10.0.0.5, 192.168.1.2", remote_addr="10.0.0.1")
        result = resolve(signals)
        assert result.client_ip.text == "10.0.0.1"
        assert result.source == "REMOTE_ADDR"

    def test_x_real_ip_ipv4_overrides_xff_ipv4(self):
        signals = RequestSignals(
            x_forwarded_for="203.0.113.9", x_real_ip="198.51.100.2", remote_addr="10.0.0.1",
        )
        assert resolve_client_ip(signals).text == "198.51.100.2"

    def test_x_real_ip_accepts_private_value(self):
        signals = RequestSignals(x_real_ip="192.168.5.5", remote_addr="10.0.0.1")
        assert resolve_client_ip(signals).text == "192.168.5.5"

    def test_private_peer_without_headers_is_the_answer(self):
        result = resolve(RequestSignals(remote_addr="192.168.1.20"))
        assert result.via_frontend
        assert result.client_ip.text == "192.168.1.20"

    def test_public_ipv4_peer_wins_over_forwarding_headers(self):
        signals = RequestSignals(x_forwarded_for="203.0.113.9", remote_addr="8.8.8.8")
        result = resolve(signals)
        assert result.client_ip.text == "8.8.8.8"
        assert not result.via_frontend

    def test_public_ipv6_peer_loses_to_forwarded_ipv4(self):
        signals = RequestSignals(x_forwarded_for="203.0.113.9", remote_addr="2001:db8::7")
        assert resolve_client_ip(signals).text == "203.0.113.9"

    def test_public_ipv6_peer_alone(self):
        assert resolve_client_ip(RequestSignals(remote_addr="2001:db8::7")).text == "2001:db8::7"

    def test_nothing_valid_defaults_to_loopback(self):
        result = resolve(RequestSignals(x_forwarded_for="unknown", remote_addr="garbage"))
        assert result.client_ip.text == "127.0.0.1"
        assert result.source == "default"
        assert not result.via_frontend

    def test_to_dict(self):
        result = resolve(RequestSignals(remote_addr="8.8.8.8"))
        assert result.to_dict() == {"client_ip": "8.8.8.8", "via_frontend": False, "source": "REMOTE_ADDR"}
