"""Tests for client identity resolution: header precedence and normalization."""

from starlette.datastructures import Headers

from apiguard.modules.identity import FALLBACK_IDENTITY, normalize_ip, resolve_client_ip


class TestPrecedence:
    def test_forwarded_for_first_hop_is_used(self):
        headers = {"X-Forwarded-For": " 10.0.0.1 , 10.0.0.2, 10.0.0.3"}
        assert resolve_client_ip(headers, "192.168.1.1") == "10.0.0.1"

    def test_forwarded_for_beats_real_ip(self):
        headers = {"x-forwarded-for": "10.0.0.1", "x-real-ip": "10.0.0.9"}
        assert resolve_client_ip(headers) == "10.0.0.1"

    def test_real_ip_beats_peer(self):
        assert resolve_client_ip({"X-Real-IP": "10.0.0.9"}, "192.168.1.1") == "10.0.0.9"

    def test_peer_when_no_headers(self):
        assert resolve_client_ip({}, "192.168.1.1") == "192.168.1.1"

    def test_fallback_when_nothing_is_known(self):
        assert resolve_client_ip({}) == FALLBACK_IDENTITY
        assert resolve_client_ip({}, None) == "0.0.0.0"

    def test_blank_forwarded_for_falls_through(self):
        headers = {"x-forwarded-for": " , 1.2.3.4", "x-real-ip": "5.6.7.8"}
        assert resolve_client_ip(headers) == "5.6.7.8"

    def test_blank_peer_falls_back(self):
        assert resolve_client_ip({}, "  ") == FALLBACK_IDENTITY

    def test_starlette_headers(self):
        headers = Headers({"x-real-ip": "9.9.9.9"})
        assert resolve_client_ip(headers, "1.1.1.1") == "9.9.9.9"


class TestNormalization:
    def test_ipv6_loopback(self):
        assert normalize_ip("::1") == "127.0.0.1"

    def test_mapped_loopback(self):
        assert normalize_ip("::ffff:127.0.0.1") == "127.0.0.1"

    def test_mapped_ipv4_prefix_is_stripped(self):
        assert normalize_ip("::ffff:10.1.2.3") == "10.1.2.3"
        assert normalize_ip("::FFFF:10.1.2.3") == "10.1.2.3"

    def test_plain_ipv6_is_untouched(self):
        assert normalize_ip("2001:db8::1") == "2001:db8::1"

    def test_normalization_applies_to_headers_and_peer(self):
        assert resolve_client_ip({"x-forwarded-for": "::ffff:192.168.0.5, 10.0.0.1"}) == "192.168.0.5"
        assert resolve_client_ip({}, "::1") == "127.0.0.1"
