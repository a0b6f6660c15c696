"""Tests for visitor context extraction (IP, country, device, UTM)."""

from unittest.mock import MagicMock

import pytest

from app.core.visitor import country_from_headers, get_real_ip, parse_device, parse_int, parse_utm

CHROME_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 13_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/13.0.3 Mobile/15E148 Safari/604.1"
)


def _request(headers=None, host="198.51.100.1"):
    request = MagicMock()
    request.headers = headers or {}
    request.client = MagicMock(host=host) if host else None
    return request


class TestRealIp:
    def test_first_public_forwarded_hop(self):
        req = _request({"x-forwarded-for": "10.0.0.2, 192.168.1.1, 203.0.113.9"})
        assert get_real_ip(req) == "203.0.113.9"

    def test_all_private_falls_back_to_first(self):
        req = _request({"x-forwarded-for": "10.0.0.2, 192.168.1.1"})
        assert get_real_ip(req) == "10.0.0.2"

    def test_socket_peer_without_header(self):
        assert get_real_ip(_request()) == "198.51.100.1"

    def test_no_client(self):
        assert get_real_ip(_request(host=None)) == "0.0.0.0"


class TestCountry:
    def test_cloudflare_header_wins(self):
        assert country_from_headers({"cf-ipcountry": "de", "x-geo-country": "FR"}) == "DE"

    def test_vercel_and_generic(self):
        assert country_from_headers({"x-vercel-ip-country": "us"}) == "US"
        assert country_from_headers({"x-geo-country": "in"}) == "IN"

    def test_missing(self):
        assert country_from_headers({}) is None


class TestDevice:
    def test_desktop_chrome(self):
        info = parse_device(CHROME_DESKTOP)
        assert info.device == "desktop"
        assert info.browser == "Chrome"

    def test_mobile(self):
        assert parse_device(IPHONE).device == "mobile"

    def test_tablet(self):
        assert parse_device(IPAD).device == "tablet"

    def test_empty_ua(self):
        info = parse_device("")
        assert info.device == "desktop"
        assert info.browser == "Unknown"


class TestUtm:
    def test_present_keys_only(self):
        assert parse_utm({"utm_source": "news", "utm_campaign": "spring"}) == {
            "source": "news",
            "campaign": "spring",
        }

    def test_truncated_to_64(self):
        assert parse_utm({"utm_medium": "m" * 100}) == {"medium": "m" * 64}

    def test_none(self):
        assert parse_utm({}) == {}


@pytest.mark.parametrize("value,expected", [("120", 120), ("-330", -330), ("abc", 0), (None, 0), ("", 0)])
def test_parse_int(value, expected):
    assert parse_int(value) == expected
