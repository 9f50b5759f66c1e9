# ─────────────────────────────────────────────────────────────────────────────
# Tests — client identity derivation
# ─────────────────────────────────────────────────────────────────────────────

from types import SimpleNamespace

import pytest
from starlette.datastructures import State
from starlette.requests import Request

from gateway.identity import (
    UNKNOWN_CLIENT,
    ClientIdentityResolver,
    get_client_id,
    parse_trusted_proxies,
)


def _request(peer: str | None, forwarded: str | None = None, app=None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded is not None else []
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/chat",
        "query_string": b"",
        "headers": headers,
        "client": (peer, 50000) if peer else None,
    }
    if app is not None:
        scope["app"] = app
    return Request(scope)


class TestParseTrustedProxies:
    def test_parses_ips_and_cidrs(self):
        networks = parse_trusted_proxies("10.0.0.1, 192.168.0.0/16,,::1")
        assert [str(n) for n in networks] == ["10.0.0.1/32", "192.168.0.0/16", "::1/128"]

    def test_skips_invalid_entries(self):
        assert [str(n) for n in parse_trusted_proxies("nope,10.0.0.0/8")] == ["10.0.0.0/8"]

    def test_accepts_iterables(self):
        assert len(parse_trusted_proxies(["10.0.0.1", "10.0.0.2"])) == 2


class TestResolverWithoutTrustedProxies:
    @pytest.fixture
    def resolver(self) -> ClientIdentityResolver:
        return ClientIdentityResolver("")

    def test_uses_peer_address(self, resolver):
        assert resolver(_request("203.0.113.7")) == "203.0.113.7"

    def test_ignores_spoofed_forwarded_for(self, resolver):
        request = _request("203.0.113.7", forwarded="1.1.1.1")
        assert resolver(request) == "203.0.113.7"

    def test_falls_back_to_forwarded_without_peer(self, resolver):
        assert resolver(_request(None, forwarded="198.51.100.1, 10.0.0.1")) == "198.51.100.1"

    def test_unknown_without_peer_or_header(self, resolver):
        assert resolver(_request(None)) == UNKNOWN_CLIENT


class TestResolverBehindTrustedProxy:
    @pytest.fixture
    def resolver(self) -> ClientIdentityResolver:
        return ClientIdentityResolver("10.0.0.0/8")

    def test_trusted_peer_uses_forwarded_client(self, resolver):
        request = _request("10.0.0.5", forwarded="198.51.100.23")
        assert resolver(request) == "198.51.100.23"

    def test_takes_rightmost_untrusted_hop(self, resolver):
        # Client prepended a fake hop; the real one was appended by our proxy.
        request = _request("10.0.0.5", forwarded="6.6.6.6, 198.51.100.23, 10.0.0.9")
        assert resolver(request) == "198.51.100.23"

    def test_all_hops_trusted_uses_first(self, resolver):
        request = _request("10.0.0.5", forwarded="10.1.1.1, 10.2.2.2")
        assert resolver(request) == "10.1.1.1"

    def test_trusted_peer_without_header_uses_peer(self, resolver):
        assert resolver(_request("10.0.0.5")) == "10.0.0.5"

    def test_non_ip_peer_is_never_trusted(self, resolver):
        request = _request("testclient", forwarded="198.51.100.23")
        assert resolver(request) == "testclient"


class TestGetClientId:
    def test_uses_resolver_from_app_state(self):
        state = State({"identity_resolver": lambda request: "resolved"})
        app = SimpleNamespace(state=state)
        assert get_client_id(_request("203.0.113.7", app=app)) == "resolved"

    def test_falls_back_to_peer(self):
        app = SimpleNamespace(state=State())
        assert get_client_id(_request("203.0.113.7", app=app)) == "203.0.113.7"
