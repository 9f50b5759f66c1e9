# Client identity derivation for quota accounting.
# The direct peer address wins; X-Forwarded-For is only believed when the
# peer is a configured trusted proxy, since any client can set the header.

import ipaddress
from collections.abc import Callable, Iterable

import structlog
from starlette.requests import Request

logger = structlog.get_logger(__name__)

IdentityResolver = Callable[[Request], str]

UNKNOWN_CLIENT = "unknown"

_Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_trusted_proxies(value: str | Iterable[str]) -> list[_Network]:
    """Parse comma-separated IPs / CIDRs. Invalid entries are logged and skipped."""
    entries = value.split(",") if isinstance(value, str) else value
    networks: list[_Network] = []
    for entry in entries:
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("trusted_proxy_invalid", entry=entry)
    return networks


class ClientIdentityResolver:
    """Resolve the quota key for a request."""

    def __init__(self, trusted_proxies: str | Iterable[str] = "") -> None:
        self._trusted = parse_trusted_proxies(trusted_proxies)

    def is_trusted(self, address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(ip in network for network in self._trusted)

    def __call__(self, request: Request) -> str:
        peer = request.client.host if request.client else None
        header = request.headers.get("x-forwarded-for", "")
        forwarded = [hop.strip() for hop in header.split(",") if hop.strip()]

        if not peer:
            return forwarded[0] if forwarded else UNKNOWN_CLIENT

        if not forwarded or not self.is_trusted(peer):
            return peer

        # Proxies append the address they received from, so walk right to left
        # and stop at the first hop we did not configure ourselves.
        for hop in reversed(forwarded):
            if not self.is_trusted(hop):
                return hop
        return forwarded[0]


def get_client_id(request: Request) -> str:
    """Key function bound to the app's resolver (falls back to the peer address)."""
    resolver: IdentityResolver | None = getattr(request.app.state, "identity_resolver", None)
    if resolver is None:
        return request.client.host if request.client else UNKNOWN_CLIENT
    return resolver(request)
