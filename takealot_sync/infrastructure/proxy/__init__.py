"""Outbound egress through a rotating proxy pool."""

from .pool import DIRECT_LABEL, EndpointState, ProxyEndpoint, ProxyPool
from .webshare import WebshareClient, to_endpoint

__all__ = [
    "DIRECT_LABEL",
    "EndpointState",
    "ProxyEndpoint",
    "ProxyPool",
    "WebshareClient",
    "to_endpoint",
]
