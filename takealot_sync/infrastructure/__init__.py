"""Infrastructure layer.

Holds adapters for HTTP, persistence, proxy egress and observability.
"""

from . import db, http, observability, proxy

__all__ = ["db", "http", "observability", "proxy"]
