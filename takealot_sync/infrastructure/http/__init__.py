"""HTTP adapters for the Takealot seller API."""

from .client import (
    MAX_PAGE_SIZE,
    TAKEALOT_BASE_URL,
    OfferPage,
    TakealotApiClient,
)

__all__ = [
    "MAX_PAGE_SIZE",
    "OfferPage",
    "TAKEALOT_BASE_URL",
    "TakealotApiClient",
]
