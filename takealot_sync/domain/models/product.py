"""Takealot offer snapshot and normalisation from raw seller-API payloads."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

DEFAULT_CURRENCY = "ZAR"
UNKNOWN_AVAILABILITY = "unknown"

# The seller API identifies offers by TSIN first, then offer id, then SKU.
ID_FIELDS = ("tsin_id", "offer_id", "sku")


class UnidentifiableOffer(ValueError):
    """Raised when a raw offer carries none of the identifier fields."""


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_price(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, Mapping):
        # some payloads nest prices as {"amount": ..., "currency": ...}
        value = value.get("amount")
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class TakealotProduct:
    """Normalized snapshot of one marketplace offer.

    Snapshots are never mutated; a later sync supersedes the stored copy.
    """

    id: str
    title: str
    price: float
    currency: str = DEFAULT_CURRENCY
    availability: str = UNKNOWN_AVAILABILITY
    url: str = ""

    @classmethod
    def from_offer(cls, raw: Mapping[str, Any]) -> "TakealotProduct":
        """Build a product from one element of the ``offers`` array.

        Raises:
            UnidentifiableOffer: If the offer has no tsin_id, offer_id or sku.
        """
        product_id = _first_present(raw, *ID_FIELDS)
        if product_id is None:
            raise UnidentifiableOffer("offer has no tsin_id, offer_id or sku")

        currency = raw.get("currency")
        price = _first_present(raw, "selling_price", "price")
        if isinstance(price, Mapping) and not currency:
            currency = price.get("currency")

        return cls(
            id=str(product_id),
            title=str(raw.get("title") or ""),
            price=_to_price(price),
            currency=str(currency or DEFAULT_CURRENCY),
            availability=str(
                _first_present(raw, "status", "availability") or UNKNOWN_AVAILABILITY
            ),
            url=str(_first_present(raw, "offer_url", "url") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
