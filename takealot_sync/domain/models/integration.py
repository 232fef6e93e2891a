"""Marketplace integration and its scheduled sync strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

MARKETPLACE_TAKEALOT = "takealot"


class IntegrationStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def mask_api_key(api_key: str | None) -> str | None:
    """Return a display-safe version of an API key."""
    if not api_key:
        return None
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"


@dataclass(frozen=True)
class SyncStrategy:
    """A scheduled sync rule attached to an integration."""

    strategy_id: str
    description: str = ""
    cron_label: str | None = None
    cron_enabled: bool = False
    max_items: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SyncStrategy":
        return cls(
            strategy_id=row["strategy_id"],
            description=row.get("description") or "",
            cron_label=row.get("cron_label"),
            cron_enabled=bool(row.get("cron_enabled")),
            max_items=row.get("max_items"),
        )


@dataclass(frozen=True)
class Integration:
    """A user's link to a marketplace account, holding the authoritative key."""

    id: int
    user_id: str
    name: str
    api_key: str | None = None
    marketplace: str = MARKETPLACE_TAKEALOT
    status: IntegrationStatus = IntegrationStatus.ACTIVE
    created_at: str | None = None
    updated_at: str | None = None
    strategies: tuple[SyncStrategy, ...] = field(default_factory=tuple)

    @property
    def is_active(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        strategies: tuple[SyncStrategy, ...] = (),
    ) -> "Integration":
        return cls(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            name=row.get("name") or "",
            api_key=row.get("api_key"),
            marketplace=row.get("marketplace") or MARKETPLACE_TAKEALOT,
            status=IntegrationStatus(row.get("status") or "active"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            strategies=strategies,
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Serialise without exposing the raw API key."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "marketplace": self.marketplace,
            "status": self.status.value,
            "api_key_masked": mask_api_key(self.api_key),
            "has_api_key": bool(self.api_key),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "strategies": [
                {
                    "strategy_id": s.strategy_id,
                    "description": s.description,
                    "cron_label": s.cron_label,
                    "cron_enabled": s.cron_enabled,
                    "max_items": s.max_items,
                }
                for s in self.strategies
            ],
        }
