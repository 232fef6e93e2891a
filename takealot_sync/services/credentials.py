"""Credential store: the only place integration records and API keys change.

Reads always come from the integration record. There is no process-wide key
cache, so a key updated through :meth:`CredentialStore.update_integration`
is used by the very next sync.
"""

from __future__ import annotations

import warnings
from typing import Iterable

from ..domain.errors import InvalidRequest, NotFound, Unauthenticated, Unauthorized
from ..domain.models import (
    SCHEDULE_LABELS,
    Integration,
    IntegrationStatus,
    SyncStrategy,
)
from ..infrastructure.db.repositories import (
    DuplicateIntegrationError,
    IntegrationRepository,
)
from .base import BaseService


def _require_user(user_id: str | None) -> str:
    if not user_id or not str(user_id).strip():
        raise Unauthenticated("no user context")
    return str(user_id)


def _validate_strategies(strategies: Iterable[SyncStrategy]) -> list[SyncStrategy]:
    labels = set(SCHEDULE_LABELS.values())
    checked: list[SyncStrategy] = []
    seen: set[str] = set()
    for strategy in strategies:
        if not strategy.strategy_id:
            raise InvalidRequest("strategy_id is required")
        if strategy.strategy_id in seen:
            raise InvalidRequest(f"duplicate strategy_id '{strategy.strategy_id}'")
        if strategy.cron_label is not None and strategy.cron_label not in labels:
            raise InvalidRequest(f"unknown cron label '{strategy.cron_label}'")
        if strategy.cron_enabled and strategy.cron_label is None:
            raise InvalidRequest(
                f"strategy '{strategy.strategy_id}' is enabled without a cron label"
            )
        if strategy.max_items is not None and strategy.max_items < 1:
            raise InvalidRequest("max_items must be positive")
        seen.add(strategy.strategy_id)
        checked.append(strategy)
    return checked


class CredentialStore(BaseService):
    """Resolve and manage per-user marketplace integrations."""

    def _load(self, repo: IntegrationRepository, integration_id: int) -> Integration | None:
        row = repo.get(integration_id)
        if row is None:
            return None
        return Integration.from_row(row, tuple(repo.list_strategies(integration_id)))

    def _owned(
        self, repo: IntegrationRepository, user_id: str, integration_id: int
    ) -> Integration:
        integration = self._load(repo, integration_id)
        if integration is None:
            raise NotFound(f"integration {integration_id} does not exist")
        if integration.user_id != user_id:
            raise Unauthorized(f"integration {integration_id} belongs to another user")
        return integration

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def resolve_integration(
        self, user_id: str | None, integration_id: int | None = None
    ) -> Integration:
        """Return the integration a sync for ``user_id`` should use.

        Raises:
            Unauthenticated: If there is no user.
            Unauthorized: If the user has no integration, or does not own
                ``integration_id``.
            NotFound: If ``integration_id`` does not exist.
        """
        user = _require_user(user_id)

        def _resolve(conn) -> Integration:
            repo = IntegrationRepository(conn)
            if integration_id is not None:
                return self._owned(repo, user, integration_id)
            row = repo.get_for_user(user)
            if row is None:
                raise Unauthorized(f"user '{user}' has no Takealot integration")
            return Integration.from_row(row, tuple(repo.list_strategies(int(row["id"]))))

        return self._with_connection(_resolve)

    def resolve_key(self, user_id: str | None, integration_id: int) -> str:
        """Return the API key stored on the integration.

        Raises:
            Unauthenticated: If there is no user.
            NotFound: If the integration or its key does not exist.
            Unauthorized: If the integration belongs to another user.
        """
        integration = self.resolve_integration(user_id, integration_id)
        if not integration.api_key:
            raise NotFound(f"integration {integration.id} has no API key")
        return integration.api_key

    def get_integration(self, user_id: str | None, integration_id: int) -> Integration:
        return self.resolve_integration(user_id, integration_id)

    def list_integrations(self, user_id: str | None = None) -> list[Integration]:
        """List integrations for one user, or all of them when ``user_id`` is None."""

        def _list(conn) -> list[Integration]:
            repo = IntegrationRepository(conn)
            return [
                Integration.from_row(row, tuple(repo.list_strategies(int(row["id"]))))
                for row in repo.list(user_id)
            ]

        return self._with_connection(_list)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_integration(
        self,
        user_id: str | None,
        name: str,
        api_key: str | None,
        *,
        status: IntegrationStatus = IntegrationStatus.ACTIVE,
    ) -> Integration:
        user = _require_user(user_id)
        if not name or not name.strip():
            raise InvalidRequest("integration name is required")

        def _create(conn) -> Integration:
            repo = IntegrationRepository(conn)
            try:
                new_id = repo.create(
                    user, name.strip(), api_key or None, status=IntegrationStatus(status).value
                )
            except DuplicateIntegrationError as exc:
                raise InvalidRequest(str(exc)) from exc
            self._logger.info("Created integration %s for user %s", new_id, user)
            return self._owned(repo, user, new_id)

        return self._with_connection(_create)

    def update_integration(
        self,
        user_id: str | None,
        integration_id: int,
        *,
        name: str | None = None,
        api_key: str | None = None,
        status: IntegrationStatus | str | None = None,
    ) -> Integration:
        user = _require_user(user_id)
        if name is not None and not name.strip():
            raise InvalidRequest("integration name cannot be empty")
        try:
            status_value = IntegrationStatus(status).value if status is not None else None
        except ValueError as exc:
            raise InvalidRequest(f"unknown status '{status}'") from exc

        def _update(conn) -> Integration:
            repo = IntegrationRepository(conn)
            self._owned(repo, user, integration_id)
            repo.update(
                integration_id,
                name=name.strip() if name is not None else None,
                api_key=api_key or None,
                status=status_value,
            )
            self._logger.info("Updated integration %s", integration_id)
            return self._owned(repo, user, integration_id)

        return self._with_connection(_update)

    def delete_integration(self, user_id: str | None, integration_id: int) -> None:
        user = _require_user(user_id)

        def _delete(conn) -> None:
            repo = IntegrationRepository(conn)
            self._owned(repo, user, integration_id)
            repo.delete(integration_id)
            self._logger.info("Deleted integration %s", integration_id)

        self._with_connection(_delete)

    def set_strategies(
        self,
        user_id: str | None,
        integration_id: int,
        strategies: Iterable[SyncStrategy],
    ) -> Integration:
        """Replace the scheduled sync strategies of an integration."""
        user = _require_user(user_id)
        checked = _validate_strategies(strategies)

        def _set(conn) -> Integration:
            repo = IntegrationRepository(conn)
            self._owned(repo, user, integration_id)
            repo.replace_strategies(integration_id, checked)
            return self._owned(repo, user, integration_id)

        return self._with_connection(_set)

    def save_api_key(self, user_id: str | None, api_key: str) -> None:
        """Deprecated: keys live on the integration record.

        Kept for old callers; it validates the user and then does nothing.
        Use :meth:`update_integration` instead.
        """
        _require_user(user_id)
        warnings.warn(
            "save_api_key is deprecated; set the key on the integration with "
            "update_integration() instead",
            DeprecationWarning,
            stacklevel=2,
        )
        self._logger.warning("save_api_key called for user %s; ignoring", user_id)
