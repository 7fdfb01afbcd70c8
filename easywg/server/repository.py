"""
JSON-file repository for servers, users, plans and subscriptions.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from easywg.common.exceptions import NotFoundError
from easywg.common.models import (
    Server,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    utcnow,
)

from .persistence import DataPersistence

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class JsonRepository:
    """Keeps every table in memory and rewrites the file on each change.

    Callers always get copies, so mutating a returned record has no effect
    until it is passed back through an ``update_*`` method.
    """

    def __init__(self, file_path: Path | str):
        self.file_path = Path(file_path)
        self._lock = threading.RLock()
        data = DataPersistence.load(self.file_path)
        self.servers = self._index(Server, data["servers"])
        self.users = self._index(User, data["users"])
        self.plans = self._index(SubscriptionPlan, data["plans"])
        self.subscriptions = self._index(Subscription, data["subscriptions"])
        logger.debug(
            "Loaded %d servers, %d subscriptions from %s",
            len(self.servers),
            len(self.subscriptions),
            self.file_path,
        )

    @staticmethod
    def _index(model: type[M], rows: list[dict]) -> dict[int, M]:
        records = (model.model_validate(row) for row in rows)
        return {record.id: record for record in records}  # type: ignore[attr-defined]

    def _save(self) -> None:
        DataPersistence.save(
            self.file_path,
            {
                "servers": list(self.servers.values()),
                "users": list(self.users.values()),
                "plans": list(self.plans.values()),
                "subscriptions": list(self.subscriptions.values()),
            },
        )

    def _insert(self, table: dict[int, M], record: M) -> M:
        with self._lock:
            stored = record.model_copy(deep=True)
            if not stored.id:  # type: ignore[attr-defined]
                stored.id = max(table, default=0) + 1  # type: ignore[attr-defined]
            table[stored.id] = stored  # type: ignore[attr-defined]
            self._save()
            return stored.model_copy(deep=True)

    @staticmethod
    def _get(table: dict[int, M], record_id: int, kind: str) -> M:
        try:
            return table[record_id].model_copy(deep=True)
        except KeyError:
            msg = f"{kind} #{record_id} not found"
            raise NotFoundError(msg) from None

    # Servers

    def add_server(self, server: Server) -> Server:
        return self._insert(self.servers, server)

    def get_server_by_id(self, server_id: int) -> Server:
        with self._lock:
            return self._get(self.servers, server_id, "Server")

    def get_all_servers(self) -> list[Server]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self.servers.values()]

    def update_server(self, server: Server) -> None:
        with self._lock:
            if server.id not in self.servers:
                msg = f"Server #{server.id} not found"
                raise NotFoundError(msg)
            server.updated_at = utcnow()
            self.servers[server.id] = server.model_copy(deep=True)
            self._save()

    # Users and plans

    def add_user(self, user: User) -> User:
        return self._insert(self.users, user)

    def get_user_by_id(self, user_id: int) -> User:
        with self._lock:
            return self._get(self.users, user_id, "User")

    def get_all_admins(self) -> list[User]:
        with self._lock:
            return [u.model_copy() for u in self.users.values() if u.is_admin]

    def add_subscription_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        return self._insert(self.plans, plan)

    def get_subscription_plan_by_id(self, plan_id: int) -> SubscriptionPlan:
        with self._lock:
            return self._get(self.plans, plan_id, "Subscription plan")

    # Subscriptions

    def add_subscription(self, subscription: Subscription) -> Subscription:
        return self._insert(self.subscriptions, subscription)

    def get_subscription_by_id(self, subscription_id: int) -> Subscription:
        with self._lock:
            return self._get(self.subscriptions, subscription_id, "Subscription")

    def get_active_subscriptions(self) -> list[Subscription]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self.subscriptions.values()
                if s.status == SubscriptionStatus.ACTIVE
            ]

    def update_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription.id not in self.subscriptions:
                msg = f"Subscription #{subscription.id} not found"
                raise NotFoundError(msg)
            subscription.updated_at = utcnow()
            self.subscriptions[subscription.id] = subscription.model_copy(deep=True)
            self._save()
