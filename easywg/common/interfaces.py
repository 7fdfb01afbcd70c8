"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from typing import Protocol

from easywg.common.models import (
    Server,
    Subscription,
    SubscriptionPlan,
    User,
)


class IRemoteSession(Protocol):
    """Protocol for a connected, single-stream remote shell session."""

    def run(self, command: str, *, sudo: bool = True, secret: bool = False) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def close(self) -> None: ...

    def __enter__(self) -> IRemoteSession: ...

    def __exit__(self, exc_type, exc, tb) -> None: ...


class INotifier(Protocol):
    """Protocol for the notification sink."""

    def notify(self, destination_id: int, text: str) -> None: ...


class ISubscriptionRepository(Protocol):
    """Protocol for the persistence operations the core consumes."""

    def get_active_subscriptions(self) -> list[Subscription]: ...

    def update_subscription(self, subscription: Subscription) -> None: ...

    def get_server_by_id(self, server_id: int) -> Server: ...

    def get_user_by_id(self, user_id: int) -> User: ...

    def get_subscription_plan_by_id(self, plan_id: int) -> SubscriptionPlan: ...

    def get_all_admins(self) -> list[User]: ...

    def update_server(self, server: Server) -> None: ...


class IRepository(ISubscriptionRepository, Protocol):
    """Protocol for the full persistence layer used by administrative flows."""

    def get_all_servers(self) -> list[Server]: ...

    def add_server(self, server: Server) -> Server: ...

    def add_user(self, user: User) -> User: ...

    def add_subscription_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan: ...

    def add_subscription(self, subscription: Subscription) -> Subscription: ...

    def get_subscription_by_id(self, subscription_id: int) -> Subscription: ...
