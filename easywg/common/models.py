"""
Pydantic models for domain records and request/response validation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from easywg.common.exceptions import InvalidStatusTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    BLOCKED = "blocked"
    REVOKED = "revoked"


# Expired and revoked are terminal.
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.EXPIRED,
            SubscriptionStatus.REVOKED,
            SubscriptionStatus.BLOCKED,
        }
    ),
    SubscriptionStatus.BLOCKED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.REVOKED}
    ),
    SubscriptionStatus.EXPIRED: frozenset(),
    SubscriptionStatus.REVOKED: frozenset(),
}


class Server(BaseModel):
    id: int = 0
    ip: str
    port: int = 22
    ssh_user: str = "root"
    ssh_password: str | None = Field(default=None, repr=False)
    ssh_key_path: str | None = None
    max_clients: int = Field(default=10, ge=0)
    current_clients: int = Field(default=0, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def has_capacity(self) -> bool:
        """Selection-time occupancy check."""
        return self.is_active and self.current_clients < self.max_clients


class SubscriptionPlan(BaseModel):
    id: int = 0
    name: str
    description: str = ""
    price: float = 0.0
    duration: int = Field(gt=0)  # days
    is_active: bool = True


class User(BaseModel):
    id: int = 0
    telegram_id: int
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        return self.username or f"ID: {self.telegram_id}"


class Subscription(BaseModel):
    id: int = 0
    user_id: int
    server_id: int
    plan_id: int
    start_date: datetime
    end_date: datetime
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    config_file_path: str = ""
    data_usage: int = 0  # bytes
    last_connection_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "start_date", "end_date", "last_connection_at", "created_at", "updated_at"
    )
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def transition_to(self, status: SubscriptionStatus) -> None:
        """Move to a new status, enforcing the lifecycle rules."""
        if status == self.status:
            return
        if status not in ALLOWED_TRANSITIONS[self.status]:
            msg = (
                f"Subscription #{self.id} cannot go from "
                f"'{self.status.value}' to '{status.value}'"
            )
            raise InvalidStatusTransitionError(msg)
        self.status = status
        self.updated_at = utcnow()


class ServerInfo(BaseModel):
    """Snapshot of a host's WireGuard identity, recomputed per call."""

    public_key: str
    public_ip: str
    listen_port: int

    @property
    def endpoint(self) -> str:
        return f"{self.public_ip}:{self.listen_port}"


class PeerEntry(BaseModel):
    name: str
    public_key: str = ""
    allowed_ips: str = ""
    blocked: bool = False


class ServerCheckReport(BaseModel):
    server_id: int
    reachable: bool = False
    wireguard_installed: bool = False
    config_present: bool = False
    peer_count: int = 0
    error: str | None = None
    checked_at: datetime = Field(default_factory=utcnow)


class AdminRequest(BaseModel):
    password: str


class AddServerRequest(AdminRequest):
    ip: str
    port: int = 22
    ssh_user: str = "root"
    ssh_password: str | None = None
    ssh_key_path: str | None = None
    max_clients: int = Field(default=10, ge=0)
    setup: bool = True


class ProvisionRequest(AdminRequest):
    user_id: int
    plan_id: int


class ActionOutcome(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    ERROR = "error"


class ActionResult(BaseModel):
    subscription_id: int
    action: str
    outcome: ActionOutcome
    message: str
    subscription_status: SubscriptionStatus
