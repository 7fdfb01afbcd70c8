"""
Routes for the admin server.
"""

from __future__ import annotations

import hmac
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from easywg.common.exceptions import ProvisioningError, ValidationError
from easywg.common.models import (
    ActionResult,
    AddServerRequest,
    AdminRequest,
    ProvisionRequest,
    Server,
    ServerCheckReport,
    Subscription,
)

from .services import SubscriptionService

SECRET_FIELDS = {"ssh_password"}


def _http_error(e: ValidationError | ProvisioningError) -> HTTPException:
    return HTTPException(e.status_code, str(e))


class AdminRoutes:
    """Handles FastAPI routes for the admin server."""

    def __init__(self, service: SubscriptionService, admin_password: str | None):
        self.service = service
        self.admin_password = admin_password

    def setup_routes(self, app: FastAPI) -> None:
        """Setup API routes on the FastAPI app."""
        app.get("/health")(self.health)
        app.post(
            "/servers", response_model=Server, response_model_exclude=SECRET_FIELDS
        )(self.add_server)
        app.post(
            "/servers/{server_id}/setup",
            response_model=Server,
            response_model_exclude=SECRET_FIELDS,
        )(self.setup_server)
        app.post("/servers/{server_id}/check", response_model=ServerCheckReport)(
            self.check_server
        )
        app.post("/subscriptions", response_model=Subscription)(self.provision)
        app.post("/subscriptions/{subscription_id}/block", response_model=ActionResult)(
            self.block
        )
        app.post(
            "/subscriptions/{subscription_id}/unblock", response_model=ActionResult
        )(self.unblock)
        app.post(
            "/subscriptions/{subscription_id}/revoke", response_model=ActionResult
        )(self.revoke)
        app.post("/subscriptions/{subscription_id}/blocked")(self.is_blocked)
        app.post("/subscriptions/{subscription_id}/config")(self.download_config)
        app.post("/sweep")(self.sweep)

    def _check_password(self, req: AdminRequest) -> None:
        if not self.admin_password or not hmac.compare_digest(
            req.password.encode(), self.admin_password.encode()
        ):
            msg = "Invalid admin password"
            raise ValidationError(msg)

    async def health(self) -> dict[str, Any]:
        """Handle /health endpoint."""
        return self.service.health()

    # Provisioning calls block on remote hosts, so these are plain functions
    # that FastAPI runs in its threadpool.

    def add_server(self, req: AddServerRequest) -> Server:
        try:
            self._check_password(req)
            return self.service.add_server(req)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def setup_server(self, server_id: int, req: AdminRequest) -> Server:
        try:
            self._check_password(req)
            return self.service.setup_server(server_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def check_server(self, server_id: int, req: AdminRequest) -> ServerCheckReport:
        try:
            self._check_password(req)
            return self.service.check_server(server_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def provision(self, req: ProvisionRequest) -> Subscription:
        try:
            self._check_password(req)
            return self.service.provision(req.user_id, req.plan_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def block(self, subscription_id: int, req: AdminRequest) -> ActionResult:
        try:
            self._check_password(req)
            return self.service.block(subscription_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def unblock(self, subscription_id: int, req: AdminRequest) -> ActionResult:
        try:
            self._check_password(req)
            return self.service.unblock(subscription_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def revoke(self, subscription_id: int, req: AdminRequest) -> ActionResult:
        try:
            self._check_password(req)
            return self.service.revoke(subscription_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e

    def is_blocked(self, subscription_id: int, req: AdminRequest) -> dict[str, Any]:
        try:
            self._check_password(req)
            blocked = self.service.is_blocked(subscription_id)
        except (ValidationError, ProvisioningError) as e:
            raise _http_error(e) from e
        return {"subscription_id": subscription_id, "blocked": blocked}

    def download_config(self, subscription_id: int, req: AdminRequest) -> FileResponse:
        """Return the client config as a downloadable file."""
        try:
            self._check_password(req)
            path = self.service.config_path(subscription_id)
        except ValidationError as e:
            raise _http_error(e) from e
        return FileResponse(
            path, media_type="text/plain", filename=path.name
        )

    def sweep(self, req: AdminRequest) -> dict[str, Any]:
        try:
            self._check_password(req)
            dispatched = self.service.trigger_sweep()
        except ValidationError as e:
            raise _http_error(e) from e
        return {"dispatched": dispatched}
