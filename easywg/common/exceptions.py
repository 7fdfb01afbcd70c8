"""
Custom exceptions for provisioning and subscription management.
"""

from __future__ import annotations


class ValidationError(Exception):
    """Exception for validation failures."""

    def __init__(self, message: str, status_code: int = 403) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ValidationError):
    """Exception for lookups of records that do not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class InvalidStatusTransitionError(ValidationError):
    """Exception for forbidden subscription status changes."""

    def __init__(self, message: str) -> None:
        super().__init__(message, 409)


class ProvisioningError(Exception):
    """Base class for failures while driving a remote VPN host."""

    status_code: int = 502


class HostUnreachableError(ProvisioningError):
    """The transport to the host could not be established."""


class AuthFailedError(ProvisioningError):
    """The host rejected the supplied credentials."""


class PrivilegeDeniedError(ProvisioningError):
    """The session cannot run elevated commands non-interactively."""

    status_code = 403


class CommandFailedError(ProvisioningError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, stderr: str, exit_status: int | None = None) -> None:
        self.command = command
        self.stderr = stderr.strip()
        self.exit_status = exit_status
        msg = f"Command failed ({exit_status}): {command}"
        if self.stderr:
            msg += f": {self.stderr}"
        super().__init__(msg)


class SetupTimeoutError(ProvisioningError):
    """Opening the session for server setup exceeded its time budget."""

    status_code = 504


class UnsupportedOSError(ProvisioningError):
    """No known package manager could install WireGuard."""


class InterfaceVerificationError(ProvisioningError):
    """The tunnel interface did not come up after starting the service."""


class InvalidConfigPathError(ProvisioningError):
    """A client name could not be derived from an artifact path."""

    status_code = 400


class ProvisioningFailedError(ProvisioningError):
    """A provisioning workflow broke at a named stage."""

    def __init__(self, stage: str, cause: Exception | str) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Provisioning failed at stage '{stage}': {cause}")


class OperationTimeoutError(ProvisioningError):
    """An administrator action did not finish within its bounded wait."""

    status_code = 504


class NoServerAvailableError(ProvisioningError):
    """No active server has spare capacity."""

    status_code = 503


class NotificationError(Exception):
    """A notification could not be delivered."""
