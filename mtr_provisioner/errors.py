"""Exceptions raised by the provisioning rules and services."""
from __future__ import annotations

from typing import Optional


class ProvisioningError(RuntimeError):
    """Base exception for provisioning operations.

    ``error_type`` is copied into the ``errorType`` field of failure envelopes.
    """

    error_type = "error"


class ValidationError(ProvisioningError, ValueError):
    """Local input validation failed; no remote call was attempted."""

    error_type = "validation"


class SerialValidationError(ValidationError):
    """Device serial number is not well-formed."""


class MacAddressError(ValidationError):
    """MAC address is incomplete after normalisation."""


class InvalidUpnError(ValidationError):
    """User principal name is not of the form ``local@domain``."""


class AccountNotFoundError(ProvisioningError):
    """Resource account does not exist in either candidate domain."""

    error_type = "not_found"


class AccountExistsError(ProvisioningError):
    """Resource account already exists and cannot be created again."""

    error_type = "conflict"


class GroupNotConfiguredError(ProvisioningError):
    """No object id is configured for the requested group role."""

    error_type = "configuration"


class DirectoryError(ProvisioningError):
    """A Microsoft Graph call failed for a reason other than absence.

    Carries the HTTP status code when the remote side provided one so that
    callers can tell missing permissions from an unavailable service.
    """

    error_type = "directory"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DirectoryReadError(DirectoryError):
    """A lookup against the directory failed."""


class DirectoryCreateError(DirectoryError):
    """A create/import call was attempted and failed."""

    error_type = "create"


class DirectoryWriteError(DirectoryError):
    """An update, password reset or membership change failed."""

    error_type = "write"


class InconsistentStateError(ProvisioningError):
    """A create call succeeded but the follow-up read did not see the entity.

    Usually eventual-consistency lag in the remote directory.
    """

    error_type = "inconsistent"


__all__ = [
    "AccountExistsError",
    "AccountNotFoundError",
    "DirectoryCreateError",
    "DirectoryError",
    "DirectoryReadError",
    "DirectoryWriteError",
    "GroupNotConfiguredError",
    "InconsistentStateError",
    "InvalidUpnError",
    "MacAddressError",
    "ProvisioningError",
    "SerialValidationError",
    "ValidationError",
]
