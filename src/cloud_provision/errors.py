"""Exception hierarchy shared by the provisioning pipeline."""
from __future__ import annotations

from typing import Optional


class ProvisioningError(Exception):
    """Base class for every error raised by cloud_provision."""


class PrerequisiteError(ProvisioningError):
    """Provider tooling is missing or not authenticated."""


class InputValidationError(ProvisioningError):
    """A configuration value was rejected before reaching the provider."""


class OperationAborted(ProvisioningError):
    """A per-operation precondition failed; no unit of that operation was attempted."""


class ProvisioningCancelled(ProvisioningError):
    """The run was interrupted and stopped before the next provider call."""

    def __init__(self, message: str):
        super().__init__(message)
        # Results gathered by the operation that was running when the interrupt landed.
        self.partial = None


class ProviderError(ProvisioningError):
    """A call to the cloud provider failed."""

    def __init__(self, operation: str, message: str, code: Optional[str] = None):
        self.operation = operation
        self.code = code
        self.message = message
        detail = f"{code}: {message}" if code else message
        super().__init__(f"{operation} failed ({detail})")
