"""
Exception types raised by Vault Bootstrap.

Everything derives from VaultBootstrapError so the command-line entry point
can report any failure uniformly.
"""

from typing import List, Optional


class VaultBootstrapError(Exception):
    """Base class for all Vault Bootstrap errors."""


class ConfigurationError(VaultBootstrapError):
    """The Vault client could not be configured from the environment."""


class VaultApiError(VaultBootstrapError):
    """A request to the Vault API failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class ReachabilityTimeout(VaultBootstrapError):
    """The Vault server did not reach an acceptable status in time."""

    def __init__(self, message: str = "gave up waiting for Vault server"):
        super().__init__(message)


class StashError(VaultBootstrapError):
    """Base class for secrets stash errors."""


class StashIoError(StashError):
    """The stash could not be written, read or decoded."""


class StashValidationError(StashError):
    """The stash was readable but does not hold a usable secret bundle."""


class UnrecordedInitError(StashIoError):
    """
    Vault was initialised but the resulting secrets could not be saved.

    The server now holds key material that exists nowhere else; an operator
    has to intervene.
    """


class ExhaustedSharesError(VaultBootstrapError):
    """Every saved unseal key was submitted and Vault is still sealed."""

    def __init__(
        self, message: str = "exhausted saved unseal keys - Vault remains sealed"
    ):
        super().__init__(message)


class CancelledError(VaultBootstrapError):
    """The execution scope was cancelled."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class DeadlineExceeded(CancelledError):
    """The execution scope's deadline elapsed."""

    def __init__(self, message: str = "deadline exceeded"):
        super().__init__(message)
