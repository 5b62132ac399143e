"""
Vault server status probing.

Classifies the server's health report into a lifecycle status and waits
until the status reaches one of a set of acceptable values.
"""

import dataclasses
import enum
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError, VaultApiError
from .retry import wait_until
from .scope import Scope
from .vault_client import VaultClient, VaultConfig, check_health_report

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 5.0
STATUS_POLL_INTERVAL = 10.0


class ServerStatus(enum.Enum):
    """Externally observable lifecycle status of a Vault server."""

    UNKNOWN = 0
    UNINITIALIZED = 1
    SEALED = 2
    STANDBY = 3
    ACTIVE = 4

    def __str__(self) -> str:
        return {
            ServerStatus.UNKNOWN: "unknown",
            ServerStatus.UNINITIALIZED: "uninitialized",
            ServerStatus.SEALED: "sealed",
            ServerStatus.STANDBY: "standby",
            ServerStatus.ACTIVE: "active",
        }[self]


# Any status that proves the server is answering.
SERVER_UP = frozenset(
    {
        ServerStatus.UNINITIALIZED,
        ServerStatus.SEALED,
        ServerStatus.STANDBY,
        ServerStatus.ACTIVE,
    }
)

INITIALIZED = frozenset({ServerStatus.SEALED, ServerStatus.STANDBY, ServerStatus.ACTIVE})

UNSEALED = frozenset({ServerStatus.STANDBY, ServerStatus.ACTIVE})


def classify_health(health: Dict[str, Any]) -> ServerStatus:
    """
    Derive a server status from a health report.

    Args:
        health: Decoded /v1/sys/health response

    Returns:
        Classified status
    """
    initialized = bool(health.get("initialized"))
    sealed = bool(health.get("sealed"))
    standby = bool(health.get("standby"))

    if not initialized:
        return ServerStatus.UNINITIALIZED
    if sealed:
        return ServerStatus.SEALED
    if standby:
        return ServerStatus.STANDBY
    return ServerStatus.ACTIVE


class StatusProber:
    """Queries the Vault health endpoint once per observation."""

    def __init__(
        self,
        config_factory: Callable[[], VaultConfig] = VaultConfig.from_env,
        client_class: Callable[..., VaultClient] = VaultClient,
        timeout: float = PROBE_TIMEOUT,
    ):
        """
        Initialize the prober.

        Args:
            config_factory: Builds the client configuration for each probe
            client_class: Client type to construct
            timeout: Request timeout for a single probe in seconds
        """
        self.config_factory = config_factory
        self.client_class = client_class
        self.timeout = timeout

    def observe(self, scope: Scope) -> Tuple[ServerStatus, Optional[Exception]]:
        """
        Probe the server once.

        Failures are expected while the server starts up and are returned
        rather than raised.

        Returns:
            Tuple of (status, error); error is None when the probe succeeded
        """
        try:
            config = self.config_factory()
        except ConfigurationError as e:
            return ServerStatus.UNKNOWN, e

        config = dataclasses.replace(config, timeout=self.timeout, max_retries=0)
        with self.client_class(config, scope=scope) as client:
            try:
                health = check_health_report(client.health())
            except VaultApiError as e:
                return ServerStatus.UNKNOWN, e

        return classify_health(health), None


def wait_for_status(
    scope: Scope,
    acceptable: Optional[Iterable[ServerStatus]] = None,
    prober: Optional[StatusProber] = None,
    interval: float = STATUS_POLL_INTERVAL,
    log: Optional[logging.Logger] = None,
) -> ServerStatus:
    """
    Block until the server reports one of the acceptable statuses.

    Args:
        scope: Scope bounding the wait
        acceptable: Statuses to wait for (default: any reachable status)
        prober: Status prober (default: one built from the environment)
        interval: Seconds between probes
        log: Logger for progress messages

    Returns:
        The first acceptable status observed

    Raises:
        CancelledError: If the scope is cancelled
        DeadlineExceeded: If the scope's deadline elapses first
    """
    log = log or logger
    prober = prober or StatusProber()
    wanted = frozenset(acceptable or ()) or SERVER_UP
    observed = ServerStatus.UNKNOWN

    def ready() -> bool:
        nonlocal observed
        status, error = prober.observe(scope)
        if status in wanted:
            observed = status
            return True
        log.info(f"Vault server not ready: status:{status}, err:{error}")
        return False

    log.info("Waiting for Vault server...")
    wait_until(scope, interval, ready)
    return observed
