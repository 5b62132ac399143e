"""
Vault Server Bootstrap

Provides the idempotent init and unseal workflows that take a Vault server
from uninitialised to unsealed, along with their configuration.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Optional

import yaml

from .durations import parse_duration
from .errors import (
    DeadlineExceeded,
    ExhaustedSharesError,
    ReachabilityTimeout,
    StashIoError,
    UnrecordedInitError,
)
from .retry import wait_until
from .scope import Scope
from .stash import SecretBundle, SecretsStash
from .status import (
    INITIALIZED,
    SERVER_UP,
    STATUS_POLL_INTERVAL,
    UNSEALED,
    ServerStatus,
    StatusProber,
    wait_for_status,
)
from .vault_client import VaultClient

logger = logging.getLogger(__name__)

DEFAULT_SERVER_UP_WAIT_TIMEOUT = 300.0

# A concurrently running init may still be writing the stash when unseal
# first sees an initialised server.
STASH_LOAD_TIMEOUT = 20.0
STASH_LOAD_INTERVAL = 3.0


@dataclass
class BootstrapConfig:
    """Complete bootstrap configuration."""

    stash_file: Optional[str] = None
    silent: bool = False
    server_up_wait_timeout: float = DEFAULT_SERVER_UP_WAIT_TIMEOUT
    idempotent: bool = True
    secret_shares: int = 1
    secret_threshold: int = 1

    def validate(self) -> None:
        """
        Check the configuration for consistency.

        Raises:
            ValueError: If a value is missing or out of range
        """
        if not self.stash_file:
            raise ValueError("a stash file path is required")
        if self.server_up_wait_timeout <= 0:
            raise ValueError("server-up-wait-timeout must be positive")
        if self.secret_shares < 1:
            raise ValueError("secret-shares must be a positive integer")
        if self.secret_threshold < 1:
            raise ValueError("secret-threshold must be a positive integer")
        if self.secret_threshold > self.secret_shares:
            raise ValueError(
                f"secret-threshold ({self.secret_threshold}) must not exceed "
                f"secret-shares ({self.secret_shares})"
            )

    def init_params(self) -> "InitParams":
        return InitParams(
            server_up_wait_timeout=self.server_up_wait_timeout,
            secret_shares=self.secret_shares,
            secret_threshold=self.secret_threshold,
            idempotent=self.idempotent,
        )

    def unseal_params(self) -> "UnsealParams":
        return UnsealParams(
            server_up_wait_timeout=self.server_up_wait_timeout,
            idempotent=self.idempotent,
        )


@dataclass
class InitParams:
    """Parameters for initialising a Vault server."""

    server_up_wait_timeout: float = DEFAULT_SERVER_UP_WAIT_TIMEOUT
    secret_shares: int = 1
    secret_threshold: int = 1
    idempotent: bool = True


@dataclass
class UnsealParams:
    """Parameters for unsealing a Vault server."""

    server_up_wait_timeout: float = DEFAULT_SERVER_UP_WAIT_TIMEOUT
    idempotent: bool = True


@dataclass
class InitResult:
    """Outcome of the init workflow."""

    initialized: bool
    status: ServerStatus
    stash_path: str


@dataclass
class UnsealResult:
    """Outcome of the unseal workflow."""

    unsealed: bool
    status: ServerStatus
    shares_submitted: int = 0


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def load_config_from_file(config_path: str) -> BootstrapConfig:
    """
    Load bootstrap configuration from a YAML or JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Parsed BootstrapConfig object
    """
    with open(config_path, "r") as f:
        if config_path.endswith((".yml", ".yaml")):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    return parse_config(data or {})


def load_config_from_env() -> BootstrapConfig:
    """
    Load bootstrap configuration from environment variables.

    Environment variables:
        VAULT_BOOTSTRAP_CONFIG: JSON string with full configuration
        VAULT_BOOTSTRAP_STASH_FILE: Stash file path
        VAULT_BOOTSTRAP_SILENT: Suppress informational messages
        VAULT_BOOTSTRAP_SERVER_UP_WAIT_TIMEOUT: Reachability wait (e.g. 5m)
        VAULT_BOOTSTRAP_IDEMPOTENT: Treat the desired state as success
        VAULT_BOOTSTRAP_SECRET_SHARES: Unseal key shares to generate
        VAULT_BOOTSTRAP_SECRET_THRESHOLD: Shares required to unseal

    Returns:
        Parsed BootstrapConfig object
    """
    config_json = os.environ.get("VAULT_BOOTSTRAP_CONFIG")
    if config_json:
        return parse_config(json.loads(config_json))

    data: Dict[str, Any] = {}
    env_keys = {
        "VAULT_BOOTSTRAP_STASH_FILE": "stashFile",
        "VAULT_BOOTSTRAP_SILENT": "silent",
        "VAULT_BOOTSTRAP_SERVER_UP_WAIT_TIMEOUT": "serverUpWaitTimeout",
        "VAULT_BOOTSTRAP_IDEMPOTENT": "idempotent",
        "VAULT_BOOTSTRAP_SECRET_SHARES": "secretShares",
        "VAULT_BOOTSTRAP_SECRET_THRESHOLD": "secretThreshold",
    }
    for env_name, key in env_keys.items():
        value = os.environ.get(env_name, "").strip()
        if value:
            data[key] = value

    return parse_config(data)


def parse_config(data: Dict[str, Any]) -> BootstrapConfig:
    """
    Parse a configuration dictionary into a BootstrapConfig object.

    Args:
        data: Configuration dictionary

    Returns:
        BootstrapConfig object
    """
    config = BootstrapConfig()

    if data.get("stashFile"):
        config.stash_file = str(data["stashFile"])
    if "silent" in data:
        config.silent = _parse_bool(data["silent"])
    if "serverUpWaitTimeout" in data:
        config.server_up_wait_timeout = parse_duration(data["serverUpWaitTimeout"])
    if "idempotent" in data:
        config.idempotent = _parse_bool(data["idempotent"])
    if "secretShares" in data:
        config.secret_shares = int(data["secretShares"])
    if "secretThreshold" in data:
        config.secret_threshold = int(data["secretThreshold"])

    return config


class VaultBootstrap:
    """Initialise and unseal a Vault server."""

    def __init__(
        self,
        stash: SecretsStash,
        scope: Optional[Scope] = None,
        prober: Optional[StatusProber] = None,
        client_factory: Optional[Callable[[], VaultClient]] = None,
        poll_interval: float = STATUS_POLL_INTERVAL,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the bootstrap manager.

        Args:
            stash: Where secrets are saved to and loaded from
            scope: Scope cancelling every wait (default: never cancelled)
            prober: Server status prober
            client_factory: Builds the client for init and unseal calls
            poll_interval: Seconds between status probes
            log: Logger for progress messages
        """
        self.stash = stash
        self.scope = scope or Scope()
        self.prober = prober or StatusProber()
        self.client_factory = client_factory or (
            lambda: VaultClient.from_env(scope=self.scope)
        )
        self.poll_interval = poll_interval
        self.log = log or logger

    def _wait_for_server(
        self, timeout: float, acceptable: FrozenSet[ServerStatus]
    ) -> ServerStatus:
        try:
            return wait_for_status(
                self.scope.with_timeout(timeout),
                acceptable,
                prober=self.prober,
                interval=self.poll_interval,
                log=self.log,
            )
        except DeadlineExceeded as e:
            raise ReachabilityTimeout() from e

    def init(self, params: InitParams) -> InitResult:
        """
        Initialise the server and save its secrets.

        Args:
            params: Init parameters

        Returns:
            InitResult; ``initialized`` is False when nothing had to be done

        Raises:
            ReachabilityTimeout: If the server never became reachable
            ConfigurationError: If the client could not be configured
            VaultApiError: If the initialise call failed
            UnrecordedInitError: If the secrets could not be saved
        """
        status = self._wait_for_server(params.server_up_wait_timeout, SERVER_UP)

        if params.idempotent and status in INITIALIZED:
            self.log.info("Vault server is already initialised. Nothing to do.")
            return InitResult(initialized=False, status=status, stash_path=self.stash.path)

        with self.client_factory() as client:
            res = client.initialize(params.secret_shares, params.secret_threshold)
        self.log.info("Vault initialised")

        bundle = SecretBundle(
            unseal_keys=list(res.get("keys") or []),
            root_token=res.get("root_token") or "",
        )
        try:
            self.stash.save(bundle)
        except StashIoError as e:
            self.log.critical(
                f"Vault was initialised but its unseal keys and root token "
                f"could not be saved to {self.stash.path}: {e}"
            )
            raise UnrecordedInitError(
                f"Vault initialised but its secrets were not recorded: {e}"
            ) from e

        self.log.info(f"Secrets written to {self.stash.path}")
        return InitResult(initialized=True, status=status, stash_path=self.stash.path)

    def _load_secrets(self) -> SecretBundle:
        """Load the stash, retrying briefly while a concurrent init writes it."""
        bundle: Optional[SecretBundle] = None
        last_error: Optional[StashIoError] = None

        def attempt() -> bool:
            nonlocal bundle, last_error
            try:
                bundle = self.stash.load()
            except StashIoError as e:
                last_error = e
                self.log.info(f"{e} (retrying until the load window closes)")
                return False
            return True

        try:
            wait_until(self.scope.with_timeout(STASH_LOAD_TIMEOUT), STASH_LOAD_INTERVAL, attempt)
        except DeadlineExceeded as e:
            if last_error is None:
                raise
            raise StashIoError(f"{e}: {last_error}") from last_error

        return bundle

    def unseal(self, params: UnsealParams) -> UnsealResult:
        """
        Unseal the server with the saved key shares.

        Args:
            params: Unseal parameters

        Returns:
            UnsealResult; ``shares_submitted`` is 0 when nothing had to be done

        Raises:
            ReachabilityTimeout: If the server never reported an initialised status
            StashIoError: If the stash could not be loaded in time
            StashValidationError: If the stash holds no usable secrets
            VaultApiError: If submitting a share failed
            ExhaustedSharesError: If every share was used and Vault is still sealed
        """
        status = self._wait_for_server(params.server_up_wait_timeout, INITIALIZED)

        if params.idempotent and status in UNSEALED:
            self.log.info("Vault server is already unsealed. Nothing to do.")
            return UnsealResult(unsealed=False, status=status)

        bundle = self._load_secrets()
        bundle.validate()

        submitted = 0
        with self.client_factory() as client:
            for share in bundle.unseal_keys:
                res = client.submit_unseal_key(share)
                submitted += 1
                if not res.get("sealed", True):
                    self.log.info("Vault unsealed")
                    return UnsealResult(unsealed=True, status=status, shares_submitted=submitted)
                self.log.info(
                    f"Vault still sealed after {submitted} of {len(bundle.unseal_keys)} saved keys"
                )

        raise ExhaustedSharesError()


def init_from_config(config: BootstrapConfig, scope: Optional[Scope] = None) -> InitResult:
    """
    Initialise a Vault server from a bootstrap configuration.

    Args:
        config: Bootstrap configuration
        scope: Scope cancelling the run

    Returns:
        Init result
    """
    config.validate()
    bootstrap = VaultBootstrap(SecretsStash(config.stash_file), scope=scope)
    return bootstrap.init(config.init_params())


def unseal_from_config(config: BootstrapConfig, scope: Optional[Scope] = None) -> UnsealResult:
    """
    Unseal a Vault server from a bootstrap configuration.

    Args:
        config: Bootstrap configuration
        scope: Scope cancelling the run

    Returns:
        Unseal result
    """
    config.validate()
    bootstrap = VaultBootstrap(SecretsStash(config.stash_file), scope=scope)
    return bootstrap.unseal(config.unseal_params())
