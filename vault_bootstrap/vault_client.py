"""
Vault API Client

Provides a minimal Python interface to the Vault system backend endpoints
needed to bring a server up: health, initialisation and unsealing.
Connection settings come from the standard Vault environment variables.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urljoin

import requests

from .durations import parse_duration
from .errors import ConfigurationError, VaultApiError
from .scope import Scope

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "https://127.0.0.1:8200"

# Status code Vault should use for every non-active health state, so that
# sealed, standby and uninitialised servers still answer with a 2xx body.
HEALTH_STATUS_CODE = 299

_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE = {"0", "f", "F", "false", "FALSE", "False"}


def _parse_bool(name: str, value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"vault config: could not parse {name}={value!r}")


@dataclass
class VaultConfig:
    """Connection settings for a Vault server."""

    address: str = DEFAULT_ADDRESS
    ca_cert: Optional[str] = None
    ca_path: Optional[str] = None
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    skip_verify: bool = False
    timeout: float = 60.0
    max_retries: int = 2
    token: Optional[str] = None
    namespace: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultConfig":
        """
        Build a configuration from Vault environment variables.

        Environment variables:
            VAULT_ADDR: Server address (default: https://127.0.0.1:8200)
            VAULT_CACERT: CA certificate file used to verify the server
            VAULT_CAPATH: Directory of CA certificates
            VAULT_CLIENT_CERT: Client certificate for TLS authentication
            VAULT_CLIENT_KEY: Private key for the client certificate
            VAULT_SKIP_VERIFY: Disable TLS verification
            VAULT_CLIENT_TIMEOUT: Request timeout (duration or seconds)
            VAULT_MAX_RETRIES: Retries for transient failures
            VAULT_TOKEN: Token sent with every request
            VAULT_NAMESPACE: Namespace sent with every request

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("VAULT_ADDR"):
            config.address = env["VAULT_ADDR"]
        config.ca_cert = env.get("VAULT_CACERT") or None
        config.ca_path = env.get("VAULT_CAPATH") or None
        config.client_cert = env.get("VAULT_CLIENT_CERT") or None
        config.client_key = env.get("VAULT_CLIENT_KEY") or None
        config.token = env.get("VAULT_TOKEN") or None
        config.namespace = env.get("VAULT_NAMESPACE") or None

        if env.get("VAULT_SKIP_VERIFY"):
            config.skip_verify = _parse_bool("VAULT_SKIP_VERIFY", env["VAULT_SKIP_VERIFY"])

        if env.get("VAULT_CLIENT_TIMEOUT"):
            try:
                config.timeout = parse_duration(env["VAULT_CLIENT_TIMEOUT"])
            except ValueError as e:
                raise ConfigurationError(f"vault config: VAULT_CLIENT_TIMEOUT: {e}") from e

        if env.get("VAULT_MAX_RETRIES"):
            try:
                config.max_retries = int(env["VAULT_MAX_RETRIES"])
            except ValueError as e:
                raise ConfigurationError(f"vault config: VAULT_MAX_RETRIES: {e}") from e

        if config.client_cert and not config.client_key:
            raise ConfigurationError(
                "vault config: VAULT_CLIENT_CERT is set but VAULT_CLIENT_KEY is not"
            )
        if config.client_key and not config.client_cert:
            raise ConfigurationError(
                "vault config: VAULT_CLIENT_KEY is set but VAULT_CLIENT_CERT is not"
            )

        return config

    @property
    def verify(self) -> Union[bool, str]:
        """Value for the ``verify`` argument of requests."""
        if self.skip_verify:
            return False
        return self.ca_cert or self.ca_path or True


class VaultClient:
    """Client for the Vault system backend."""

    def __init__(
        self,
        config: VaultConfig,
        scope: Optional[Scope] = None,
        retry_delay: float = 1.0,
    ):
        """
        Initialize the Vault client.

        Args:
            config: Connection settings
            scope: Scope used while backing off between retries
            retry_delay: Base delay between retries in seconds
        """
        self.config = config
        self.address = config.address.rstrip("/")
        self.timeout = config.timeout
        self.retry_attempts = max(0, config.max_retries) + 1
        self.retry_delay = retry_delay
        self.scope = scope
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if config.token:
            self.session.headers["X-Vault-Token"] = config.token
        if config.namespace:
            self.session.headers["X-Vault-Namespace"] = config.namespace
        self.session.verify = config.verify
        if config.client_cert:
            self.session.cert = (config.client_cert, config.client_key)

    @classmethod
    def from_env(cls, scope: Optional[Scope] = None) -> "VaultClient":
        return cls(VaultConfig.from_env(), scope=scope)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "VaultClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _sleep(self, seconds: float) -> None:
        if self.scope is not None:
            self.scope.wait(seconds)
        else:
            time.sleep(seconds)

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """
        Make a request to the Vault API with retries.

        Connection errors, timeouts and 5xx responses are retried; any other
        failure is raised straight away.

        Args:
            method: HTTP method (GET, PUT, ...)
            path: API path, e.g. /v1/sys/health
            data: Request body data
            params: Query parameters

        Returns:
            Decoded response body

        Raises:
            VaultApiError: If the request fails
        """
        url = urljoin(self.address + "/", path.lstrip("/"))

        for attempt in range(self.retry_attempts):
            if self.scope is not None:
                self.scope.check()
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=data,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                error = VaultApiError(f"{method} {url}: {e}")
            else:
                if response.status_code < 300:
                    return self._decode(method, url, response)
                error = _response_error(method, url, response)
                if response.status_code < 500:
                    raise error

            if attempt < self.retry_attempts - 1:
                logger.warning(f"Request to {url} failed (attempt {attempt + 1}): {error}")
                self._sleep(self.retry_delay * (attempt + 1))
            else:
                logger.debug(f"Request to {url} failed after {self.retry_attempts} attempts")
                raise error

    @staticmethod
    def _decode(method: str, url: str, response: requests.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise VaultApiError(
                f"{method} {url}: invalid response body: {e}",
                status_code=response.status_code,
            ) from e

    def health(self) -> Dict[str, Any]:
        """
        Read the server's health report.

        Returns:
            Health information including ``initialized``, ``sealed`` and
            ``standby`` flags

        Raises:
            VaultApiError: If the request failed or the body is not a health report
        """
        params = {
            code: str(HEALTH_STATUS_CODE)
            for code in (
                "standbycode",
                "sealedcode",
                "uninitcode",
                "drsecondarycode",
                "performancestandbycode",
            )
        }
        return check_health_report(self._request("GET", "/v1/sys/health", params=params))

    def initialize(self, secret_shares: int, secret_threshold: int) -> Dict[str, Any]:
        """
        Initialise a new Vault server.

        Args:
            secret_shares: Number of unseal key shares to generate
            secret_threshold: Shares required to unseal

        Returns:
            Initialisation result including:
            - keys: The unseal key shares (SENSITIVE)
            - keys_base64: The same shares, base64 encoded
            - root_token: The initial root token (SENSITIVE)

        Warning:
            The keys and root token are only returned once. Store them
            before doing anything else.
        """
        return self._request(
            "PUT",
            "/v1/sys/init",
            data={
                "secret_shares": secret_shares,
                "secret_threshold": secret_threshold,
            },
        )

    def submit_unseal_key(self, key: str) -> Dict[str, Any]:
        """
        Submit one unseal key share.

        Args:
            key: Unseal key share

        Returns:
            Seal status including ``sealed``, ``t``, ``n`` and ``progress``
        """
        return self._request("PUT", "/v1/sys/unseal", data={"key": key})


def check_health_report(report: Any) -> Dict[str, Any]:
    """
    Ensure a decoded health body is a report that can be classified.

    Raises:
        VaultApiError: If the body is not a JSON object with an ``initialized`` field
    """
    if not isinstance(report, dict):
        raise VaultApiError(
            f"invalid health response: expected a JSON object, got {type(report).__name__}"
        )
    if "initialized" not in report:
        raise VaultApiError("invalid health response: missing 'initialized' field")
    return report


def _response_error(method: str, url: str, response: requests.Response) -> VaultApiError:
    try:
        body = response.json()
    except ValueError:
        body = None

    errors: List[str] = []
    if isinstance(body, dict):
        errors = [str(e) for e in body.get("errors") or []]

    message = f"Error making API request. URL: {method} {url} Code: {response.status_code}."
    if errors:
        message += " Errors: " + "; ".join(errors)
    elif response.text:
        message += f" Raw: {response.text.strip()}"
    return VaultApiError(message, status_code=response.status_code, errors=errors)
