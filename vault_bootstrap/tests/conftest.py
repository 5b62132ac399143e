"""
Pytest fixtures for Vault Bootstrap tests.
"""

import logging
import os
from unittest.mock import MagicMock, patch

import pytest

from vault_bootstrap.scope import Scope
from vault_bootstrap.stash import SecretBundle


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += max(0.0, seconds)


class VirtualScope(Scope):
    """Scope whose waits advance a fake clock instead of sleeping."""

    def __init__(self, deadline=None, clock=None, event=None):
        super().__init__(deadline, clock=clock or FakeClock(), event=event)

    @property
    def clock(self) -> FakeClock:
        return self._clock

    def _wait(self, timeout: float) -> bool:
        self._clock.advance(timeout)
        return self._event.is_set()


@pytest.fixture
def virtual_scope():
    """Scope running on a fake clock starting at zero."""
    return VirtualScope()


@pytest.fixture
def vault_env():
    """Vault client environment pointing at a local test server."""
    env_vars = {
        "VAULT_ADDR": "http://127.0.0.1:8200",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        for name in (
            "VAULT_CACERT",
            "VAULT_CAPATH",
            "VAULT_CLIENT_CERT",
            "VAULT_CLIENT_KEY",
            "VAULT_SKIP_VERIFY",
            "VAULT_CLIENT_TIMEOUT",
            "VAULT_MAX_RETRIES",
            "VAULT_TOKEN",
            "VAULT_NAMESPACE",
        ):
            os.environ.pop(name, None)
        yield env_vars


@pytest.fixture
def clean_bootstrap_env():
    """Remove VAULT_BOOTSTRAP_* variables for the duration of a test."""
    with patch.dict(os.environ):
        for name in list(os.environ):
            if name.startswith("VAULT_BOOTSTRAP_"):
                del os.environ[name]
        yield


@pytest.fixture
def sample_bundle():
    """Secret bundle as returned by a three-share initialisation."""
    return SecretBundle(
        unseal_keys=["key-one", "key-two", "key-three"],
        root_token="s.roottoken",
    )


@pytest.fixture
def stash_path(tmp_path):
    """Stash location inside a directory that does not exist yet."""
    return str(tmp_path / "secrets" / "vault-stash.json")


@pytest.fixture
def mock_client():
    """Vault client double usable as a context manager."""
    client = MagicMock()
    client.__enter__.return_value = client
    client.__exit__.return_value = False
    return client


@pytest.fixture
def restore_root_logger():
    """Undo log level changes made by the command-line entry point."""
    root = logging.getLogger()
    level = root.level
    yield root
    root.setLevel(level)
