"""
Secrets stash.

Persists the unseal key shares and root token produced by initialisation
to a local JSON file, and loads them back for unsealing.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import StashIoError, StashValidationError

logger = logging.getLogger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o755


@dataclass
class SecretBundle:
    """Unseal key shares and root token of an initialised Vault server."""

    unseal_keys: List[str] = field(default_factory=list)
    root_token: str = ""

    def validate(self) -> None:
        """
        Check that the bundle can drive an unseal.

        Raises:
            StashValidationError: If keys or root token are missing
        """
        if not self.unseal_keys:
            raise StashValidationError("secrets: no unseal keys found")
        if not self.root_token:
            raise StashValidationError("secrets: no root token found")

    def to_dict(self) -> Dict[str, Any]:
        return {"unseal_keys": list(self.unseal_keys), "root_token": self.root_token}

    @classmethod
    def from_dict(cls, data: Any) -> "SecretBundle":
        """
        Build a bundle from decoded stash content.

        Missing fields yield an empty bundle; wrongly typed fields are a
        decoding failure.

        Raises:
            ValueError: If the content does not have the stash layout
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")

        keys = data.get("unseal_keys") or []
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise ValueError("unseal_keys must be a list of strings")

        token = data.get("root_token") or ""
        if not isinstance(token, str):
            raise ValueError("root_token must be a string")

        return cls(unseal_keys=keys, root_token=token)

    def __repr__(self) -> str:
        return f"SecretBundle(unseal_keys=<{len(self.unseal_keys)} keys>, root_token=<redacted>)"


class SecretsStash:
    """JSON file holding a SecretBundle."""

    def __init__(self, path: str):
        """
        Initialize the stash.

        Args:
            path: Location of the stash file
        """
        self.path = path

    def save(self, bundle: SecretBundle) -> None:
        """
        Write the bundle to the stash file.

        Parent directories are created as needed. The file is written to a
        temporary name with mode 0600 and renamed into place, so readers never
        observe a partial file.

        Raises:
            StashIoError: If any step fails
        """
        try:
            payload = json.dumps(bundle.to_dict(), indent=2)
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, mode=DIR_MODE, exist_ok=True)
            self._write_atomic(directory, payload.encode("utf-8"))
        except (OSError, TypeError, ValueError) as e:
            raise StashIoError(f"failed to save secrets stash: {e}") from e

        logger.debug(f"Saved {len(bundle.unseal_keys)} unseal keys to {self.path}")

    def _write_atomic(self, directory: str, data: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{os.path.basename(self.path)}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                os.fchmod(f.fileno(), FILE_MODE)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load(self) -> SecretBundle:
        """
        Read and validate the bundle from the stash file.

        Returns:
            The stored SecretBundle

        Raises:
            StashIoError: If the file cannot be read or decoded
            StashValidationError: If the content lacks keys or root token
        """
        try:
            with open(self.path, "rb") as f:
                data = json.loads(f.read().decode("utf-8"))
            bundle = SecretBundle.from_dict(data)
        except (OSError, ValueError) as e:
            raise StashIoError(f"failed to load secrets stash: {e}") from e

        try:
            bundle.validate()
        except StashValidationError as e:
            raise StashValidationError(f"failed to load secrets stash: {e}") from e

        return bundle
