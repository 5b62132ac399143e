"""
Vault Bootstrap - A Python package for bringing up HashiCorp Vault servers.

This package provides utilities for:
- Waiting for a Vault server to become reachable
- Idempotent initialisation with the unseal keys saved to a local stash
- Idempotent unsealing from a previously saved stash
"""

__version__ = "0.1.0"
