#!/usr/bin/env python3
"""
Main entry point for the Vault auto-unseal service.

Initialises a new Vault server and saves its unseal keys, or unseals a
server using previously saved keys. The server address and TLS settings are
read from the standard Vault environment variables (VAULT_ADDR, ...).
"""

import argparse
import logging
import signal
import sys
import traceback
from typing import Any, Dict, List, Optional

import yaml

from vault_bootstrap.bootstrap import (
    BootstrapConfig,
    init_from_config,
    load_config_from_env,
    load_config_from_file,
    unseal_from_config,
)
from vault_bootstrap.durations import parse_duration
from vault_bootstrap.scope import Scope

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _duration(value: str) -> float:
    try:
        seconds = parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: {value!r}")
    return seconds


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    # Options left unset stay off the namespace so that configuration files
    # and environment variables can supply them.
    common = argparse.ArgumentParser(add_help=False, argument_default=argparse.SUPPRESS)
    common.add_argument(
        "--stash-file",
        metavar="PATH",
        help=(
            "Save Vault unseal keys at this local filesystem path. Following a "
            "successful init, this file will be created with mode 0600."
        ),
    )
    common.add_argument(
        "--silent",
        action="store_true",
        help="Suppress informational messages that would otherwise be written to standard error.",
    )
    common.add_argument(
        "--server-up-wait-timeout",
        type=_duration,
        metavar="DURATION",
        help=(
            "Give up and exit with non-zero status if the Vault server is not "
            "reachable after this length of time (default: 5m)."
        ),
    )
    common.add_argument(
        "--idempotent",
        action=argparse.BooleanOptionalAction,
        help=(
            "Exit with status zero if the Vault server is already in the desired "
            "state (initialised/unsealed). Enabled by default."
        ),
    )
    common.add_argument(
        "--config",
        "-c",
        help="Path to configuration file (YAML or JSON)",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="vault-auto-unseal",
        description=(
            "Automatically init and unseal a Vault server. By default the server "
            "listening on https://127.0.0.1:8200 is used; set VAULT_ADDR and the "
            "other standard Vault environment variables to change this."
        ),
        parents=[common],
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser(
        "init",
        parents=[common],
        help="Initialise a new Vault server and save unseal keys for later use.",
    )
    init.add_argument(
        "--secret-shares",
        type=_positive_int,
        help="Number of unseal key shares to generate (default: 1)",
    )
    init.add_argument(
        "--secret-threshold",
        type=_positive_int,
        help="Number of shares required to unseal (default: 1)",
    )

    subparsers.add_parser(
        "unseal",
        parents=[common],
        help="Unseal a Vault server using saved unseal keys.",
    )

    return parser


def resolve_config(args: argparse.Namespace) -> BootstrapConfig:
    """
    Combine the configuration sources.

    Command-line flags override the configuration file (or, without one,
    the environment), which override the built-in defaults.
    """
    config_path = getattr(args, "config", None)
    if config_path:
        config = load_config_from_file(config_path)
    else:
        config = load_config_from_env()

    for name in (
        "stash_file",
        "silent",
        "server_up_wait_timeout",
        "idempotent",
        "secret_shares",
        "secret_threshold",
    ):
        value = getattr(args, name, None)
        if value is not None:
            setattr(config, name, value)

    return config


def install_signal_handlers(scope: Scope) -> Dict[int, Any]:
    """
    Cancel ``scope`` on SIGINT or SIGTERM.

    Returns:
        The previous handlers, keyed by signal number
    """

    def handle(signum, frame):
        logger.info(f"{signal.Signals(signum).name} received - terminating...")
        scope.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle)
    return previous


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    verbose = getattr(args, "verbose", False)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = resolve_config(args)
        config.validate()
    except (OSError, ValueError, yaml.YAMLError) as e:
        parser.error(str(e))

    if config.silent:
        logging.getLogger().setLevel(logging.ERROR)

    scope = Scope()
    previous_handlers = install_signal_handlers(scope)

    try:
        if args.command == "init":
            result = init_from_config(config, scope)
            if result.initialized:
                logger.info(f"Vault initialised; secrets saved to {result.stash_path}")
        else:
            result = unseal_from_config(config, scope)
            if result.unsealed:
                logger.info(f"Vault unsealed after {result.shares_submitted} key shares")

    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        if verbose:
            traceback.print_exc()
        sys.exit(1)

    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


if __name__ == "__main__":
    main()
