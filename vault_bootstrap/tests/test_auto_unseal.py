"""
Tests for the vault-auto-unseal command-line entry point.
"""

import logging
import os
import signal
from unittest.mock import patch

import pytest
import yaml

from vault_bootstrap.bootstrap import InitResult, UnsealResult
from vault_bootstrap.errors import ExhaustedSharesError
from vault_bootstrap.scope import Scope
from vault_bootstrap.scripts.auto_unseal import (
    build_parser,
    install_signal_handlers,
    main,
    resolve_config,
)
from vault_bootstrap.status import ServerStatus


class TestArgumentParsing:
    """Tests for command-line parsing."""

    def test_global_flags_before_command(self, clean_bootstrap_env):
        """Test flags given ahead of the subcommand."""
        args = build_parser().parse_args(
            ["--stash-file", "/tmp/s.json", "--server-up-wait-timeout", "90s", "unseal"]
        )
        config = resolve_config(args)

        assert args.command == "unseal"
        assert config.stash_file == "/tmp/s.json"
        assert config.server_up_wait_timeout == 90

    def test_global_flags_after_command(self, clean_bootstrap_env):
        """Test flags given after the subcommand."""
        args = build_parser().parse_args(
            [
                "init",
                "--stash-file",
                "/tmp/s.json",
                "--no-idempotent",
                "--silent",
                "--secret-shares",
                "5",
                "--secret-threshold",
                "3",
            ]
        )
        config = resolve_config(args)

        assert config.stash_file == "/tmp/s.json"
        assert config.idempotent is False
        assert config.silent is True
        assert config.secret_shares == 5
        assert config.secret_threshold == 3

    def test_defaults(self, clean_bootstrap_env):
        """Test the built-in defaults."""
        config = resolve_config(build_parser().parse_args(["--stash-file", "/tmp/s", "init"]))

        assert config.idempotent is True
        assert config.silent is False
        assert config.server_up_wait_timeout == 300
        assert config.secret_shares == 1
        assert config.secret_threshold == 1

    @pytest.mark.parametrize(
        "argv",
        [
            ["init", "--secret-shares", "0"],
            ["init", "--secret-threshold", "-1"],
            ["--server-up-wait-timeout", "later", "unseal"],
            ["unseal", "--secret-shares", "2"],
            [],
        ],
    )
    def test_invalid_arguments(self, argv):
        """Test that bad arguments are rejected by the parser."""
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(argv)

        assert exc_info.value.code == 2

    def test_flags_override_config_file(self, tmp_path):
        """Test that explicit flags win over the configuration file."""
        config_path = tmp_path / "bootstrap.yaml"
        config_path.write_text(
            yaml.dump({"stashFile": "/from/file.json", "secretShares": 5, "secretThreshold": 3})
        )

        args = build_parser().parse_args(
            ["--config", str(config_path), "init", "--secret-threshold", "2"]
        )
        config = resolve_config(args)

        assert config.stash_file == "/from/file.json"
        assert config.secret_shares == 5
        assert config.secret_threshold == 2

    def test_environment_supplies_stash_file(self, clean_bootstrap_env):
        """Test that the environment is used without a configuration file."""
        with patch.dict(os.environ, {"VAULT_BOOTSTRAP_STASH_FILE": "/from/env.json"}):
            config = resolve_config(build_parser().parse_args(["unseal"]))

        assert config.stash_file == "/from/env.json"


class TestMain:
    """Tests for main."""

    @patch("vault_bootstrap.scripts.auto_unseal.init_from_config")
    def test_init(self, mock_init, clean_bootstrap_env, restore_root_logger):
        """Test a successful init run."""
        mock_init.return_value = InitResult(
            initialized=True, status=ServerStatus.UNINITIALIZED, stash_path="/tmp/s.json"
        )

        main(["--stash-file", "/tmp/s.json", "init", "--secret-shares", "3", "--secret-threshold", "2"])

        config, scope = mock_init.call_args[0]
        assert config.secret_shares == 3
        assert config.secret_threshold == 2
        assert isinstance(scope, Scope)

    @patch("vault_bootstrap.scripts.auto_unseal.unseal_from_config")
    def test_unseal(self, mock_unseal, clean_bootstrap_env, restore_root_logger):
        """Test a successful unseal run."""
        mock_unseal.return_value = UnsealResult(
            unsealed=True, status=ServerStatus.SEALED, shares_submitted=2
        )

        main(["--stash-file", "/tmp/s.json", "unseal"])

        mock_unseal.assert_called_once()

    @patch("vault_bootstrap.scripts.auto_unseal.unseal_from_config")
    def test_failure_exits_non_zero(
        self, mock_unseal, clean_bootstrap_env, restore_root_logger, caplog
    ):
        """Test that a workflow error is reported and exits with status 1."""
        mock_unseal.side_effect = ExhaustedSharesError()

        with caplog.at_level(logging.INFO):
            with pytest.raises(SystemExit) as exc_info:
                main(["--stash-file", "/tmp/s.json", "unseal"])

        assert exc_info.value.code == 1
        assert "unseal failed: exhausted saved unseal keys" in caplog.text

    def test_missing_stash_file(self, clean_bootstrap_env, restore_root_logger):
        """Test that running without a stash path is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main(["unseal"])

        assert exc_info.value.code == 2

    def test_threshold_above_shares(self, clean_bootstrap_env, restore_root_logger):
        """Test that an impossible threshold is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--stash-file", "/tmp/s", "init", "--secret-threshold", "2"])

        assert exc_info.value.code == 2

    @patch("vault_bootstrap.scripts.auto_unseal.unseal_from_config")
    def test_silent(self, mock_unseal, clean_bootstrap_env, restore_root_logger):
        """Test that silent mode keeps only errors."""
        mock_unseal.return_value = UnsealResult(unsealed=False, status=ServerStatus.ACTIVE)

        main(["--stash-file", "/tmp/s.json", "--silent", "unseal"])

        assert restore_root_logger.level == logging.ERROR

    @patch("vault_bootstrap.scripts.auto_unseal.unseal_from_config")
    def test_signal_handlers_restored(self, mock_unseal, clean_bootstrap_env, restore_root_logger):
        """Test that main leaves the process signal handlers as it found them."""
        mock_unseal.return_value = UnsealResult(unsealed=False, status=ServerStatus.ACTIVE)
        before = signal.getsignal(signal.SIGTERM)

        main(["--stash-file", "/tmp/s.json", "unseal"])

        assert signal.getsignal(signal.SIGTERM) is before


class TestSignalHandling:
    """Tests for signal handling."""

    def test_returns_previous_handlers_by_signal(self):
        """Test that the previous handlers are returned keyed by signal number."""
        scope = Scope()
        before = {s: signal.getsignal(s) for s in (signal.SIGINT, signal.SIGTERM)}
        previous = install_signal_handlers(scope)
        for number, original in previous.items():
            signal.signal(number, original)

        assert previous == before

    @pytest.mark.parametrize("signum", [signal.SIGINT, signal.SIGTERM])
    def test_signal_cancels_scope(self, signum):
        """Test that a termination signal cancels the scope."""
        scope = Scope()
        previous = install_signal_handlers(scope)
        try:
            handler = signal.getsignal(signum)
            handler(signum, None)
        finally:
            for number, original in previous.items():
                signal.signal(number, original)

        assert scope.cancelled is True
