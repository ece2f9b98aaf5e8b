# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Tests for the quotasync CLI"""

import pytest
import yaml
from click.testing import CliRunner

from quotasync.cli import cli
from quotasync.core.logger import configure_logging


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep real config files and credentials out of the CLI under test"""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    for name in (
        "KUBECONFIG",
        "QUOTASYNC_API_SERVER",
        "QUOTASYNC_TOKEN",
        "QUOTASYNC_IN_CLUSTER",
        "QUOTASYNC_LOG_LEVEL",
        "QUOTASYNC_RESYNC_PERIOD",
        "QUOTASYNC_CREATE_MISSING",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    configure_logging(console_output=False)


def test_config_command_shows_effective_values(tmp_path):
    config_file = tmp_path / "quotasync.yaml"
    config_file.write_text(
        "substrate:\n  token: super-secret\nmanager:\n  resync_period_seconds: 2\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        cli, ["--config", str(config_file), "--create-missing", "config"]
    )

    assert result.exit_code == 0, result.output
    shown = yaml.safe_load(result.output)
    assert shown["manager"]["resync_period_seconds"] == 2.0
    assert shown["manager"]["create_missing"] is True
    assert shown["substrate"]["token"] == "***"


def test_invalid_config_exits_nonzero(tmp_path):
    config_file = tmp_path / "quotasync.yaml"
    config_file.write_text("manager:\n  resync_period_seconds: -1\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config_file), "config"])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_sync_once_without_credentials_exits_nonzero(tmp_path):
    result = CliRunner().invoke(
        cli, ["--kubeconfig", str(tmp_path / "missing-kubeconfig"), "sync-once"]
    )

    assert result.exit_code == 1
    assert "kubeconfig not found" in result.output


def test_run_without_credentials_exits_nonzero(tmp_path):
    result = CliRunner().invoke(
        cli, ["--kubeconfig", str(tmp_path / "missing-kubeconfig"), "run"]
    )

    assert result.exit_code == 1
