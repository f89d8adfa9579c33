"""Tests for the operator CLI."""

import json

import pytest
from click.testing import CliRunner

from etcd_registry import cli
from etcd_registry.domain.exceptions import StoreError
from etcd_registry.infrastructure.etcd_store import EtcdKVStore


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Test cases for the etcd-registry command."""

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli.main, ["--help"])

        assert result.exit_code == 0
        for command in ("register", "unregister", "discover", "watch"):
            assert command in result.output

    def test_discover_json_empty(self, runner):
        result = runner.invoke(cli.main, ["--memory", "discover", "auth", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == []

    def test_discover_table(self, runner):
        result = runner.invoke(cli.main, ["--memory", "discover", "auth"])

        assert result.exit_code == 0
        assert "Service: auth" in result.output

    def test_unregister(self, runner):
        result = runner.invoke(cli.main, ["--memory", "unregister", "auth", "10.0.0.1:9000"])

        assert result.exit_code == 0
        assert "Unregistered" in result.output

    def test_invalid_name_exit_code(self, runner):
        result = runner.invoke(cli.main, ["--memory", "discover", "a/b"])

        assert result.exit_code == 2
        assert "Invalid input" in result.output

    def test_store_failure_exit_code(self, runner, monkeypatch):
        async def refuse(self):
            raise StoreError("etcd connect failed: refused", operation="connect")

        monkeypatch.setattr(EtcdKVStore, "connect", refuse)

        result = runner.invoke(cli.main, ["--endpoints", "etcd:2379", "discover", "auth"])

        assert result.exit_code == 1
        assert "refused" in result.output

    def test_endpoints_are_split(self):
        assert cli.split_endpoints(None, None, "a:1, b:2,") == ["a:1", "b:2"]
        assert cli.split_endpoints(None, None, None) == []
