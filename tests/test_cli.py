"""Tests for the lark-gateway CLI entry points."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from typer.testing import CliRunner

import lark_gateway
from lark_gateway.cli import app
from lark_gateway.config.schema import ChannelsSection, FeishuConfig, GatewayConfig
from lark_gateway.errors import ConfigurationError, TransportError
from lark_gateway.gateway.models import OutboundMessage

runner = CliRunner()


def _make_config() -> GatewayConfig:
    return GatewayConfig(
        channels=ChannelsSection(
            feishu=FeishuConfig(
                enabled=True,
                app_id="cli_app",
                app_secret="supersecretvalue",
                allowed_users=["ou_1"],
            )
        )
    )


def _mock_config_manager(config: GatewayConfig | None = None) -> MagicMock:
    mock = MagicMock()
    mock.load.return_value = config or _make_config()
    mock.get_config_path.return_value = Path("/tmp/lark-gateway-test/config.toml")
    return mock


def _mock_runtime(health: dict[str, bool] | None = None) -> MagicMock:
    mock = MagicMock()
    mock.channels = {"feishu": MagicMock()}
    mock.health = AsyncMock(return_value=health if health is not None else {"feishu": True})
    mock.send = AsyncMock()
    mock.stop = AsyncMock()
    mock.run = AsyncMock()
    mock.failed = {}
    mock.config = _make_config()
    return mock


# ------------------------------------------------------------------
# Basics
# ------------------------------------------------------------------


class TestBasics:
    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "Usage" in result.output

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert lark_gateway.__version__ in result.output


# ------------------------------------------------------------------
# check
# ------------------------------------------------------------------


class TestCheck:
    def test_all_healthy(self) -> None:
        runtime = _mock_runtime()
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 0
        assert "OK" in result.output
        runtime.stop.assert_awaited_once()

    def test_unhealthy_exits_nonzero(self) -> None:
        runtime = _mock_runtime({"feishu": False})
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_no_channels(self) -> None:
        runtime = _mock_runtime()
        runtime.channels = {}
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 1
        assert "No channels enabled" in result.output

    def test_configuration_error(self) -> None:
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch(
                "lark_gateway.cli.GatewayRuntime",
                side_effect=ConfigurationError("Channel 'feishu' is enabled but app_id/app_secret are not set"),
            ),
        ):
            result = runner.invoke(app, ["check"])
        assert result.exit_code == 1
        assert "app_id" in result.output


# ------------------------------------------------------------------
# send
# ------------------------------------------------------------------


class TestSend:
    def test_send(self) -> None:
        runtime = _mock_runtime()
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["send", "feishu", "oc_1", "hello there"])
        assert result.exit_code == 0
        runtime.send.assert_awaited_once_with("feishu", OutboundMessage(recipient="oc_1", text="hello there"))

    def test_send_unknown_channel(self) -> None:
        runtime = _mock_runtime()
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["send", "lark", "oc_1", "hi"])
        assert result.exit_code == 1
        assert "not enabled" in result.output

    def test_send_failure(self) -> None:
        runtime = _mock_runtime()
        runtime.send = AsyncMock(side_effect=TransportError("returned 500", channel="feishu"))
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["send", "feishu", "oc_1", "hi"])
        assert result.exit_code == 1
        assert "Send failed" in result.output
        runtime.stop.assert_awaited_once()


# ------------------------------------------------------------------
# run
# ------------------------------------------------------------------


class TestRun:
    def test_run(self) -> None:
        runtime = _mock_runtime()
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["run"])
        assert result.exit_code == 0
        runtime.run.assert_awaited_once()

    def test_run_reports_failed_channels(self) -> None:
        runtime = _mock_runtime()
        runtime.failed = {"feishu": TransportError("persistent connection failed")}
        with (
            patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()),
            patch("lark_gateway.cli.GatewayRuntime", return_value=runtime),
        ):
            result = runner.invoke(app, ["run"])
        assert result.exit_code == 1
        assert "persistent connection failed" in result.output


# ------------------------------------------------------------------
# config / channels
# ------------------------------------------------------------------


class TestConfigCommands:
    def test_path(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["config", "path"])
        assert "config.toml" in result.output

    def test_get(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["config", "get", "channels.feishu.app_id"])
        assert result.exit_code == 0
        assert "cli_app" in result.output

    def test_get_masks_secret(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["config", "get", "channels.feishu.app_secret"])
        assert "supe...alue" in result.output
        assert "supersecretvalue" not in result.output

    def test_get_missing_key(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["config", "get", "channels.telegram"])
        assert result.exit_code == 1


class TestChannelsCommands:
    def test_list(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["channels", "list"])
        assert result.exit_code == 0
        assert "feishu" in result.output
        assert "lark" in result.output

    def test_enable(self) -> None:
        mgr = _mock_config_manager(GatewayConfig())
        with patch("lark_gateway.cli.ConfigManager", return_value=mgr):
            result = runner.invoke(app, ["channels", "enable", "lark"])
        assert result.exit_code == 0
        saved = mgr.save.call_args.args[0]
        assert saved.channels.lark.enabled is True

    def test_disable(self) -> None:
        mgr = _mock_config_manager()
        with patch("lark_gateway.cli.ConfigManager", return_value=mgr):
            result = runner.invoke(app, ["channels", "disable", "feishu"])
        assert result.exit_code == 0
        assert mgr.save.call_args.args[0].channels.feishu.enabled is False

    def test_list_invalid_config(self) -> None:
        mgr = _mock_config_manager()
        mgr.load.side_effect = ConfigurationError("Invalid config: port is required when receive_mode is 'webhook'")
        with patch("lark_gateway.cli.ConfigManager", return_value=mgr):
            result = runner.invoke(app, ["channels", "list"])
        assert result.exit_code == 1
        assert "port is required" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_enable_invalid_config_not_saved(self) -> None:
        mgr = _mock_config_manager()
        mgr.load.side_effect = ConfigurationError("Invalid config: port is required when receive_mode is 'webhook'")
        with patch("lark_gateway.cli.ConfigManager", return_value=mgr):
            result = runner.invoke(app, ["channels", "enable", "feishu"])
        assert result.exit_code == 1
        assert "port is required" in result.output
        mgr.save.assert_not_called()

    def test_unknown_channel(self) -> None:
        with patch("lark_gateway.cli.ConfigManager", return_value=_mock_config_manager()):
            result = runner.invoke(app, ["channels", "enable", "telegram"])
        assert result.exit_code == 1
        assert "Unknown channel" in result.output
