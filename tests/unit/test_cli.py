"""
Tests for the pulsecheck CLI.
"""

import re
import sys
from collections.abc import Iterator

import pytest
from typer.testing import CliRunner

from pulsecheck import __version__
from pulsecheck.cli import app
from pulsecheck.config import get_settings
from pulsecheck.engine.registry import reset_registry


@pytest.fixture
def runner() -> Iterator[CliRunner]:
    reset_registry()
    yield CliRunner()
    reset_registry()


class TestCLI:
    """Tests for CLI commands."""

    def test_version(self, runner: CliRunner) -> None:
        """Test --version prints the version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        """Test --help shows the available commands."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("strategies", "schema", "dns", "script", "info"):
            assert command in result.output

    def test_strategies(self, runner: CliRunner) -> None:
        """Test strategies lists the bundled strategies."""
        result = runner.invoke(app, ["strategies"])
        assert result.exit_code == 0
        assert "dns" in result.output
        assert "http" in result.output
        assert "script" in result.output

    def test_info(self, runner: CliRunner) -> None:
        """Test info shows version and settings."""
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert __version__ in result.output
        assert "30000ms" in result.output

    def test_schema(self, runner: CliRunner) -> None:
        """Test schema prints the strategy document."""
        result = runner.invoke(app, ["schema", "dns"])
        assert result.exit_code == 0
        assert '"id": "dns"' in result.output
        assert "config_schema" in result.output

    def test_collector_schema(self, runner: CliRunner) -> None:
        """Test schema --collector prints one collector's document."""
        result = runner.invoke(app, ["schema", "dns", "--collector", "dns.lookup"])
        assert result.exit_code == 0
        assert '"id": "dns.lookup"' in result.output

    def test_schema_not_found(self, runner: CliRunner) -> None:
        """Test unknown strategies exit with an error."""
        result = runner.invoke(app, ["schema", "nope"])
        assert result.exit_code == 1
        assert "Not found" in result.output

    def test_script_healthy(self, runner: CliRunner) -> None:
        """Test a successful script exits 0."""
        result = runner.invoke(app, ["script", sys.executable, "--", "-c", "print('fine')"])
        assert result.exit_code == 0
        assert "HEALTHY" in result.output

    def test_script_unhealthy(self, runner: CliRunner) -> None:
        """Test a failing script exits 1."""
        result = runner.invoke(
            app, ["script", sys.executable, "--timeout", "5000", "--", "-c", "import sys; sys.exit(4)"]
        )
        assert result.exit_code == 1
        assert "UNHEALTHY" in result.output
        assert "Exit code: 4" in result.output

    def test_invalid_config_exits_2(self, runner: CliRunner) -> None:
        """Test configuration errors exit with status 2."""
        result = runner.invoke(app, ["dns", "example.com", "--type", "SRV"])
        assert result.exit_code == 2
        assert "Error" in result.output


class TestSavedConfigurations:
    """Tests for configurations saved to the store file."""

    @pytest.fixture
    def store_path(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
        path = tmp_path / "store.json"
        monkeypatch.setenv("PULSECHECK_STORE_PATH", str(path))
        get_settings.cache_clear()
        yield str(path)
        get_settings.cache_clear()

    def test_save_list_and_rerun(self, runner: CliRunner, store_path: str) -> None:
        """Test a saved one-off check can be listed and run again."""
        saved = runner.invoke(app, ["script", sys.executable, "--save", "--", "-c", "print('ok')"])
        assert saved.exit_code == 0
        match = re.search(r"Saved configuration: (\S+)", saved.output)
        assert match is not None
        configuration_id = match.group(1)

        listed = runner.invoke(app, ["configs"])
        assert listed.exit_code == 0
        assert "script.execute" in listed.output

        rerun = runner.invoke(app, ["run", configuration_id, "--system", "web-1"])
        assert rerun.exit_code == 0
        assert "HEALTHY" in rerun.output

    def test_run_unknown_configuration(self, runner: CliRunner, store_path: str) -> None:
        """Test running a configuration that was never saved exits 2."""
        result = runner.invoke(app, ["run", "missing"])
        assert result.exit_code == 2
        assert "not found" in result.output

    def test_store_path_required(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test saved-configuration commands need PULSECHECK_STORE_PATH."""
        monkeypatch.delenv("PULSECHECK_STORE_PATH", raising=False)
        get_settings.cache_clear()

        result = runner.invoke(app, ["configs"])

        assert result.exit_code == 2
        assert "PULSECHECK_STORE_PATH" in result.output
