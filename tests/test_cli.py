"""Tests for CLI commands"""

import re
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from cli import __version__
from cli.client.base import EngineClient
from cli.main import app
from cli.utils.config_manager import config
from jobqueue.config.settings import get_settings

JOB_ID = re.compile(r"Job ID: ([0-9a-f-]{36})")


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Isolated config directory and database for every CLI test"""
    config_dir = tmp_path / "config"
    monkeypatch.setattr(config, "config_dir", config_dir)
    monkeypatch.setattr(config, "config_file", config_dir / "config.yaml")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("JOBQUEUE_SETUP", raising=False)
    # Wide enough that tables never wrap job IDs
    monkeypatch.setenv("COLUMNS", "200")
    # Logging setup would bind loggers to the runner's short-lived stdout
    monkeypatch.setattr("jobqueue.main.setup_logging", lambda settings: None)
    return tmp_path


def enqueue(runner, *args) -> str:
    result = runner.invoke(app, ["enqueue", *args])
    assert result.exit_code == 0, result.output
    return JOB_ID.search(result.output).group(1)


class TestMainCommands:
    """Test main CLI commands"""

    def test_version_option(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"jobqueue CLI v{__version__}" in result.output

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Version Info" in result.output

    def test_status_lists_builtin_queue(self, runner):
        """Test status shows metrics of the built-in maintenance queue"""
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0, result.output
        assert "cleanup" in result.output

    def test_status_unknown_queue(self, runner):
        result = runner.invoke(app, ["status", "--queue", "missing"])
        assert result.exit_code == 1
        assert "Queue 'missing' not found" in result.output

    def test_enqueue_invalid_json(self, runner):
        result = runner.invoke(app, ["enqueue", "cleanup", "noop", "--payload", "{oops"])
        assert result.exit_code == 1
        assert "Payload is not valid JSON" in result.output

    def test_enqueue_unregistered_type(self, runner):
        result = runner.invoke(app, ["enqueue", "cleanup", "resize"])
        assert result.exit_code == 1
        assert "No handler registered for cleanup:resize" in result.output

    def test_health(self, runner):
        result = runner.invoke(app, ["health"])
        assert result.exit_code == 0, result.output
        assert "Healthy" in result.output

    def test_health_reports_paused_queue(self, runner):
        assert runner.invoke(app, ["queues", "pause", "cleanup"]).exit_code == 0

        result = runner.invoke(app, ["health"])
        assert result.exit_code == 1
        assert "Unhealthy" in result.output
        assert "Queue is paused" in result.output


class TestJobWorkflow:
    """Test submitting jobs, draining them with a worker and inspecting them"""

    def test_enqueue_and_show_pending_job(self, runner):
        job_id = enqueue(runner, "cleanup", "noop", "--payload", '{"sleep_ms": 1}')

        result = runner.invoke(app, ["jobs", "show", job_id])
        assert result.exit_code == 0, result.output
        assert "pending" in result.output
        assert "No log entries" in result.output

    def test_worker_drain_processes_jobs(self, runner):
        ok_id = enqueue(runner, "cleanup", "noop", "--payload", '{"sleep_ms": 1}')
        failed_id = enqueue(runner, "cleanup", "noop", "--payload", '{"fail": "nope"}')

        result = runner.invoke(app, ["worker", "start", "--queue", "cleanup", "--drain"])
        assert result.exit_code == 0, result.output
        assert "Worker pool stopped" in result.output

        result = runner.invoke(app, ["jobs", "show", ok_id])
        assert "completed" in result.output
        assert "Sleeping 1ms" in result.output

        result = runner.invoke(app, ["jobs", "list", "cleanup", "--state", "failed"])
        assert result.exit_code == 0
        assert failed_id in result.output
        assert "nope" in result.output

    def test_retry_and_remove(self, runner):
        job_id = enqueue(runner, "cleanup", "noop", "--payload", '{"fail": "nope"}')
        runner.invoke(app, ["worker", "start", "--queue", "cleanup", "--drain"])

        result = runner.invoke(app, ["jobs", "retry", job_id])
        assert result.exit_code == 0, result.output
        assert "pending again" in result.output

        # Only failed jobs can be retried
        result = runner.invoke(app, ["jobs", "retry", job_id])
        assert result.exit_code == 1
        assert "nothing to retry" in result.output

        result = runner.invoke(app, ["jobs", "remove", job_id, "--yes"])
        assert result.exit_code == 0
        assert "Removed job" in result.output

        result = runner.invoke(app, ["jobs", "show", job_id])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_empty(self, runner):
        result = runner.invoke(app, ["jobs", "list", "cleanup"])
        assert result.exit_code == 0
        assert "No pending jobs in 'cleanup'" in result.output

    def test_show_invalid_job_id(self, runner):
        result = runner.invoke(app, ["jobs", "show", "not-a-uuid"])
        assert result.exit_code == 2

    def test_show_missing_job(self, runner):
        result = runner.invoke(app, ["jobs", "show", str(uuid4())])
        assert result.exit_code == 1
        assert "Failed to load job" in result.output

    def test_paused_queue_is_not_drained(self, runner):
        job_id = enqueue(runner, "cleanup", "noop")
        runner.invoke(app, ["queues", "pause", "cleanup"])

        runner.invoke(app, ["worker", "start", "--queue", "cleanup", "--drain"])
        assert "pending" in runner.invoke(app, ["jobs", "show", job_id]).output

        result = runner.invoke(app, ["queues", "resume", "cleanup"])
        assert "resumed" in result.output
        runner.invoke(app, ["worker", "start", "--queue", "cleanup", "--drain"])
        assert "completed" in runner.invoke(app, ["jobs", "show", job_id]).output


class TestQueueCommands:
    """Test queue administration commands"""

    def test_list_queues(self, runner):
        result = runner.invoke(app, ["queues", "list"])
        assert result.exit_code == 0
        assert "cleanup" in result.output

    def test_clean_completed_jobs(self, runner):
        for _ in range(2):
            enqueue(runner, "cleanup", "noop")
        runner.invoke(app, ["worker", "start", "--queue", "cleanup", "--drain"])

        result = runner.invoke(app, ["queues", "clean", "cleanup"])
        assert result.exit_code == 0, result.output
        assert "Deleted 2 completed jobs from 'cleanup'" in result.output

    def test_clean_rejects_unfinished_state(self, runner):
        result = runner.invoke(app, ["queues", "clean", "cleanup", "--state", "active"])
        assert result.exit_code == 1
        assert "Only completed and failed jobs can be cleaned" in result.output

    def test_pause_unknown_queue(self, runner):
        result = runner.invoke(app, ["queues", "pause", "missing"])
        assert result.exit_code == 1
        assert "Failed to pause queue" in result.output


class TestConfigCommands:
    """Test configuration commands"""

    def test_set_and_get(self, runner):
        result = runner.invoke(app, ["config", "set", "display.jobs_per_page", "50"])
        assert result.exit_code == 0
        assert config.get("display.jobs_per_page") == 50

        result = runner.invoke(app, ["config", "get", "display.jobs_per_page"])
        assert "50" in result.output

    def test_log_level_is_normalized(self, runner):
        result = runner.invoke(app, ["config", "set", "worker.log_level", "debug"])
        assert result.exit_code == 0
        assert config.get("worker.log_level") == "DEBUG"

    @pytest.mark.parametrize(
        "key, value, message",
        [
            ("database.url", "jobqueue.db", "Database URL must look like"),
            ("worker.setup", "myapp.jobs", "Setup hook must look like"),
            ("display.log_level", "LOUD", "Log level must be one of"),
            ("display.jobs_per_page", "many", "jobs_per_page must be a positive number"),
        ],
    )
    def test_set_invalid_values(self, runner, key, value, message):
        result = runner.invoke(app, ["config", "set", key, value])
        assert result.exit_code == 1
        assert message in result.output
        assert not config.config_file.exists()

    def test_get_missing_key(self, runner):
        result = runner.invoke(app, ["config", "get", "display.colour"])
        assert result.exit_code == 0
        assert "Key 'display.colour' not found" in result.output

    def test_show_and_reset(self, runner):
        runner.invoke(app, ["config", "set", "display.jobs_per_page", "5"])

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "jobs_per_page" in result.output

        result = runner.invoke(app, ["config", "reset", "--yes"])
        assert result.exit_code == 0
        assert config.get("display.jobs_per_page") == 20

    def test_path(self, runner):
        result = runner.invoke(app, ["config", "path"])
        assert result.exit_code == 0
        assert "will be created on first change" in result.output

    def test_setup_hook_from_config(self, runner):
        """Test that a bad setup hook is reported instead of crashing"""
        runner.invoke(app, ["config", "set", "worker.setup", "jobqueue.nope:setup"])

        result = runner.invoke(app, ["queues", "list"])
        assert result.exit_code == 1
        assert "Cannot import setup module" in result.output


class TestEngineClient:
    """Test the engine client settings"""

    def test_settings_follow_environment_and_cli_config(self, cli_env):
        url = f"sqlite+aiosqlite:///{cli_env / 'other.db'}"
        client = EngineClient(url, log_level="ERROR")

        assert client.settings.database_url == url
        assert client.settings.log_level == "ERROR"
        assert client.settings.job_max_attempts == get_settings().job_max_attempts
        # The shared settings are not modified
        assert get_settings().database_url != url
