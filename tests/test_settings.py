import pytest

from jobqueue.config.settings import (
    BackoffType,
    QueueConfig,
    Settings,
    get_settings,
)


def test_default_settings():
    """Test default settings values."""
    settings = Settings(_env_file=None)

    assert settings.app_name == "jobqueue"
    assert settings.environment == "development"
    assert settings.job_max_attempts == 3
    assert settings.job_backoff_type == BackoffType.EXPONENTIAL
    assert settings.job_backoff_base_ms == 2000
    assert settings.job_backoff_jitter == 0.0
    assert settings.job_timeout_ms is None
    assert settings.shutdown_grace_ms == 30000
    assert settings.job_keep_completed == 10
    assert settings.job_keep_failed == 50
    assert settings.job_lease_timeout_s is None
    assert settings.job_validate_types is True


def test_production_validation_blocks_debug():
    """Test that production environment blocks DEBUG=true."""
    with pytest.raises(ValueError, match="DEBUG=true is not allowed in production"):
        Settings(_env_file=None, environment="production", debug=True)


def test_invalid_knobs_are_rejected():
    with pytest.raises(ValueError, match="JOB_MAX_ATTEMPTS"):
        Settings(_env_file=None, job_max_attempts=0)

    with pytest.raises(ValueError, match="Retention caps"):
        Settings(_env_file=None, job_keep_completed=-1)

    with pytest.raises(ValueError, match="JOB_MAX_POLL_INTERVAL_MS"):
        Settings(_env_file=None, job_poll_interval_ms=500, job_max_poll_interval_ms=100)


def test_queue_config_uses_defaults():
    """Test that queue configs are built from the settings defaults."""
    settings = Settings(_env_file=None, job_max_attempts=5, job_backoff_base_ms=100)
    config = settings.queue_config("media")

    assert config.name == "media"
    assert config.max_attempts == 5
    assert config.backoff.delay_ms == 100
    assert config.backoff.jitter == 0.0
    assert config.timeout_ms is None
    assert config.keep_completed == 10
    assert config.keep_failed == 50


def test_queue_config_overlays_queue_entries_and_overrides():
    settings = Settings(
        _env_file=None,
        job_max_attempts=5,
        queues={"media": QueueConfig(name="media", keep_completed=2, concurrency=4)},
    )

    config = settings.queue_config("media", concurrency=8)

    # Explicit queue entry wins over defaults, overrides win over both
    assert config.keep_completed == 2
    assert config.concurrency == 8
    assert config.max_attempts == 5


def test_queues_from_environment(monkeypatch):
    """Test per-queue configuration given as JSON in the environment."""
    monkeypatch.setenv("QUEUES", '{"email": {"name": "email", "max_attempts": 7}}')

    settings = Settings(_env_file=None)

    assert settings.queue_config("email").max_attempts == 7


def test_get_settings_returns_shared_instance():
    assert isinstance(get_settings(), Settings)
    assert get_settings() is get_settings()


def test_job_timeout(monkeypatch):
    monkeypatch.setenv("JOB_TIMEOUT_MS", "1500")

    settings = Settings(_env_file=None)

    assert settings.queue_config("media").timeout_ms == 1500
    assert settings.queue_config("media", timeout_ms=None).timeout_ms is None
    with pytest.raises(ValueError, match="timeout_ms"):
        settings.queue_config("media", timeout_ms=0)
