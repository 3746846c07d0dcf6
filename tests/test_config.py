from suitey.config import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_STOP_TIMEOUT_SECONDS,
    Settings,
    load_settings,
)
from suitey.docker_control import DEFAULT_CONTAINER_PREFIX
from suitey.memory import DEFAULT_MEMORY_HEADROOM


def test_defaults_with_empty_environment():
    assert load_settings({}) == Settings()


def test_reads_environment_values():
    settings = load_settings(
        {
            "SUITEY_MAX_PARALLEL": "3",
            "SUITEY_TIMEOUT_SECONDS": "90",
            "SUITEY_CONTAINER_PREFIX": "ci-suite",
            "SUITEY_STOP_TIMEOUT_SECONDS": "2.5",
            "SUITEY_LOG_LEVEL": "debug",
        }
    )

    assert settings.max_parallel == 3
    assert settings.timeout_seconds == 90.0
    assert settings.container_prefix == "ci-suite"
    assert settings.stop_timeout_seconds == 2.5
    assert settings.log_level == "DEBUG"


def test_invalid_values_fall_back_with_warning(capsys):
    settings = load_settings(
        {
            "SUITEY_MAX_PARALLEL": "lots",
            "SUITEY_STOP_TIMEOUT_SECONDS": "-1",
        }
    )

    assert settings.max_parallel is None
    assert settings.stop_timeout_seconds == DEFAULT_STOP_TIMEOUT_SECONDS
    assert settings.container_prefix == DEFAULT_CONTAINER_PREFIX
    assert settings.log_level == DEFAULT_LOG_LEVEL
    err = capsys.readouterr().err
    assert "SUITEY_MAX_PARALLEL" in err
    assert "SUITEY_STOP_TIMEOUT_SECONDS" in err


def test_memory_settings_from_environment():
    settings = load_settings(
        {
            "SUITEY_MEMORY_HEADROOM": "0.3",
            "SUITEY_MAX_MEMORY_PER_CONTAINER_GB": "2",
            "SUITEY_TOTAL_MEMORY_LIMIT_GB": "16",
        }
    )

    assert settings.memory_headroom == 0.3
    assert settings.max_memory_per_container_gb == 2.0
    assert settings.total_memory_limit_gb == 16.0


def test_out_of_range_headroom_falls_back(capsys):
    settings = load_settings({"SUITEY_MEMORY_HEADROOM": "1.2"})

    assert settings.memory_headroom == DEFAULT_MEMORY_HEADROOM
    assert "SUITEY_MEMORY_HEADROOM" in capsys.readouterr().err
