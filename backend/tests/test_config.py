"""Tests for settings loading from YAML and the environment."""

import pytest

from reelpipe.config import CONFIG_FILE_ENV, Settings


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("REELPIPE_PIPELINE__MAX_CONCURRENT_JOBS", "REELPIPE_PIPELINE__MIN_TOTAL_DURATION"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_defaults_without_config_file(isolated_env, monkeypatch):
    monkeypatch.setenv(CONFIG_FILE_ENV, str(isolated_env / "absent.yaml"))
    settings = Settings()
    assert settings.pipeline.min_total_duration == 25.0
    assert settings.pipeline.max_concurrent_jobs == 2


def test_yaml_file_from_environment_variable(isolated_env, monkeypatch):
    config_file = isolated_env / "reel.yaml"
    config_file.write_text("pipeline:\n  max_concurrent_jobs: 5\n  min_total_duration: 20\n")
    monkeypatch.setenv(CONFIG_FILE_ENV, str(config_file))

    settings = Settings()

    assert settings.pipeline.max_concurrent_jobs == 5
    assert settings.pipeline.min_total_duration == 20.0


def test_environment_overrides_yaml(isolated_env, monkeypatch):
    config_file = isolated_env / "reel.yaml"
    config_file.write_text("pipeline:\n  max_concurrent_jobs: 5\n")
    monkeypatch.setenv(CONFIG_FILE_ENV, str(config_file))
    monkeypatch.setenv("REELPIPE_PIPELINE__MAX_CONCURRENT_JOBS", "7")

    assert Settings().pipeline.max_concurrent_jobs == 7


def test_yaml_must_be_a_mapping(isolated_env, monkeypatch):
    config_file = isolated_env / "reel.yaml"
    config_file.write_text("- just\n- a list\n")
    monkeypatch.setenv(CONFIG_FILE_ENV, str(config_file))

    with pytest.raises(ValueError, match="mapping"):
        Settings()
