import pytest
from unittest.mock import patch
from pydantic import ValidationError
from src.config.settings import Settings


def test_real_settings_defaults(tmp_path):
    """Real Settings class reads limits and credentials from the environment."""
    with patch.dict("os.environ", {
        "ANTHROPIC_API_KEY": "sk-ant-api-test-key",
        "OXYLABS_USERNAME": "user",
        "OXYLABS_PASSWORD": "pass",
        "DATA_DIR": str(tmp_path / "data"),
        "LOG_DIR": str(tmp_path / "logs"),
    }, clear=True):
        settings = Settings(_env_file=None)

    assert settings.max_batch_size == 20
    assert settings.stale_job_minutes == 30
    assert settings.rufus_success_threshold == 0.70
    assert settings.get_secret("anthropic_api_key") == "sk-ant-api-test-key"
    assert settings.get_secret("apify_api_token") is None
    assert settings.configured_providers() == ["oxylabs"]
    assert (tmp_path / "data").is_dir()


def test_settings_rejects_malformed_anthropic_key(tmp_path):
    with patch.dict("os.environ", {
        "ANTHROPIC_API_KEY": "not-a-key",
        "DATA_DIR": str(tmp_path),
        "LOG_DIR": str(tmp_path),
    }, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_settings_threshold_bounds(tmp_path):
    with patch.dict("os.environ", {
        "RUFUS_SUCCESS_THRESHOLD": "1.5",
        "DATA_DIR": str(tmp_path),
        "LOG_DIR": str(tmp_path),
    }, clear=True):
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


def test_settings_both_research_providers(tmp_path):
    with patch.dict("os.environ", {
        "OXYLABS_USERNAME": "user",
        "OXYLABS_PASSWORD": "pass",
        "APIFY_API_TOKEN": "token",
        "DATA_DIR": str(tmp_path),
        "LOG_DIR": str(tmp_path),
    }, clear=True):
        settings = Settings(_env_file=None)
    assert settings.configured_providers() == ["oxylabs", "apify"]
