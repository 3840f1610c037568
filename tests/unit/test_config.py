"""Unit tests for configuration loading."""

import os
from pathlib import Path

import pytest

from voicescribe.config import VoiceScribeConfig
from voicescribe.errors import ConfigurationError


@pytest.mark.unit
class TestVoiceScribeConfig:
    """Test cases for VoiceScribeConfig."""

    def test_defaults(self, make_config):
        config = make_config()

        assert config.get('speech_to_text.model') == 'whisper-1'
        assert config.get('labeling.model') == 'gpt-4'
        assert config.get('pricing.speech_to_text_per_minute') == 0.006
        assert config.get('pricing.labeling_per_thousand_tokens') == 0.03
        assert config.get_app_url() == 'http://localhost:3000'
        assert config.get('no.such.key', 'fallback') == 'fallback'

    def test_yaml_values_merge_with_defaults(self, make_config):
        config = make_config({"labeling": {"temperature": 0.5}, "app": {"url": "https://scribe.test/"}})

        assert config.get('labeling.temperature') == 0.5
        assert config.get('labeling.model') == 'gpt-4'
        assert config.get_app_url() == 'https://scribe.test'
        assert config.get_server_url() == 'https://scribe.test'

    def test_environment_overrides(self, make_config):
        config = make_config(
            {"openai": {"api_key": "from-yaml"}},
            {"OPENAI_API_KEY": "from-env", "BLOB_READ_WRITE_TOKEN": "blob-token"},
        )

        assert config.get_openai_api_key() == 'from-env'
        assert config.get('storage.blob_token') == 'blob-token'

    def test_first_matching_variable_wins(self, make_config):
        config = make_config(environ={
            "DATABASE_URL": "sqlite:///first.db",
            "POSTGRES_URL": "postgresql://db/second",
            "NEXT_PUBLIC_APP_URL": "https://public.test",
        })

        assert config.get_database_url() == 'sqlite:///first.db'
        assert config.get_app_url() == 'https://public.test'

    def test_relative_paths_resolved_against_config_file(self, make_config, temp_data_dir):
        config = make_config({"storage": {"data_directory": "recordings"}})

        assert config.get_data_directory() == str(Path(temp_data_dir) / "recordings")
        assert os.path.isabs(config.get('logging.file_path'))
        assert config.get_database_url() == f"sqlite:///{Path(temp_data_dir) / 'recordings' / 'voicescribe.db'}"

    def test_missing_settings(self, make_config):
        config = make_config()

        assert config.missing_settings() == ['OPENAI_API_KEY', 'BLOB_READ_WRITE_TOKEN']
        assert not config.has_speech_to_text()
        assert not config.has_labeling()
        assert not config.has_object_storage()

    def test_google_backend_requires_credentials(self, make_config):
        config = make_config({"speech_to_text": {"backend": "Google"}, "storage": {"backend": "local"}},
                             {"OPENAI_API_KEY": "key"})

        assert config.get_stt_backend_name() == 'google'
        assert config.missing_settings() == ['GOOGLE_APPLICATION_CREDENTIALS']
        assert not config.has_speech_to_text()
        assert config.has_labeling()

    def test_validate(self, make_config):
        with pytest.raises(ConfigurationError) as exc_info:
            make_config().validate()

        assert exc_info.value.missing == ['OPENAI_API_KEY', 'BLOB_READ_WRITE_TOKEN']
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_validate_passes(self, test_config):
        test_config.validate()
        assert test_config.has_object_storage()

    def test_set(self, make_config):
        config = make_config()
        config.set('server.port', 8080)
        config.set('extra.flag', True)

        assert config.get('server.port') == 8080
        assert config.get('extra.flag') is True

    def test_missing_file(self, temp_data_dir):
        with pytest.raises(FileNotFoundError):
            VoiceScribeConfig(str(Path(temp_data_dir) / "absent.yaml"))

    def test_invalid_yaml(self, temp_data_dir):
        path = Path(temp_data_dir) / "broken.yaml"
        path.write_text("storage: [unclosed", encoding="utf-8")

        with pytest.raises(ValueError):
            VoiceScribeConfig(str(path), environ={})
