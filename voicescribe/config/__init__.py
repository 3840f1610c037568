"""YAML + environment configuration loader for VoiceScribe."""

import os
import copy
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
import logging

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "voicescribe.yaml"
DEFAULT_APP_URL = "http://localhost:3000"

DEFAULTS: Dict[str, Any] = {
    "app": {"url": DEFAULT_APP_URL},
    "server": {"host": "0.0.0.0", "port": 3000},
    "client": {"server_url": None},
    "openai": {"api_key": None, "base_url": "https://api.openai.com/v1", "timeout_seconds": 120.0},
    "speech_to_text": {"backend": "openai", "model": "whisper-1", "language": "en"},
    "labeling": {"model": "gpt-4", "temperature": 0.3, "max_tokens": 2000},
    "pricing": {
        "speech_to_text_per_minute": 0.006,
        "labeling_per_thousand_tokens": 0.03,
    },
    "google_cloud": {"credentials_path": None, "language": "en-US"},
    "storage": {
        "backend": "vercel",
        "blob_token": None,
        "data_directory": "data",
        "timeout_seconds": 60.0,
    },
    "database": {"url": None},
    "audio": {"sample_rate": 16000, "chunk_size": 1024, "channels": 1},
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/voicescribe.log",
        "console_output": True,
    },
}

# Environment variable -> dot-notation key. First match wins.
ENV_OVERRIDES = [
    ("OPENAI_API_KEY", "openai.api_key"),
    ("BLOB_READ_WRITE_TOKEN", "storage.blob_token"),
    ("DATABASE_URL", "database.url"),
    ("POSTGRES_URL", "database.url"),
    ("APP_URL", "app.url"),
    ("NEXT_PUBLIC_APP_URL", "app.url"),
    ("GOOGLE_APPLICATION_CREDENTIALS", "google_cloud.credentials_path"),
]


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class VoiceScribeConfig:
    """VoiceScribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, uses voicescribe.yaml
                        in the current directory when present, else defaults only.
            environ: Environment mapping for overrides (defaults to os.environ)
        """
        if config_path:
            self.config_file: Optional[Path] = Path(config_path)
            if not self.config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_file}")
        elif Path(DEFAULT_CONFIG_NAME).exists():
            self.config_file = Path(DEFAULT_CONFIG_NAME)
        else:
            self.config_file = None

        self.environ = os.environ if environ is None else environ
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load defaults, the YAML file and environment overrides."""
        config = copy.deepcopy(DEFAULTS)

        if self.config_file is not None:
            logger.info(f"Loading configuration from: {self.config_file}")
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in configuration file: {e}")
            if not isinstance(file_config, dict):
                raise ValueError("Configuration file must contain a mapping")
            _merge(config, file_config)

        self._apply_environment(config)
        self._resolve_paths(config)
        return config

    def _apply_environment(self, config: Dict[str, Any]) -> None:
        applied = set()
        for env_name, key_path in ENV_OVERRIDES:
            if key_path in applied:
                continue
            value = self.environ.get(env_name)
            if value:
                section, key = key_path.split('.')
                config[section][key] = value
                applied.add(key_path)
                logger.debug(f"Configuration key '{key_path}' taken from ${env_name}")

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        base_dir = self.config_file.parent if self.config_file is not None else Path.cwd()

        data_dir = config['storage'].get('data_directory')
        if data_dir and not os.path.isabs(data_dir):
            config['storage']['data_directory'] = str(base_dir / data_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(base_dir / log_path)

        creds_path = config['google_cloud'].get('credentials_path')
        if creds_path and not os.path.isabs(creds_path):
            config['google_cloud']['credentials_path'] = str(base_dir / creds_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'pricing.speech_to_text_per_minute').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found or unset

        Returns:
            Configuration value or default
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return default if value is None else value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    # Convenience accessors

    def get_app_url(self) -> str:
        return self.get('app.url', DEFAULT_APP_URL).rstrip('/')

    def get_server_url(self) -> str:
        """URL the recorder client talks to."""
        return (self.get('client.server_url') or self.get_app_url()).rstrip('/')

    def get_data_directory(self) -> str:
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())

    def get_database_url(self) -> str:
        url = self.get('database.url')
        if url:
            return url
        return f"sqlite:///{Path(self.get_data_directory()) / 'voicescribe.db'}"

    def get_openai_api_key(self) -> Optional[str]:
        return self.get('openai.api_key')

    def get_stt_backend_name(self) -> str:
        return self.get('speech_to_text.backend', 'openai').lower()

    def has_speech_to_text(self) -> bool:
        if self.get_stt_backend_name() == 'google':
            return bool(self.get('google_cloud.credentials_path'))
        return bool(self.get_openai_api_key())

    def has_labeling(self) -> bool:
        return bool(self.get_openai_api_key())

    def has_object_storage(self) -> bool:
        if self.get('storage.backend', 'vercel') == 'local':
            return True
        return bool(self.get('storage.blob_token'))

    def missing_settings(self) -> List[str]:
        """List the environment names of required settings that are not configured."""
        missing = []
        if not self.get_openai_api_key():
            missing.append('OPENAI_API_KEY')
        if self.get_stt_backend_name() == 'google' and not self.get('google_cloud.credentials_path'):
            missing.append('GOOGLE_APPLICATION_CREDENTIALS')
        if self.get('storage.backend', 'vercel') != 'local' and not self.get('storage.blob_token'):
            missing.append('BLOB_READ_WRITE_TOKEN')
        return missing

    def validate(self) -> None:
        """Raise ConfigurationError listing every missing required setting."""
        missing = self.missing_settings()
        if missing:
            raise ConfigurationError(missing)
