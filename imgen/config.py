"""
Configuration for imgen.

The API key is resolved from (highest priority first):
- the `--api-key` command line flag
- the `OPENAI_API_KEY` environment variable, optionally loaded from a `.env` file
- the user config file at `$XDG_CONFIG_HOME/imgen/config.json` (or `~/.config/imgen/config.json`)
"""

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from loguru import logger

from .exceptions import ConfigError, ValidationError

APPLICATION = "imgen"
CONFIG_FILE_NAME = "config.json"

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_TIMEOUT = 300


@dataclass
class Config:
    """Represents the persisted user configuration."""

    openai_api_key: Optional[str] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load the config from the default location.

        A missing file gives an empty config. An unreadable file is logged and
        also gives an empty config, so a broken file never blocks a run that
        has the key in the environment.
        """
        path = config_path()
        if path is None:
            return cls()

        try:
            config = cls.load_from_path(path)
        except ConfigError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return cls()

        if config is None:
            return cls()

        logger.debug(f"Config loaded from: {path}")
        return config

    @classmethod
    def load_from_path(cls, path: Path) -> Optional["Config"]:
        """Load the config from `path`. Returns `None` if the file doesn't exist."""
        logger.debug(f"Attempting to load config from: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"I/O error accessing config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a JSON object in {path}")

        return cls(openai_api_key=data.get("openai_api_key"))

    def save(self) -> Path:
        """Save the config to the default location and return the path."""
        path = config_path()
        if path is None:
            raise ConfigError("Could not determine configuration location")
        self.save_to_path(path)
        return path

    def save_to_path(self, path: Path) -> None:
        """Save the config to `path`, creating parent directories as needed."""
        logger.debug(f"Attempting to save config to: {path}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            # The file holds a secret: -rw-------
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=4)
            os.chmod(path, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to save config to {path}: {e}") from e

        logger.info(f"Config saved to: {path}")


def config_dir() -> Optional[Path]:
    """Platform config directory for imgen, or `None` if it can't be determined."""
    base = os.getenv("XDG_CONFIG_HOME")
    if base:
        return Path(base) / APPLICATION

    if os.name == "nt" and os.getenv("APPDATA"):
        return Path(os.environ["APPDATA"]) / APPLICATION

    home = os.getenv("HOME")
    if home:
        return Path(home) / ".config" / APPLICATION
    return None


def config_path() -> Optional[Path]:
    directory = config_dir()
    if directory is None:
        return None
    return directory / CONFIG_FILE_NAME


def load_env(env_file: Optional[Path] = None) -> bool:
    """Populate `os.environ` from a dotenv file. Existing variables are kept."""
    if env_file is None:
        env_file = Path(".env")
    if not env_file.is_file():
        return False
    logger.debug(f"Loading environment from {env_file}")
    return load_dotenv(env_file, override=False)


def resolve_api_key(cli_key: Optional[str] = None) -> Optional[str]:
    """Resolve the API key with flag > environment > config file precedence."""
    if cli_key:
        return cli_key

    env_key = os.getenv("OPENAI_API_KEY")
    if env_key:
        return env_key

    return Config.load().openai_api_key


def mask_key(api_key: Optional[str]) -> str:
    """Render a key for display without leaking it."""
    if not api_key:
        return "(not set)"
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:3]}...{api_key[-4:]}"


def load_server_config() -> Dict[str, Any]:
    """Load web server settings from environment variables."""
    config = {}
    config["host"] = os.getenv("IMGEN_HOST", DEFAULT_HOST)
    config["port"] = _int_env("IMGEN_PORT", DEFAULT_PORT)
    config["base_url"] = os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)
    config["timeout"] = _int_env("IMGEN_TIMEOUT", DEFAULT_TIMEOUT)
    return config


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer, got: {value!r}") from e
