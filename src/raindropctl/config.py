import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

TOKEN_ENV_VAR = "RAINDROP_TOKEN"


class ConfigError(Exception):
    pass


class Config(BaseModel):
    token: Optional[str] = None


CONFIG_DIR = Path.home() / ".config" / "raindropctl"
CONFIG_FILE = CONFIG_DIR / "config.json"


def load_config() -> Config:
    """Load configuration from disk. A missing or unreadable file counts as logged out."""
    if not CONFIG_FILE.exists():
        return Config()
    try:
        with open(CONFIG_FILE, "r") as f:
            return Config.model_validate(json.load(f))
    except (OSError, ValueError):
        return Config()


def save_config(config: Config) -> None:
    """Save configuration to disk with secure permissions."""
    if not config.token or not config.token.strip():
        raise ConfigError("Invalid token: token must be a non-empty string")

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    # Set directory permissions to 700 (drwx------)
    CONFIG_DIR.chmod(0o700)

    # Create file with 600 permissions (rw-------)
    if not CONFIG_FILE.exists():
        CONFIG_FILE.touch(mode=0o600)
    else:
        CONFIG_FILE.chmod(0o600)

    with open(CONFIG_FILE, "w") as f:
        json.dump(config.model_dump(), f, indent=2)


def delete_config() -> None:
    """Delete the configuration file."""
    if CONFIG_FILE.exists():
        CONFIG_FILE.unlink()


def get_token() -> Optional[str]:
    """The environment override wins over the stored token."""
    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        return env_token.strip() or None
    return load_config().token or None
