"""
Configuration management for crepo.

Handles loading and saving user configuration from:
- $CREPO_CONFIG, if set
- XDG config directory: ~/.config/crepo/config.json
- Fallback: ~/.crepo/config.json
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CREPO_CONFIG"


@dataclass
class StorageConfig:
    """Where repositories live and how the database is driven."""
    default_path: Optional[str] = None
    echo_sql: bool = False


@dataclass
class SessionConfig:
    """Defaults for repository sessions."""
    default_workspace: str = "default"
    transactions: bool = True


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    color: bool = True


@dataclass
class CrepoConfig:
    """Main crepo configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "storage": asdict(self.storage),
            "session": asdict(self.session),
            "cli": asdict(self.cli),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrepoConfig':
        """Create from dictionary."""
        return cls(
            storage=StorageConfig(**data.get("storage", {})),
            session=SessionConfig(**data.get("session", {})),
            cli=CLIConfig(**data.get("cli", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    1. $CREPO_CONFIG if set
    2. $XDG_CONFIG_HOME/crepo/config.json (usually ~/.config/crepo/config.json)
    3. Fallback: ~/.crepo/config.json

    Returns:
        Path to config file
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()

    xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "crepo"
    else:
        config_dir = Path.home() / ".crepo"

    return config_dir / "config.json"


def load_config() -> CrepoConfig:
    """
    Load configuration from file.

    Returns:
        CrepoConfig instance with loaded values or defaults
    """
    config_path = get_config_path()

    if not config_path.exists():
        return CrepoConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return CrepoConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
        return CrepoConfig()


def save_config(config: CrepoConfig) -> Path:
    """
    Save configuration to file.

    Args:
        config: Configuration to save

    Returns:
        Path the configuration was written to
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def ensure_config_exists() -> Path:
    """
    Ensure configuration file exists, creating with defaults if not.

    Returns:
        Path to config file
    """
    config_path = get_config_path()

    if not config_path.exists():
        save_config(CrepoConfig())
        logger.info(f"Created default configuration at {config_path}")

    return config_path


def update_config(
    # Storage settings
    storage_default_path: Optional[str] = None,
    storage_echo_sql: Optional[bool] = None,
    # Session settings
    session_default_workspace: Optional[str] = None,
    session_transactions: Optional[bool] = None,
    # CLI settings
    cli_verbose: Optional[bool] = None,
    cli_color: Optional[bool] = None,
) -> CrepoConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.
    """
    config = load_config()

    if storage_default_path is not None:
        config.storage.default_path = storage_default_path
    if storage_echo_sql is not None:
        config.storage.echo_sql = storage_echo_sql

    if session_default_workspace is not None:
        config.session.default_workspace = session_default_workspace
    if session_transactions is not None:
        config.session.transactions = session_transactions

    if cli_verbose is not None:
        config.cli.verbose = cli_verbose
    if cli_color is not None:
        config.cli.color = cli_color

    save_config(config)
    return config
