"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Config field -> environment variable
ENV_VARS = {
    'host': 'TFTP_HOST',
    'port': 'TFTP_PORT',
    'root_dir': 'TFTP_ROOT',
    'ack_timeout': 'TFTP_TIMEOUT',
    'max_retries': 'TFTP_MAX_RETRIES',
    'max_transfers': 'TFTP_MAX_TRANSFERS',
    'log_level': 'TFTP_LOG_LEVEL',
}


@dataclass
class Config:
    """
    TFTP Server Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (TFTP_*)
    2. Config file (JSON)
    3. Default values
    """
    # Network
    host: str = '0.0.0.0'
    port: int = 69

    # Served directory
    root_dir: Path = field(default_factory=lambda: Path('./tftp-root'))

    # Transfer behaviour
    ack_timeout: float = 5.0  # seconds per ACK wait
    max_retries: int = 3  # DATA sends per block
    max_transfers: int = 64  # concurrent transfers

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Network
        config.host = os.getenv('TFTP_HOST', config.host)
        config.port = int(os.getenv('TFTP_PORT', config.port))

        # Served directory
        root_dir = os.getenv('TFTP_ROOT')
        if root_dir:
            config.root_dir = Path(root_dir)

        # Transfer behaviour
        config.ack_timeout = float(os.getenv('TFTP_TIMEOUT', config.ack_timeout))
        config.max_retries = int(os.getenv('TFTP_MAX_RETRIES', config.max_retries))
        config.max_transfers = int(os.getenv('TFTP_MAX_TRANSFERS', config.max_transfers))

        # Logging
        config.log_level = os.getenv('TFTP_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        if 'root_dir' in data:
            config.root_dir = Path(data['root_dir'])

        config.ack_timeout = data.get('ack_timeout', config.ack_timeout)
        config.max_retries = data.get('max_retries', config.max_retries)
        config.max_transfers = data.get('max_transfers', config.max_transfers)

        config.log_level = data.get('log_level', config.log_level)

        return config

    def validate(self):
        """Raise ValueError for settings the server cannot run with."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be 0-65535, got {self.port}")
        if self.ack_timeout <= 0:
            raise ValueError(f"ack_timeout must be positive, got {self.ack_timeout}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.max_transfers < 1:
            raise ValueError(f"max_transfers must be at least 1, got {self.max_transfers}")

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'root_dir': str(self.root_dir),
            'ack_timeout': self.ack_timeout,
            'max_retries': self.max_retries,
            'max_transfers': self.max_transfers,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()

    # Any variable that is set wins, even when it equals the default
    for key, var in ENV_VARS.items():
        if os.getenv(var):
            setattr(config, key, getattr(env_config, key))

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "0.0.0.0",
  "port": 69,
  "root_dir": "./tftp-root",
  "ack_timeout": 5.0,
  "max_retries": 3,
  "max_transfers": 64,
  "log_level": "INFO"
}
"""
