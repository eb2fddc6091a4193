"""
Configuration settings - Infrastructure component for managing application configuration.
Uses Pydantic for validation and environment variable loading.
"""

from __future__ import annotations
import re
from typing import Optional, Dict, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_WELDR_SOCKET = '/run/weldr/api.socket'
DEFAULT_CLOUD_SOCKET = '/run/cloudapi/api.socket'

_DURATION_RE = re.compile(r'(\d+(?:\.\d+)?)(ms|h|m|s)')
_DURATION_UNITS = {'h': 3600.0, 'm': 60.0, 's': 1.0, 'ms': 0.001}


def parse_duration(value: Any) -> float:
    """Parse a duration such as '5m', '10s', '1h30m' or '500ms' into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"invalid duration {value!r}")
        return float(value)
    text = str(value).strip()
    if not text:
        raise ValueError("invalid duration ''")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"invalid duration {value!r}")
        return seconds

    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


class ComposerSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix='COMPOSER_',
        env_file='.env',
        case_sensitive=False,
        extra='ignore',
    )

    # Server connections
    socket: str = Field(DEFAULT_WELDR_SOCKET, description="Path to the weldr API server's socket file")
    cloud_socket: str = Field(DEFAULT_CLOUD_SOCKET, description="Path to the cloudapi server's socket file")
    api_version: int = Field(1, ge=0, description="weldr server API version to use")
    timeout: float = Field(240.0, ge=0, description="Request timeout in seconds, 0 for no timeout")
    cloud_enabled: Optional[bool] = Field(None, description="Force the cloudapi backend on or off instead of probing its socket")

    # compose wait defaults
    wait_timeout: float = Field(300.0, description="Maximum time to wait for a compose")
    wait_poll: float = Field(10.0, description="Compose status polling interval")

    # Output
    json_output: bool = Field(False, description="Print the raw JSON responses instead of normal output")
    test_mode: int = Field(0, ge=0, le=2, description="Compose test mode: 1=fail, 2=finished")

    # Logging
    log_level: str = Field('WARNING')
    log_file: Optional[str] = Field(None)
    log_format: str = Field('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    @field_validator('wait_timeout', 'wait_poll', mode='before')
    @classmethod
    def parse_wait_durations(cls, v):
        """Accept Go-style duration strings."""
        return parse_duration(v)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            return 'WARNING'
        return v.upper()

    @property
    def request_timeout(self) -> Optional[float]:
        """Timeout handed to the HTTP client, None disables it."""
        return self.timeout if self.timeout > 0 else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return self.model_dump()


# Global settings instance
_settings: Optional[ComposerSettings] = None


def get_settings() -> ComposerSettings:
    """Get global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = ComposerSettings()
    return _settings


def reload_settings(**overrides: Any) -> ComposerSettings:
    """Reload settings from environment (for testing)."""
    global _settings
    _settings = ComposerSettings(**overrides)
    return _settings
