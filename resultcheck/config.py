"""
config.py - Configuration Management
=====================================
This module handles loading and validating configuration from environment variables.
It reads settings from a .env file and makes them available to the rest of the application.

Environment Variables Used:
---------------------------
- RESULTS_BASE_URL        : (Required) Base URL of the results API, ending in /v2
                            (e.g., "https://results.example.com/v2")
- RESULTS_API_KEY         : (Required) Bearer token, 8+ chars of A-Z a-z 0-9 - _ / = +
- RESULTS_TIMEOUT_SEC     : (Optional) Request timeout in seconds (default: 20)
- RESULTS_CONCURRENCY     : (Optional) Max requests in flight (default: 20)
- RESULTS_START_TIMESTAMP : (Optional) Only fetch results produced after this
- RESULTS_PROGRESS_EVERY  : (Optional) Report progress when the queue length is
                            a multiple of this (default: 100)

Example .env file:
------------------
RESULTS_BASE_URL=https://results.example.com/v2
RESULTS_API_KEY=c2VjcmV0LWtleS1oZXJl
RESULTS_CONCURRENCY=20
"""

from dataclasses import dataclass
import os
import re
from pathlib import Path
from dotenv import load_dotenv

from .errors import ConfigError


# Base URL must point at the v2 API root, e.g. https://host:8443/v2
BASE_URL_PATTERN = re.compile(r'^https?://[A-Za-z.\-:0-9]*/v2$')

# API keys are opaque tokens: base64/url-safe characters, at least 8 long
API_KEY_PATTERN = re.compile(r'^[A-Za-z0-9\-_/=+]{8,}$')


# =============================================================================
# SETTINGS DATACLASS
# =============================================================================

@dataclass
class Settings:
    """Container for all application configuration values."""

    # Required: The API root, e.g. "https://results.example.com/v2"
    base_url: str

    # Required: Sent as "Authorization: Bearer <api_key>"
    api_key: str

    # How long to wait for one response before giving up on it
    timeout_sec: float = 20

    # How many lookups may be in flight at the same time
    concurrency_limit: int = 20

    # Optional filter passed through to the API as start_timestamp
    start_timestamp: str | None = None

    # Progress is reported whenever the queue length is a multiple of this
    progress_every: int = 100


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _clean(v: str | None) -> str | None:
    """
    Clean and normalize an environment variable value.

    Examples:
        _clean('  hello  ')     -> 'hello'
        _clean('"quoted"')      -> 'quoted'
        _clean('')              -> None
        _clean(None)            -> None
    """
    if v is None:
        return None

    v = v.strip()

    # Remove surrounding quotes if present
    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
        v = v[1:-1]

    return v if v else None


def _int(name: str, default: int) -> int:
    raw = _clean(os.getenv(name))
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def validate_settings(settings: Settings) -> Settings:
    """
    Check the settings before any request is made.

    Raises:
        ConfigError: If the base URL or API key has the wrong shape, or a
                     numeric setting is out of range
    """
    if not BASE_URL_PATTERN.match(settings.base_url or ''):
        raise ConfigError("API Base URL is invalid format")

    if not API_KEY_PATTERN.match(settings.api_key or ''):
        raise ConfigError("API Key is invalid format")

    if settings.timeout_sec <= 0:
        raise ConfigError("Timeout must be positive")

    if settings.concurrency_limit < 1:
        raise ConfigError("Concurrency limit must be at least 1")

    if settings.progress_every < 1:
        raise ConfigError("Progress interval must be at least 1")

    return settings


# =============================================================================
# MAIN CONFIGURATION LOADER
# =============================================================================

def load_settings(env_file: Path | None = None) -> Settings:
    """
    Load application configuration from environment variables.

    This function:
    1. Loads the .env file from the project root (or the given path)
    2. Reads all RESULTS_* environment variables
    3. Cleans and validates the values

    Args:
        env_file: Optional path to a .env file, mainly for tests

    Returns:
        Settings: A dataclass containing all configuration values

    Raises:
        ConfigError: If a required value is missing or malformed
    """
    # The .env file lives in the project root (one level up from resultcheck/)
    root_env = env_file or Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=root_env)

    base = _clean(os.getenv("RESULTS_BASE_URL"))
    if not base:
        raise ConfigError(
            "RESULTS_BASE_URL is not set in environment. "
            "Please add it to your .env file."
        )

    key = _clean(os.getenv("RESULTS_API_KEY"))
    if not key:
        raise ConfigError(
            "RESULTS_API_KEY is not set in environment. "
            "Please add it to your .env file."
        )

    timeout = _clean(os.getenv("RESULTS_TIMEOUT_SEC"))
    try:
        timeout_sec = float(timeout) if timeout else 20.0
    except ValueError:
        raise ConfigError(f"RESULTS_TIMEOUT_SEC must be a number, got {timeout!r}") from None

    settings = Settings(
        # Trailing slash would break the /v2 check and URL joining
        base_url=base.rstrip("/"),
        api_key=key,
        timeout_sec=timeout_sec,
        concurrency_limit=_int("RESULTS_CONCURRENCY", 20),
        start_timestamp=_clean(os.getenv("RESULTS_START_TIMESTAMP")),
        progress_every=_int("RESULTS_PROGRESS_EVERY", 100),
    )
    return validate_settings(settings)
