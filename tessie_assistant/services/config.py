"""
Configuration for Tessie Assistant.

Environment variables come from the process (and a local .env file);
analysis tunables come from analysis_settings.yaml next to this module.
"""
import os

import yaml
from dotenv import load_dotenv

from tessie_assistant.errors import ConfigurationError

load_dotenv()

SERVICES_DIR = os.path.dirname(os.path.abspath(__file__))
SETTINGS_YAML = "analysis_settings.yaml"

DEFAULT_API_URL = "https://api.tessie.com"


def load_yaml_config(filename: str, required_key: str = None) -> dict:
    """Load a YAML configuration file with error handling."""
    filepath = os.path.join(SERVICES_DIR, filename)
    try:
        with open(filepath, 'r', encoding='utf-8') as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {filename}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {filename}: {str(e)}")

    if config is None:
        raise ConfigurationError(f"Empty configuration file: {filename}")
    if required_key and required_key not in config:
        raise ConfigurationError(f"Missing required key '{required_key}' in {filename}")
    return config[required_key] if required_key else config


def _section(settings: dict, name: str) -> dict:
    section = settings.get(name)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' in {SETTINGS_YAML} must be a mapping")
    return section


ANALYSIS_SETTINGS = load_yaml_config(SETTINGS_YAML)

MAX_STOP_MINUTES = float(_section(ANALYSIS_SETTINGS, "drive_merging")["max_stop_minutes"])
NOMINAL_PACK_KWH = float(_section(ANALYSIS_SETTINGS, "battery")["nominal_pack_kwh"])
LOW_CONFIDENCE_THRESHOLD = float(_section(ANALYSIS_SETTINGS, "queries")["low_confidence_threshold"])
CACHE_TTL_SECONDS = float(_section(ANALYSIS_SETTINGS, "cache")["ttl_seconds"])
CACHE_MAX_ENTRIES = int(_section(ANALYSIS_SETTINGS, "cache")["max_entries"])
CLIENT_TIMEOUT_SECONDS = float(_section(ANALYSIS_SETTINGS, "client")["timeout_seconds"])
DEFAULT_DRIVE_LIMIT = int(_section(ANALYSIS_SETTINGS, "client")["default_drive_limit"])


def get_access_token():
    """Return the Tessie token from the environment, or None."""
    return os.getenv("TESSIE_ACCESS_TOKEN") or os.getenv("tessie_api_token")


def get_api_url() -> str:
    return os.getenv("TESSIE_API_URL", DEFAULT_API_URL)


def is_mcp_enabled() -> bool:
    return os.environ.get("ENABLE_MCP", "0").lower() in ("1", "true", "yes")
