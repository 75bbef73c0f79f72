"""
Configuration management for the LiveTrain package.

This module handles loading, saving, and validating configuration using
Pydantic models for type safety and validation.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

API_KEY_ENV_VARS = ("NS_API_KEY", "TRAIN_API_KEY", "API_KEY")

REFRESH_PRESETS = {
    "fast": 5,
    "normal": 15,
    "slow": 30,
}

EASING_NAMES = ("linear", "easeIn", "easeOut", "easeInOut")


class ConfigurationError(Exception):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class EndpointConfig(BaseModel):
    """Relative endpoint paths."""

    train_locations: str = "/vehicle"
    train_details: str = "/vehicle"
    journey: str = "/journey"


class APIConfig(BaseModel):
    """Configuration for vehicle API access."""

    base_url: str = "https://gateway.apiportal.ns.nl/virtual-train-api/api"
    journey_base_url: str = "https://gateway.apiportal.ns.nl/reisinformatie-api/api/v2"
    api_key: str = Field(default="", description="Subscription key for the vehicle API")
    auth_header_name: str = "Ocp-Apim-Subscription-Key"
    endpoints: EndpointConfig = EndpointConfig()
    default_params: Dict[str, Union[str, float]] = Field(
        default_factory=lambda: {"lat": 52.3676, "lng": 4.9041, "features": "trein"}
    )
    cors_proxy_url: str = ""
    use_cors_proxy: bool = False
    timeout_seconds: float = Field(default=20.0, ge=1, le=120)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0)
    validation_interval_seconds: float = Field(default=60.0, ge=0)
    max_filter_ids: int = Field(default=10, ge=0)
    journey_cache_ttl_seconds: int = Field(default=15, ge=0)
    prefer_legacy_transport: bool = False


class RefreshConfig(BaseModel):
    """Configuration for data refresh settings."""

    auto_enabled: bool = True
    interval_type: str = "normal"
    interval_seconds: int = 15
    minimum_seconds: int = 5
    maximum_seconds: int = 300
    max_error_count: int = Field(default=5, ge=1)
    pause_when_hidden: bool = True
    refresh_on_selection: bool = True

    @field_validator("interval_type")
    @classmethod
    def validate_interval_type(cls, v):
        """Validate refresh interval preset."""
        if v not in (*REFRESH_PRESETS, "custom"):
            raise ValueError("Interval type must be 'fast', 'normal', 'slow' or 'custom'")
        return v

    def clamp_interval(self, seconds: float) -> float:
        """Clamp an interval to the configured range."""
        return max(self.minimum_seconds, min(self.maximum_seconds, seconds))

    def resolve_interval_seconds(self) -> float:
        """Get the refresh interval for the configured preset."""
        if self.interval_type == "custom":
            return self.clamp_interval(self.interval_seconds or REFRESH_PRESETS["normal"])
        return self.clamp_interval(REFRESH_PRESETS[self.interval_type])


class AnimationConfig(BaseModel):
    """Configuration for marker animation."""

    enabled: bool = True
    duration_ms: int = 1000
    easing: str = "linear"
    smoothness: int = Field(default=1, ge=1, le=3)
    min_displacement_m: float = Field(default=1.0, ge=0)
    max_displacement_m: float = Field(default=50_000.0, gt=0)

    @field_validator("easing")
    @classmethod
    def validate_easing(cls, v):
        """Validate easing name."""
        if v not in EASING_NAMES:
            raise ValueError(f"Easing must be one of {', '.join(EASING_NAMES)}")
        return v


class MarkerStyleConfig(BaseModel):
    """Colours and sizes for train markers."""

    radius: int = 8
    weight: int = 1
    opacity: float = 1.0
    fill_opacity: float = 0.8
    outline_color: str = "#ffffff"
    default_color: str = "#3388ff"
    selected_color: str = "#ff3333"
    on_time_color: str = "#00cc44"
    delayed_color: str = "#ff8800"
    cancelled_color: str = "#cc0000"
    diverted_color: str = "#9933cc"
    unknown_color: str = "#999999"


class DisplayConfig(BaseModel):
    """Configuration for map display and selection linking."""

    max_results: int = 100
    max_trains_to_show: int = 50
    filter_by_selection: bool = False
    train_number_field_name: str = ""
    allow_selection_from_map: bool = True
    default_lat: float = 52.1326
    default_lng: float = 5.2913
    default_zoom: int = 7


class ConfigData(BaseModel):
    """Main configuration data model."""

    api: APIConfig = APIConfig()
    refresh: RefreshConfig = RefreshConfig()
    animation: AnimationConfig = AnimationConfig()
    markers: MarkerStyleConfig = MarkerStyleConfig()
    display: DisplayConfig = DisplayConfig()


@dataclass
class ValidationResult:
    """Outcome of an API configuration check."""

    is_valid: bool = True
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


def validate_api_config(api: APIConfig) -> ValidationResult:
    """
    Check that the API settings allow a request to be made.

    Args:
        api: API configuration section

    Returns:
        ValidationResult: Validity flag plus a message per missing setting
    """
    result = ValidationResult()

    if not api.api_key:
        result.add_error(
            "No API key configured. Set NS_API_KEY in the environment "
            "or api.api_key in the configuration file."
        )

    if not api.base_url:
        result.add_error("No base URL configured.")

    if api.use_cors_proxy and not api.cors_proxy_url:
        result.add_error("CORS proxy is enabled but no proxy URL is configured.")

    return result


def load_api_key_from_env(environ: Optional[Dict[str, str]] = None) -> str:
    """
    Read the API key from the first populated environment variable.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        str: The key, or an empty string when none is set
    """
    environ = os.environ if environ is None else environ
    for name in API_KEY_ENV_VARS:
        value = environ.get(name, "").strip()
        if value:
            logger.info(f"API key loaded from environment variable {name}")
            return value
    logger.warning(
        "No environment variable found for the API key. "
        f"Set one of {', '.join(API_KEY_ENV_VARS)}."
    )
    return ""


def apply_api_options(api: APIConfig, **options) -> None:
    """
    Apply runtime overrides to the API configuration in place.

    Recognised options: base_url, api_key, cors_proxy_url, use_cors_proxy,
    lat, lng, auth_header_name. Falsy values leave settings unchanged,
    except for the proxy settings which accept empty values.
    """
    if options.get("base_url"):
        api.base_url = options["base_url"]
    if options.get("api_key"):
        api.api_key = options["api_key"]
    if options.get("cors_proxy_url") is not None:
        api.cors_proxy_url = options["cors_proxy_url"]
    if options.get("use_cors_proxy") is not None:
        api.use_cors_proxy = bool(options["use_cors_proxy"])
    if options.get("lat"):
        api.default_params["lat"] = float(options["lat"])
    if options.get("lng"):
        api.default_params["lng"] = float(options["lng"])
    if options.get("auth_header_name"):
        api.auth_header_name = options["auth_header_name"]


class ConfigManager:
    """
    Manages configuration with file persistence.

    Handles loading configuration from JSON files, creating default
    configurations, and saving changes back to disk.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file. If None, uses the
                per-user config directory
        """
        if config_path is None:
            self.config_path = self.get_default_config_path()
        else:
            self.config_path = Path(config_path)
        self.config: Optional[ConfigData] = None

        logger.debug(f"ConfigManager initialized with path: {self.config_path}")

    @staticmethod
    def get_default_config_path() -> Path:
        """
        Get the default configuration file path.

        On Windows, uses AppData/Roaming/LiveTrain/config.json
        On Linux, uses XDG_CONFIG_HOME/LiveTrain/config.json or
        ~/.config/LiveTrain/config.json

        Returns:
            Path: Default configuration file path
        """
        if os.name == "nt":
            appdata = os.environ.get("APPDATA")
            if appdata:
                return Path(appdata) / "LiveTrain" / "config.json"
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME")
            if xdg_config:
                return Path(xdg_config) / "LiveTrain" / "config.json"
            return Path.home() / ".config" / "LiveTrain" / "config.json"

        # Fallback to current directory for development
        return Path("config.json")

    def load_config(self) -> ConfigData:
        """
        Load configuration from file.

        If the configuration file doesn't exist, creates a default one. An
        empty api_key is filled from the environment.

        Returns:
            ConfigData: The loaded configuration

        Raises:
            ConfigurationError: If the configuration file is invalid
        """
        logger.debug(f"Loading config from: {self.config_path}")

        if not self.config_path.exists():
            logger.info(f"Config file doesn't exist, creating default at: {self.config_path}")
            self.create_default_config()

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            config = ConfigData(**data)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file: {e}")
        except Exception as e:
            raise ConfigurationError(f"Failed to load config: {e}")

        if not config.api.api_key:
            config.api.api_key = load_api_key_from_env()

        self.config = config
        logger.debug(f"Successfully loaded config from: {self.config_path}")
        return self.config

    def save_config(self, config: ConfigData) -> bool:
        """
        Save configuration to file.

        Args:
            config: Configuration data to save

        Returns:
            bool: True if saved successfully, False otherwise
        """
        logger.info(f"Saving config to: {self.config_path}")

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(), f, indent=2, ensure_ascii=False)
            self.config = config
            return True
        except OSError as e:
            logger.error(f"Failed to save config to {self.config_path}: {e}")
            return False

    def create_default_config(self) -> None:
        """Create a default configuration file."""
        self.save_config(ConfigData())

    def update_refresh_interval(self, interval_type: str, seconds: Optional[int] = None) -> None:
        """
        Update the refresh interval preset and save to file.

        Args:
            interval_type: 'fast', 'normal', 'slow' or 'custom'
            seconds: Interval for the 'custom' preset
        """
        if self.config is None:
            self.load_config()

        refresh = self.config.refresh.model_dump()
        refresh["interval_type"] = interval_type
        if seconds is not None:
            refresh["interval_seconds"] = seconds
        try:
            self.config.refresh = RefreshConfig(**refresh)
        except ValueError as e:
            raise ConfigurationError(f"Invalid refresh configuration: {e}")
        self.save_config(self.config)

    def validate_api_credentials(self) -> bool:
        """
        Check if API credentials are configured.

        Returns:
            bool: True if credentials are set, False otherwise
        """
        if self.config is None:
            self.load_config()
        return validate_api_config(self.config.api).is_valid

    def get_config_summary(self) -> dict:
        """
        Get a summary of current configuration for display.

        Returns:
            dict: Configuration summary
        """
        if self.config is None:
            self.load_config()

        return {
            "base_url": self.config.api.base_url,
            "api_configured": "Yes" if self.validate_api_credentials() else "No",
            "refresh_interval": f"{self.config.refresh.resolve_interval_seconds():g} seconds",
            "auto_refresh": "Enabled" if self.config.refresh.auto_enabled else "Disabled",
            "animation": (
                f"{self.config.animation.easing}, {self.config.animation.duration_ms} ms"
                if self.config.animation.enabled
                else "Disabled"
            ),
            "max_trains": self.config.display.max_trains_to_show,
            "filter_by_selection": self.config.display.filter_by_selection,
        }
