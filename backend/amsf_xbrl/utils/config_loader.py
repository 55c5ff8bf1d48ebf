"""
Configuration loader utility.

Loads the YAML application configuration and applies environment overrides
for the settings operators tune per deployment (validator URL, timeouts,
database URL, environment name).
"""

import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[2]  # backend/
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "app.yaml"


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is malformed."""


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    try:
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)

        logger.debug(f"Loaded configuration from: {config_path}")
        return config or {}

    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in config file {config_path}: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        raise


class DatabaseSettings(BaseModel):
    url: str = Field("sqlite:///amsf_xbrl.db", description="SQLAlchemy database URL")
    echo: bool = False


class TaxonomySettings(BaseModel):
    dir: str = Field("taxonomy", description="Directory holding the strix taxonomy files")
    schema_file: str = "strix_Real_Estate_AML_CFT_survey_2025.xsd"
    label_file: str = "strix_Real_Estate_AML_CFT_survey_2025_lab.xml"
    presentation_file: str = "strix_Real_Estate_AML_CFT_survey_2025_pre.xml"
    short_labels_file: Optional[str] = "config/xbrl_short_labels.yaml"
    type_overrides_file: Optional[str] = "config/xbrl_type_overrides.yaml"
    version: str = "2025"

    def resolve(self, relative: Optional[str]) -> Optional[Path]:
        """Resolve a configured path against backend/ unless already absolute."""
        if not relative:
            return None
        path = Path(relative)
        return path if path.is_absolute() else BASE_DIR / path


class ValidatorSettings(BaseModel):
    base_url: str = "http://localhost:8000"
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    retries: int = 2


class PrometheusSettings(BaseModel):
    enabled: bool = False
    namespace: str = "amsf_xbrl"
    path: str = "/metrics"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None


class AppSettings(BaseModel):
    """Typed view over app.yaml after environment overrides."""

    environment: str = "development"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    taxonomy: TaxonomySettings = Field(default_factory=TaxonomySettings)
    validator: ValidatorSettings = Field(default_factory=ValidatorSettings)
    field_definitions_file: Optional[str] = None
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "AMSF_ENV": (None, "environment"),
    "DATABASE_URL": ("database", "url"),
    "XBRL_VALIDATOR_URL": ("validator", "base_url"),
    "XBRL_VALIDATOR_OPEN_TIMEOUT": ("validator", "connect_timeout"),
    "XBRL_VALIDATOR_READ_TIMEOUT": ("validator", "read_timeout"),
    "XBRL_VALIDATOR_RETRIES": ("validator", "retries"),
}


def _apply_env_overrides(raw: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        if section is None:
            raw[key] = value
        else:
            raw.setdefault(section, {})
            if raw[section] is None:
                raw[section] = {}
            raw[section][key] = value
        logger.debug(f"Config override from environment: {var}")
    return raw


def load_settings(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> AppSettings:
    """
    Build AppSettings from app.yaml plus environment overrides.

    A missing config file is not fatal: defaults are used and a warning is
    logged. Invalid YAML or values that fail validation raise ConfigError.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    environ = dict(os.environ) if environ is None else environ

    try:
        raw = load_config(path)
    except FileNotFoundError:
        logger.warning(f"Configuration file not found, using defaults: {path}")
        raw = {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    raw = _apply_env_overrides(dict(raw), environ)

    # Flatten nested sections that differ from the model layout
    observability = raw.pop("observability", None) or {}
    if "prometheus" in observability:
        raw["prometheus"] = observability.get("prometheus") or {}
    field_defs = raw.pop("field_definitions", None) or {}
    if field_defs.get("file"):
        raw["field_definitions_file"] = field_defs["file"]

    try:
        return AppSettings.model_validate(raw)
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
