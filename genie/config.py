"""Configuration management for genie.

Sections:
- llm: shared call defaults (retry budget, temperature)
- providers: per-backend model selection (and Qwen region / base URL override)
- cost: durable state location and key prefix
- logging: optional request/response debug dumps

Config resolution order (highest priority first):
1. Programmatic (GenieConfig constructed in code)
2. Environment variables (GENIE_MAX_RETRIES, OPENAI_MODEL, QWEN_REGION, etc.)
3. Config file (~/.config/genie/config.json)
4. Hardcoded defaults

API keys are ALWAYS from env vars (or a .env file), never stored in config.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv


logger = logging.getLogger(__name__)


# =============================================================================
# Config file location
# =============================================================================

CONFIG_DIR = Path.home() / ".config" / "genie"
CONFIG_FILE = CONFIG_DIR / "config.json"

QWEN_REGIONS = ("intl", "china")
_PROVIDER_FIELDS = ("model", "region", "base_url")


# =============================================================================
# Config dataclasses
# =============================================================================


@dataclass
class LLMConfig:
    """Defaults applied to every call."""

    max_retries: int = 2
    temperature: float = 0.0


@dataclass
class ProviderSettings:
    """Per-backend settings.

    - model: model id used when a request does not name one
    - region: pricing/endpoint region (Qwen only: "intl" or "china")
    - base_url: endpoint override for OpenAI-compatible backends
    """

    model: str = ""
    region: str = ""
    base_url: str = ""


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "openai": ProviderSettings(model="gpt-5-mini"),
        "anthropic": ProviderSettings(model="claude-3-5-haiku-20241022"),
        "gemini": ProviderSettings(model="gemini-2.5-flash"),
        "deepseek": ProviderSettings(model="deepseek-chat"),
        "qwen": ProviderSettings(model="qwen-plus", region="intl"),
    }


@dataclass
class CostConfig:
    """Cost tracking state."""

    enabled: bool = True
    state_db: str = str(CONFIG_DIR / "state.db")
    key_prefix: str = "costTracking"

    @property
    def state_db_resolved(self) -> Path:
        return Path(self.state_db).expanduser()


@dataclass
class LoggingConfig:
    """Debug dumps of sanitized request/response payloads."""

    log_requests: bool = False
    logs_dir: str = "./logs"


# =============================================================================
# Main config class
# =============================================================================


@dataclass
class GenieConfig:
    """Top-level genie configuration.

    Examples:
        # Package use, no files needed
        config = GenieConfig(llm=LLMConfig(max_retries=4))

        # CLI use, loads from ~/.config/genie/config.json
        config = GenieConfig.load()
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    providers: dict[str, ProviderSettings] = field(default_factory=_default_providers)
    cost: CostConfig = field(default_factory=CostConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_file: Path | None = None) -> "GenieConfig":
        """Load config from file + env vars.

        Priority: env var values > config.json values > defaults.
        """
        config = cls()
        path = config_file or CONFIG_FILE

        # Layer 1: Load from config file if it exists
        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
                _apply_dict(config, data)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load config from %s: %s", path, exc)

        # Layer 2: Env var overrides
        if val := os.environ.get("GENIE_MAX_RETRIES"):
            try:
                config.llm.max_retries = max(0, int(val))
            except ValueError:
                logger.warning("Invalid GENIE_MAX_RETRIES=%r, ignoring", val)
        if val := os.environ.get("GENIE_TEMPERATURE"):
            try:
                config.llm.temperature = float(val)
            except ValueError:
                logger.warning("Invalid GENIE_TEMPERATURE=%r, ignoring", val)
        if val := os.environ.get("GENIE_STATE_DB"):
            config.cost.state_db = val
        if val := os.environ.get("GENIE_COST_TRACKING"):
            config.cost.enabled = _parse_bool(val, config.cost.enabled)
        if val := os.environ.get("GENIE_LOG_REQUESTS"):
            config.logging.log_requests = _parse_bool(val, config.logging.log_requests)

        for name, settings in config.providers.items():
            if val := os.environ.get(f"{name.upper()}_MODEL"):
                settings.model = val

        if val := os.environ.get("QWEN_REGION"):
            if val in QWEN_REGIONS:
                config.provider("qwen").region = val
            else:
                logger.warning("Invalid QWEN_REGION=%r, expected one of %s", val, QWEN_REGIONS)

        return config

    def provider(self, name: str) -> ProviderSettings:
        """Settings for a backend, created empty if absent."""
        if name not in self.providers:
            self.providers[name] = ProviderSettings()
        return self.providers[name]

    def save(self, config_file: Path | None = None) -> None:
        """Save config to ~/.config/genie/config.json."""
        path = config_file or CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for display."""
        return {
            "llm": asdict(self.llm),
            "providers": {
                name: asdict(settings) for name, settings in self.providers.items()
            },
            "cost": asdict(self.cost),
            "logging": asdict(self.logging),
        }


# =============================================================================
# Config dict application
# =============================================================================


def _parse_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    logger.warning("Invalid boolean %r, keeping %s", value, default)
    return default


def _apply_dict(config: GenieConfig, data: dict) -> None:
    """Apply a dict of values onto a GenieConfig.

    Invalid values are logged and skipped, leaving the previous value.
    """
    if "llm" in data and isinstance(data["llm"], dict):
        for k, v in data["llm"].items():
            try:
                if k == "max_retries":
                    config.llm.max_retries = max(0, int(v))
                elif k == "temperature":
                    config.llm.temperature = float(v)
            except (TypeError, ValueError):
                logger.warning("Invalid llm.%s=%r in config file, ignoring", k, v)
    if "providers" in data and isinstance(data["providers"], dict):
        for name, provider_data in data["providers"].items():
            if isinstance(provider_data, dict):
                settings = config.provider(name)
                for k, v in provider_data.items():
                    if k in _PROVIDER_FIELDS:
                        setattr(settings, k, str(v))
        qwen = config.providers.get("qwen")
        if qwen is not None and qwen.region not in QWEN_REGIONS:
            logger.warning(
                "Invalid providers.qwen.region=%r in config file, expected one of %s",
                qwen.region,
                QWEN_REGIONS,
            )
            qwen.region = "intl"
    if "cost" in data and isinstance(data["cost"], dict):
        for k, v in data["cost"].items():
            if k == "enabled":
                config.cost.enabled = _parse_bool(v, config.cost.enabled)
            elif k in ("state_db", "key_prefix"):
                setattr(config.cost, k, str(v))
    if "logging" in data and isinstance(data["logging"], dict):
        for k, v in data["logging"].items():
            if k == "log_requests":
                config.logging.log_requests = _parse_bool(v, config.logging.log_requests)
            elif k == "logs_dir":
                config.logging.logs_dir = str(v)


# =============================================================================
# API key resolution
# =============================================================================

_dotenv_loaded = False

# Alternative env var names accepted per provider, after {PROVIDER}_API_KEY
_API_KEY_ALIASES = {
    "gemini": ("GOOGLE_API_KEY",),
    "qwen": ("DASHSCOPE_API_KEY",),
}


def _ensure_dotenv() -> None:
    """Load .env file into os.environ if not already loaded."""
    global _dotenv_loaded
    if not _dotenv_loaded:
        _dotenv_loaded = True
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path=dotenv_path, override=False)


def get_api_key_for_provider(provider_name: str) -> str:
    """Get API key for a provider.

    Convention: {PROVIDER_UPPER}_API_KEY, then provider aliases
    (GOOGLE_API_KEY for gemini, DASHSCOPE_API_KEY for qwen).

    Returns empty string if not found.
    """
    _ensure_dotenv()

    for env_var in (f"{provider_name.upper()}_API_KEY", *_API_KEY_ALIASES.get(provider_name, ())):
        if value := os.environ.get(env_var):
            return value
    return ""


# =============================================================================
# Global config singleton
# =============================================================================

_config: GenieConfig | None = None


def get_config() -> GenieConfig:
    """Get the global GenieConfig instance.

    First call loads from file + env vars. Subsequent calls return cached instance.
    Use configure() to replace the global config programmatically.
    """
    global _config
    if _config is None:
        _config = GenieConfig.load()
    return _config


def configure(config: GenieConfig) -> None:
    """Set the global GenieConfig programmatically."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global config (forces reload on next get_config())."""
    global _config
    _config = None
