"""Immo Harvester — Configuration Loader.

Loads and validates application configuration from a YAML file.
Resolves environment variables referenced via ${VAR_NAME} syntax.
Uses frozen dataclasses for type-safe configuration access.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from immo_harvester.utils.logger import get_logger

logger = get_logger(__name__)

# ── Path Constants ────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
SETTINGS_PATH = CONFIG_DIR / "settings.yaml"

# ── Environment Variable Pattern ─────────────────────────
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)}")

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0",
]


# ═══════════════════════════════════════════════════════════
# Configuration Dataclasses
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class HttpConfig:
    """Configuration for the lightweight HTTP retrieval strategy."""

    timeout_seconds: float = 30.0
    max_retries: int = 3
    max_concurrency: int = 8
    rate_limit_calls: int = 10
    rate_limit_period_seconds: float = 1.0
    backoff_seconds: float = 2.0
    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    proxy_url: str = ""


@dataclass(frozen=True)
class BrowserConfig:
    """Configuration for the scripted-browser retrieval strategy.

    All waits carry their own timeout budget in milliseconds.
    """

    headless: bool = True
    launch_timeout_ms: int = 60_000
    navigation_timeout_ms: int = 30_000
    selector_timeout_ms: int = 10_000
    pagination_timeout_ms: int = 10_000
    settle_delay_ms: tuple[int, int] = (1_000, 3_000)
    max_pages: int = 10
    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    launch_args: list[str] = field(default_factory=lambda: [
        "--no-sandbox",
        "--disable-gpu",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-crash-reporter",
        "--disable-blink-features=AutomationControlled",
    ])


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for acquisition runs and reconciliation."""

    detail_concurrency: int = 5
    reconcile_concurrency: int = 5
    blacklist_case_sensitive: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration container."""

    http: HttpConfig
    browser: BrowserConfig
    pipeline: PipelineConfig
    providers: dict[str, dict[str, Any]]
    database_path: str
    log_level: str

    def provider_options(self, provider_id: str) -> dict[str, Any]:
        """Return the provider-specific options block (empty if absent)."""
        return self.providers.get(provider_id) or {}


# ═══════════════════════════════════════════════════════════
# YAML Loading & Environment Variable Resolution
# ═══════════════════════════════════════════════════════════


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${VAR_NAME} references in YAML values.

    Args:
        value: A string, dict, list, or primitive from parsed YAML.

    Returns:
        The same structure with all ${VAR_NAME} placeholders replaced
        by their environment variable values.

    Raises:
        ValueError: If a referenced environment variable is not set.
    """
    if isinstance(value, str):
        for var_name in ENV_VAR_PATTERN.findall(value):
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(
                    f"Environment variable '${{{var_name}}}' is required but not set. "
                    f"Add it to your .env file or export it in your shell."
                )
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file with UTF-8 encoding.

    Raises:
        FileNotFoundError: If the YAML file does not exist.
        ValueError: If the file is empty or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        raise ValueError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")

    logger.debug("Loaded configuration from %s", path)
    return data


def _validate_keys(data: dict[str, Any], required: list[str], section: str) -> None:
    """Validate that all required keys exist in a config section.

    Raises:
        ValueError: If any required key is missing.
    """
    missing = [key for key in required if key not in data]
    if missing:
        raise ValueError(
            f"Missing required configuration keys in '{section}': {', '.join(missing)}"
        )


# ═══════════════════════════════════════════════════════════
# Dataclass Builders
# ═══════════════════════════════════════════════════════════


def _build_http_config(data: dict[str, Any]) -> HttpConfig:
    """Build an HttpConfig from the 'http' section."""
    defaults = HttpConfig()
    config = HttpConfig(
        timeout_seconds=float(data.get("timeout_seconds", defaults.timeout_seconds)),
        max_retries=int(data.get("max_retries", defaults.max_retries)),
        max_concurrency=int(data.get("max_concurrency", defaults.max_concurrency)),
        rate_limit_calls=int(data.get("rate_limit_calls", defaults.rate_limit_calls)),
        rate_limit_period_seconds=float(
            data.get("rate_limit_period_seconds", defaults.rate_limit_period_seconds)
        ),
        backoff_seconds=float(data.get("backoff_seconds", defaults.backoff_seconds)),
        user_agents=list(data.get("user_agents") or defaults.user_agents),
        proxy_url=data.get("proxy_url", "") or "",
    )
    if config.max_retries < 1:
        raise ValueError("http.max_retries must be at least 1")
    if config.max_concurrency < 1:
        raise ValueError("http.max_concurrency must be at least 1")
    return config


def _build_browser_config(data: dict[str, Any]) -> BrowserConfig:
    """Build a BrowserConfig from the 'browser' section."""
    defaults = BrowserConfig()
    settle = data.get("settle_delay_ms", list(defaults.settle_delay_ms))
    if not isinstance(settle, (list, tuple)) or len(settle) != 2:
        raise ValueError("browser.settle_delay_ms must be a [min, max] pair")
    settle_min, settle_max = int(settle[0]), int(settle[1])
    if settle_min < 0 or settle_max < settle_min:
        raise ValueError(f"browser.settle_delay_ms is not a valid range: {settle}")

    config = BrowserConfig(
        headless=bool(data.get("headless", defaults.headless)),
        launch_timeout_ms=int(data.get("launch_timeout_ms", defaults.launch_timeout_ms)),
        navigation_timeout_ms=int(data.get("navigation_timeout_ms", defaults.navigation_timeout_ms)),
        selector_timeout_ms=int(data.get("selector_timeout_ms", defaults.selector_timeout_ms)),
        pagination_timeout_ms=int(data.get("pagination_timeout_ms", defaults.pagination_timeout_ms)),
        settle_delay_ms=(settle_min, settle_max),
        max_pages=int(data.get("max_pages", defaults.max_pages)),
        user_agents=list(data.get("user_agents") or defaults.user_agents),
        launch_args=list(data.get("launch_args") or defaults.launch_args),
    )
    if config.max_pages < 1:
        raise ValueError("browser.max_pages must be at least 1")
    return config


def _build_pipeline_config(data: dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from the 'pipeline' section."""
    defaults = PipelineConfig()
    return PipelineConfig(
        detail_concurrency=max(1, int(data.get("detail_concurrency", defaults.detail_concurrency))),
        reconcile_concurrency=max(1, int(data.get("reconcile_concurrency", defaults.reconcile_concurrency))),
        blacklist_case_sensitive=bool(
            data.get("blacklist_case_sensitive", defaults.blacklist_case_sensitive)
        ),
    )


def build_config(settings: dict[str, Any]) -> AppConfig:
    """Build a validated AppConfig from an already-resolved settings mapping.

    Raises:
        ValueError: If required sections or keys are missing or invalid.
    """
    _validate_keys(settings, ["database", "logging"], "settings")
    _validate_keys(settings["database"], ["path"], "database")
    _validate_keys(settings["logging"], ["level"], "logging")

    log_level = str(settings["logging"]["level"]).upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ValueError(f"Invalid logging.level: {log_level}")

    providers = settings.get("providers") or {}
    if not isinstance(providers, dict):
        raise ValueError("'providers' must be a mapping of provider id to options")

    return AppConfig(
        http=_build_http_config(settings.get("http") or {}),
        browser=_build_browser_config(settings.get("browser") or {}),
        pipeline=_build_pipeline_config(settings.get("pipeline") or {}),
        providers={str(k): dict(v or {}) for k, v in providers.items()},
        database_path=str(settings["database"]["path"]),
        log_level=log_level,
    )


# ═══════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════


def load_config(
    settings_path: Path | None = None,
    env_path: Path | None = None,
) -> AppConfig:
    """Load the complete application configuration.

    Loads settings.yaml, resolves environment variables, validates all
    required fields, and returns a typed AppConfig instance.

    Args:
        settings_path: Override path to settings.yaml. Defaults to config/settings.yaml.
        env_path: Override path to .env file. Defaults to project root .env.

    Returns:
        A fully validated AppConfig instance.

    Raises:
        FileNotFoundError: If the config file is missing.
        ValueError: If required fields are missing or env vars are unset.
    """
    env_file = env_path or (PROJECT_ROOT / ".env")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)

    raw_settings = _load_yaml(settings_path or SETTINGS_PATH)
    config = build_config(_resolve_env_vars(raw_settings))

    logger.info("Configuration loaded successfully")
    logger.debug("Database path: %s", config.database_path)
    logger.debug("Configured provider options: %s", ", ".join(config.providers) or "none")

    return config
