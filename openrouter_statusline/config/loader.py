"""
Configuration management and loading.

Handles fetch policy, display thresholds and model-name rules. Every
configuration object is immutable and is handed to the engine at
construction time.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from openrouter_statusline.core.model_names import DEFAULT_PRETTY_NAMES, PrettyNameRule

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_BALANCE_TTL_MS = 60_000
DEFAULT_CONFIG_PATH = Path("~/.config/openrouter-statusline/config.yaml")


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for per-event generation lookups.

    After failed attempt ``n`` (1-based) the client sleeps
    ``base_delay_ms * n`` before the next attempt, up to ``max_attempts``
    attempts in total. When disabled exactly one attempt is made.
    """
    enabled: bool = True
    max_attempts: int = 2
    base_delay_ms: int = 100

    def __post_init__(self):
        """Validate retry bounds."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    @property
    def attempts(self) -> int:
        """Total number of attempts actually made per event."""
        return self.max_attempts if self.enabled else 1


@dataclass(frozen=True)
class ThrottleConfig:
    """Flat delay inserted between lookups of distinct events in one run."""
    enabled: bool = False
    delay_ms: int = 50

    def __post_init__(self):
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")


@dataclass(frozen=True)
class FetchConfig:
    """Network settings for the OpenRouter client."""
    retry: RetryConfig = field(default_factory=RetryConfig)
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = 10.0

    def __post_init__(self):
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")


@dataclass(frozen=True)
class ThresholdConfig:
    """Colour thresholds for the rendered statusline, in dollars."""
    session_cost_warning: float = 5.0
    key_balance_critical: float = 5.0
    key_balance_warning: float = 10.0
    account_credits_critical: float = 10.0
    account_credits_warning: float = 20.0


@dataclass(frozen=True)
class ModelDisplayConfig:
    """How model slugs are turned into labels."""
    prettify: bool = True
    rules: Tuple[PrettyNameRule, ...] = DEFAULT_PRETTY_NAMES


@dataclass(frozen=True)
class StatuslineConfig:
    """Complete statusline configuration."""
    fetch: FetchConfig = field(default_factory=FetchConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    display: ModelDisplayConfig = field(default_factory=ModelDisplayConfig)
    balance_ttl_ms: int = DEFAULT_BALANCE_TTL_MS
    state_dir: Optional[str] = None

    def __post_init__(self):
        if self.balance_ttl_ms < 0:
            raise ValueError("balance_ttl_ms must be >= 0")


DEFAULT_CONFIG = StatuslineConfig()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_keys(data: Any, allowed: set, path: str) -> Dict[str, Any]:
    """Ensure ``data`` is a mapping holding only ``allowed`` keys."""
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    return data


def _get_bool(data: Dict[str, Any], key: str, default: bool, path: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"'{key}' in {path} must be a boolean")
    return value


def _get_number(data: Dict[str, Any], key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if not _is_number(value) or value < 0:
        raise ValueError(f"'{key}' in {path} must be a non-negative number")
    return value


def _get_int(data: Dict[str, Any], key: str, default: int, path: str) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"'{key}' in {path} must be a non-negative integer")
    return value


def load_config(path: str) -> StatuslineConfig:
    """Load and validate statusline configuration from a YAML file.

    Omitted keys keep their defaults; unknown keys are rejected so a typo
    never silently changes retry or refresh behaviour.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated StatuslineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Statusline config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return DEFAULT_CONFIG

    raw_config = _check_keys(
        raw_config,
        {'fetch', 'thresholds', 'display', 'balance_ttl_ms', 'state_dir'},
        "config"
    )

    state_dir = raw_config.get('state_dir')
    if state_dir is not None and not isinstance(state_dir, str):
        raise ValueError("'state_dir' must be a string")

    return StatuslineConfig(
        fetch=_parse_fetch_config(raw_config.get('fetch', {})),
        thresholds=_parse_threshold_config(raw_config.get('thresholds', {})),
        display=_parse_display_config(raw_config.get('display', {})),
        balance_ttl_ms=int(_get_number(
            raw_config, 'balance_ttl_ms', DEFAULT_BALANCE_TTL_MS, "config"
        )),
        state_dir=state_dir
    )


def resolve_config(path: Optional[str] = None) -> StatuslineConfig:
    """Pick the configuration for a run.

    An explicit path must load. Without one, the per-user default file is
    used when present, otherwise built-in defaults.
    """
    if path:
        return load_config(path)
    default_path = DEFAULT_CONFIG_PATH.expanduser()
    if default_path.exists():
        return load_config(str(default_path))
    return DEFAULT_CONFIG


def _parse_fetch_config(data: Any) -> FetchConfig:
    data = _check_keys(data, {'retry', 'throttle', 'base_url', 'timeout_s'}, "fetch")

    retry_data = _check_keys(
        data.get('retry', {}), {'enabled', 'max_attempts', 'base_delay_ms'}, "fetch.retry"
    )
    max_attempts = retry_data.get('max_attempts', RetryConfig.max_attempts)
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
        raise ValueError("'max_attempts' in fetch.retry must be an integer >= 1")
    retry = RetryConfig(
        enabled=_get_bool(retry_data, 'enabled', RetryConfig.enabled, "fetch.retry"),
        max_attempts=max_attempts,
        base_delay_ms=_get_int(
            retry_data, 'base_delay_ms', RetryConfig.base_delay_ms, "fetch.retry"
        )
    )

    throttle_data = _check_keys(data.get('throttle', {}), {'enabled', 'delay_ms'}, "fetch.throttle")
    throttle = ThrottleConfig(
        enabled=_get_bool(throttle_data, 'enabled', ThrottleConfig.enabled, "fetch.throttle"),
        delay_ms=_get_int(
            throttle_data, 'delay_ms', ThrottleConfig.delay_ms, "fetch.throttle"
        )
    )

    base_url = data.get('base_url', DEFAULT_BASE_URL)
    if not isinstance(base_url, str) or not base_url.strip():
        raise ValueError("'base_url' in fetch must be a non-empty string")

    timeout_s = _get_number(data, 'timeout_s', FetchConfig.timeout_s, "fetch")
    if timeout_s <= 0:
        raise ValueError("'timeout_s' in fetch must be > 0")

    return FetchConfig(
        retry=retry,
        throttle=throttle,
        base_url=base_url.rstrip('/'),
        timeout_s=float(timeout_s)
    )


def _parse_threshold_config(data: Any) -> ThresholdConfig:
    data = _check_keys(data, {'session_cost', 'key_balance', 'account_credits'}, "thresholds")
    defaults = ThresholdConfig()

    session = _check_keys(data.get('session_cost', {}), {'warning'}, "thresholds.session_cost")
    key = _check_keys(data.get('key_balance', {}), {'critical', 'warning'}, "thresholds.key_balance")
    credits = _check_keys(
        data.get('account_credits', {}), {'critical', 'warning'}, "thresholds.account_credits"
    )

    return ThresholdConfig(
        session_cost_warning=float(_get_number(
            session, 'warning', defaults.session_cost_warning, "thresholds.session_cost"
        )),
        key_balance_critical=float(_get_number(
            key, 'critical', defaults.key_balance_critical, "thresholds.key_balance"
        )),
        key_balance_warning=float(_get_number(
            key, 'warning', defaults.key_balance_warning, "thresholds.key_balance"
        )),
        account_credits_critical=float(_get_number(
            credits, 'critical', defaults.account_credits_critical, "thresholds.account_credits"
        )),
        account_credits_warning=float(_get_number(
            credits, 'warning', defaults.account_credits_warning, "thresholds.account_credits"
        ))
    )


def _parse_display_config(data: Any) -> ModelDisplayConfig:
    data = _check_keys(data, {'prettify', 'pretty_names'}, "display")
    prettify = _get_bool(data, 'prettify', True, "display")

    if 'pretty_names' not in data:
        return ModelDisplayConfig(prettify=prettify)

    raw_rules = data['pretty_names']
    if not isinstance(raw_rules, list):
        raise ValueError("'pretty_names' in display must be a list")

    rules = []
    for index, raw_rule in enumerate(raw_rules):
        rule_path = f"display.pretty_names[{index}]"
        raw_rule = _check_keys(raw_rule, {'pattern', 'replacement'}, rule_path)
        pattern = raw_rule.get('pattern')
        replacement = raw_rule.get('replacement')
        if not isinstance(pattern, str) or not isinstance(replacement, str):
            raise ValueError(f"{rule_path} needs string 'pattern' and 'replacement'")
        try:
            rules.append(PrettyNameRule.compile(pattern, replacement))
        except re.error as e:
            raise ValueError(f"Invalid pattern in {rule_path}: {e}")

    return ModelDisplayConfig(prettify=prettify, rules=tuple(rules))
