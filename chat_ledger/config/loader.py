"""
Configuration management and loading.

Handles the chat endpoint, request defaults, usage accounting options and
price overrides.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_ENDPOINT = "http://localhost:3000/api/search/playground/chat"
DEFAULT_MODEL = "groq/compound"
DEFAULT_DB_PATH = "chat_ledger.db"


@dataclass(frozen=True)
class RequestConfig:
    """Optional generation parameters sent with every chat request."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    enable_tools: Optional[bool] = None

    def __post_init__(self):
        """Validate request parameter ranges."""
        if self.temperature is not None and not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")


@dataclass(frozen=True)
class UsageConfig:
    """How the ledger attributes tokens to messages."""
    prefer_authoritative_usage: bool = True
    count_user_tokens: bool = False


@dataclass(frozen=True)
class ChatConfig:
    """Complete chat-ledger configuration."""
    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    db_path: str = DEFAULT_DB_PATH
    request: RequestConfig = field(default_factory=RequestConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    pricing: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "ChatConfig":
        return cls()


def load_chat_config(path: str) -> ChatConfig:
    """Load and validate chat configuration from a YAML file.

    Every section is optional, but unknown keys and wrongly typed values are
    rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ChatConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Chat config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return ChatConfig.default()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'endpoint', 'model', 'db_path', 'request', 'usage', 'pricing'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    defaults = ChatConfig.default()
    return ChatConfig(
        endpoint=_parse_string(raw_config, 'endpoint', defaults.endpoint),
        model=_parse_string(raw_config, 'model', defaults.model),
        db_path=_parse_string(raw_config, 'db_path', defaults.db_path),
        request=_parse_request_config(raw_config.get('request') or {}),
        usage=_parse_usage_config(raw_config.get('usage') or {}),
        pricing=_parse_pricing(raw_config.get('pricing') or {}),
    )


def _parse_string(data: Dict[str, Any], key: str, default: str) -> str:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' must be a non-empty string")
    return value


def _check_keys(data: Any, allowed: set, path: str) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _parse_request_config(data: Dict[str, Any]) -> RequestConfig:
    """Parse and validate the request section.

    Raises:
        ValueError: If configuration is invalid
    """
    _check_keys(data, {'temperature', 'max_tokens', 'system_prompt', 'enable_tools'}, "request")

    temperature = data.get('temperature')
    if temperature is not None and (
            isinstance(temperature, bool) or not isinstance(temperature, (int, float))):
        raise ValueError("'temperature' in request must be a number")

    max_tokens = data.get('max_tokens')
    if max_tokens is not None and (isinstance(max_tokens, bool) or not isinstance(max_tokens, int)):
        raise ValueError("'max_tokens' in request must be an integer")

    system_prompt = data.get('system_prompt')
    if system_prompt is not None and not isinstance(system_prompt, str):
        raise ValueError("'system_prompt' in request must be a string")

    enable_tools = data.get('enable_tools')
    if enable_tools is not None and not isinstance(enable_tools, bool):
        raise ValueError("'enable_tools' in request must be a boolean")

    return RequestConfig(
        temperature=float(temperature) if temperature is not None else None,
        max_tokens=max_tokens,
        system_prompt=system_prompt,
        enable_tools=enable_tools,
    )


def _parse_usage_config(data: Dict[str, Any]) -> UsageConfig:
    _check_keys(data, {'prefer_authoritative_usage', 'count_user_tokens'}, "usage")

    values = {}
    for key in ('prefer_authoritative_usage', 'count_user_tokens'):
        if key in data:
            if not isinstance(data[key], bool):
                raise ValueError(f"'{key}' in usage must be a boolean")
            values[key] = data[key]
    return UsageConfig(**values)


def _parse_pricing(data: Dict[str, Any]) -> Dict[str, Dict[str, float]]:
    """Parse per-model price overrides (USD per 1M tokens).

    Raises:
        ValueError: If a price entry is malformed or negative
    """
    if not isinstance(data, dict):
        raise ValueError("'pricing' must be a dictionary")

    pricing = {}
    for model, rates in data.items():
        path = f"pricing.{model}"
        _check_keys(rates, {'input', 'output'}, path)
        parsed = {}
        for side in ('input', 'output'):
            if side not in rates:
                raise ValueError(f"Missing required '{side}' in {path}")
            rate = rates[side]
            if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate < 0:
                raise ValueError(f"'{side}' in {path} must be a number >= 0")
            parsed[side] = float(rate)
        pricing[str(model)] = parsed
    return pricing
