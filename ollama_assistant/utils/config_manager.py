# config_manager.py - JSON config manager producing immutable snapshots

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ollama_assistant.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# request timeout bounds (ms)
MIN_TIMEOUT_MS = 5_000
MAX_TIMEOUT_MS = 300_000

# older option names still accepted in config files
_ALIASES = {
    "code_prediction_enabled": "enable_auto_suggestions",
    "ollama_endpoint": "endpoint",
    "ollama_model": "model",
    "surrounding_lines_up": "lines_up",
    "surrounding_lines_down": "lines_down",
    "cursor_history_depth": "history_depth",
    "minimum_confidence": "min_confidence",
    "typing_debounce_ms": "debounce_ms",
}

ENV_ENDPOINT = "OLLAMA_ASSISTANT_ENDPOINT"
ENV_MODEL = "OLLAMA_ASSISTANT_MODEL"


@dataclass(frozen=True)
class AssistantConfig:
    """
    Immutable configuration snapshot handed to every component at construction.
    Out-of-range values are clamped; change settings with `with_changes`, which
    returns a new snapshot.
    """
    endpoint: str = "http://localhost:11434"
    model: str = "codellama"
    lines_up: int = 3
    lines_down: int = 2
    history_depth: int = 3
    min_confidence: float = 0.7
    max_suggestions: int = 5
    debounce_ms: int = 500
    max_concurrent_requests: int = 3
    throttle_mode: str = "block"      # "block" or "reject"
    throttle_wait_ms: int = 2_000
    max_retry_attempts: int = 3
    base_retry_delay_ms: int = 1_000
    max_retry_delay_ms: int = 10_000
    retry_backoff_multiplier: float = 2.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: float = 30.0   # seconds
    request_timeout_ms: int = 30_000
    health_check_timeout_ms: int = 5_000
    health_check_interval_s: float = 0.0  # 0 disables periodic refresh
    cross_file_weight: float = 0.05
    jump_confidence_floor: float = 0.5
    jump_structural_weight: float = 0.6
    jump_history_weight: float = 0.4
    enable_auto_suggestions: bool = True
    enable_jump_recommendations: bool = True
    streaming: bool = False
    temperature: float = 0.1
    num_predict: int = 128
    enable_suggestion_cache: bool = True
    cache_size: int = 50
    cache_ttl_s: float = 600.0

    def __post_init__(self):
        try:
            clamp = self._clamped()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid option value: {e}") from e
        for k, v in clamp.items():
            object.__setattr__(self, k, v)
        if self.throttle_mode not in ("block", "reject"):
            raise ConfigurationError(f"throttle_mode must be 'block' or 'reject', got {self.throttle_mode!r}")
        if not str(self.endpoint).startswith(("http://", "https://")):
            raise ConfigurationError(f"endpoint must be an http(s) URL, got {self.endpoint!r}")
        if not self.model:
            raise ConfigurationError("model must not be empty")

    def _clamped(self) -> Dict[str, Any]:
        return {
            "lines_up": max(0, int(self.lines_up)),
            "lines_down": max(0, int(self.lines_down)),
            "history_depth": max(1, int(self.history_depth)),
            "min_confidence": max(0.0, min(1.0, float(self.min_confidence))),
            "max_suggestions": max(1, int(self.max_suggestions)),
            "debounce_ms": max(0, int(self.debounce_ms)),
            "max_concurrent_requests": max(1, int(self.max_concurrent_requests)),
            "throttle_wait_ms": max(0, int(self.throttle_wait_ms)),
            "max_retry_attempts": max(0, int(self.max_retry_attempts)),
            "base_retry_delay_ms": max(0, int(self.base_retry_delay_ms)),
            "max_retry_delay_ms": max(0, int(self.max_retry_delay_ms)),
            "retry_backoff_multiplier": max(1.0, float(self.retry_backoff_multiplier)),
            "circuit_breaker_threshold": max(1, int(self.circuit_breaker_threshold)),
            "circuit_breaker_timeout": max(0.0, float(self.circuit_breaker_timeout)),
            "request_timeout_ms": max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(self.request_timeout_ms))),
            "health_check_timeout_ms": max(100, int(self.health_check_timeout_ms)),
            "health_check_interval_s": max(0.0, float(self.health_check_interval_s)),
            "cross_file_weight": max(0.0, min(1.0, float(self.cross_file_weight))),
            "jump_confidence_floor": max(0.0, min(1.0, float(self.jump_confidence_floor))),
            "jump_structural_weight": max(0.0, float(self.jump_structural_weight)),
            "jump_history_weight": max(0.0, float(self.jump_history_weight)),
            "cache_size": max(1, int(self.cache_size)),
            "cache_ttl_s": max(0.0, float(self.cache_ttl_s)),
        }

    # the two names refer to the same switch
    @property
    def code_prediction_enabled(self) -> bool:
        return self.enable_auto_suggestions

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000.0

    def with_changes(self, **changes: Any) -> "AssistantConfig":
        return dataclasses.replace(self, **_canonical(changes))

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssistantConfig":
        return cls(**_canonical(data))


def _canonical(data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in dataclasses.fields(AssistantConfig)}
    out: Dict[str, Any] = {}
    for key, val in data.items():
        key = _ALIASES.get(key, key)
        if key not in names:
            raise ConfigurationError(f"No such option: {key}")
        out[key] = val
    return out


def _coerce(default: Any, val: Any) -> Any:
    """Cast `val` to the type of the option's default (str input from the CLI)."""
    if isinstance(default, bool):
        if isinstance(val, str):
            low = val.strip().lower()
            if low in ("1", "true", "yes", "on"):
                return True
            if low in ("0", "false", "no", "off"):
                return False
            raise ConfigurationError(f"not a boolean: {val!r}")
        return bool(val)
    try:
        return type(default)(val)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"bad value {val!r}: {e}") from e


class ConfigManager:
    """Loads/saves AssistantConfig as JSON. Every change yields a new snapshot."""

    def __init__(self, path: Optional[str] = "config.json", use_env: bool = True):
        self.path = path
        self.use_env = use_env
        self.config = self._load()

    def _load(self) -> AssistantConfig:
        data: Dict[str, Any] = {}
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"cannot read config {self.path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"config {self.path} must hold a JSON object")
        if self.use_env:
            if os.getenv(ENV_ENDPOINT):
                data["endpoint"] = os.environ[ENV_ENDPOINT]
            if os.getenv(ENV_MODEL):
                data["model"] = os.environ[ENV_MODEL]
        cfg = AssistantConfig.from_dict(data)
        logger.debug("config loaded from %s", self.path or "<defaults>")
        return cfg

    def save(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        with open(self.path, "w", encoding="utf8") as f:
            json.dump(self.config.to_dict(), f, indent=2)

    def show(self) -> Dict[str, Any]:
        return self.config.to_dict()

    def set(self, key: str, val: Any, persist: bool = True) -> AssistantConfig:
        key = _ALIASES.get(key, key)
        current = self.config.to_dict()
        if key not in current:
            raise ConfigurationError(f"No such option: {key}")
        self.config = self.config.with_changes(**{key: _coerce(current[key], val)})
        if persist:
            self.save()
        return self.config
