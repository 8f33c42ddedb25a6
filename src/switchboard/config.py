"""Configuration loader for Switchboard.

Loads from switchboard.toml with sensible defaults when the file is absent.
Configuration is loaded once at startup and passed via dependency injection.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from switchboard.exceptions import SwitchboardError

COMPRESSION_MODES = ("rich", "balanced", "minimal", "extreme")
INFERENCE_STYLES = ("ondevice", "server", "cloud")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(SwitchboardError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class ModelConfig:
    """Configuration for a single servable model."""

    provider: str  # "ollama" | "lmstudio" | "vllm" | "openai" | "anthropic" | "transformers"
    inference: str = ""  # empty = infer from provider
    model: str = ""
    name: str = ""
    server: str = ""
    base_url: str = ""
    model_path: str = ""
    auth_token: str = ""
    context_window: int = 8192
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float | None = None
    top_k: int | None = None
    variant_of: str = ""

    def __repr__(self) -> str:
        token_display = f"***{self.auth_token[-4:]}" if self.auth_token else ""
        return (
            f"ModelConfig(provider={self.provider!r}, model={self.model!r}, "
            f"server={self.server!r}, base_url={self.base_url!r}, "
            f"auth_token={token_display!r})"
        )


@dataclass(frozen=True)
class BudgetConfig:
    target_past_subjects: int = 20
    target_message_limit: int = 30
    initial_compression: str = "balanced"


@dataclass(frozen=True)
class ConcurrencyConfig:
    """Slot limits per resource group.

    ``groups`` maps an explicit group key to its limit; a limit of 0
    means unlimited.
    """

    local_server_limit: int = 1
    on_device_limit: int = 1
    default_limit: int = 1
    groups: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolsConfig:
    timeout_seconds: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """Top-level Switchboard configuration."""

    models: dict[str, ModelConfig] = field(default_factory=dict)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    credentials: dict[str, str] = field(default_factory=dict)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _positive_int(value, default: int, *, where: str) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where} must be an integer, got {value!r}") from e
    if parsed <= 0:
        raise ConfigError(f"{where} must be positive, got {parsed}")
    return parsed


def _parse_model_config(model_id: str, data: dict) -> ModelConfig:
    inference = str(data.get("inference", "")).strip().lower()
    if inference and inference not in INFERENCE_STYLES:
        raise ConfigError(
            f"models.{model_id}.inference must be one of "
            f"{', '.join(INFERENCE_STYLES)}; got {inference!r}"
        )
    top_k = data.get("top_k")
    top_p = data.get("top_p")
    return ModelConfig(
        provider=str(data["provider"]).strip().lower(),
        inference=inference,
        model=str(data.get("model", "")),
        name=str(data.get("name", "")),
        server=str(data.get("server", "")),
        base_url=str(data.get("base_url", "")),
        model_path=str(data.get("model_path", "")),
        auth_token=str(data.get("auth_token", "")),
        context_window=_positive_int(
            data.get("context_window", 8192), 8192,
            where=f"models.{model_id}.context_window",
        ),
        temperature=float(data.get("temperature", 0.7)),
        max_tokens=_positive_int(
            data.get("max_tokens", 4096), 4096,
            where=f"models.{model_id}.max_tokens",
        ),
        top_p=float(top_p) if top_p is not None else None,
        top_k=int(top_k) if top_k is not None else None,
        variant_of=str(data.get("variant_of", "")),
    )


def _parse_budget(data: dict) -> BudgetConfig:
    mode = str(data.get("initial_compression", "balanced")).strip().lower()
    if mode not in COMPRESSION_MODES:
        raise ConfigError(
            f"budget.initial_compression must be one of "
            f"{', '.join(COMPRESSION_MODES)}; got {mode!r}"
        )
    return BudgetConfig(
        target_past_subjects=_positive_int(
            data.get("target_past_subjects", 20), 20,
            where="budget.target_past_subjects",
        ),
        target_message_limit=_positive_int(
            data.get("target_message_limit", 30), 30,
            where="budget.target_message_limit",
        ),
        initial_compression=mode,
    )


def _parse_concurrency(data: dict) -> ConcurrencyConfig:
    groups: dict[str, int] = {}
    raw_groups = data.get("groups", {})
    if isinstance(raw_groups, dict):
        for key, limit in raw_groups.items():
            try:
                groups[str(key)] = max(0, int(limit))
            except (TypeError, ValueError) as e:
                raise ConfigError(
                    f"concurrency.groups.{key} must be an integer, got {limit!r}"
                ) from e
    return ConcurrencyConfig(
        local_server_limit=_positive_int(
            data.get("local_server_limit", 1), 1,
            where="concurrency.local_server_limit",
        ),
        on_device_limit=_positive_int(
            data.get("on_device_limit", 1), 1,
            where="concurrency.on_device_limit",
        ),
        default_limit=_positive_int(
            data.get("default_limit", 1), 1,
            where="concurrency.default_limit",
        ),
        groups=groups,
    )


def _parse_tools(data: dict) -> ToolsConfig:
    timeout_raw = data.get("timeout_seconds", 30)
    try:
        timeout_seconds = int(timeout_raw)
    except (TypeError, ValueError):
        timeout_seconds = 30
    if timeout_seconds <= 0:
        timeout_seconds = 30
    return ToolsConfig(timeout_seconds=timeout_seconds)


def _parse_logging(data: dict) -> LoggingConfig:
    level = str(data.get("level", "INFO")).strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
    return LoggingConfig(level=level)


def parse_config(raw: dict) -> Config:
    """Build a Config from an already-decoded TOML mapping."""
    models: dict[str, ModelConfig] = {}
    for model_id, model_data in raw.get("models", {}).items():
        if isinstance(model_data, dict) and "provider" in model_data:
            models[model_id] = _parse_model_config(model_id, model_data)

    credentials = {
        str(tag).strip().lower(): str(ref)
        for tag, ref in raw.get("credentials", {}).items()
    }

    return Config(
        models=models,
        budget=_parse_budget(raw.get("budget", {})),
        concurrency=_parse_concurrency(raw.get("concurrency", {})),
        credentials=credentials,
        tools=_parse_tools(raw.get("tools", {})),
        logging=_parse_logging(raw.get("logging", {})),
    )


def default_config_paths() -> list[Path]:
    return [
        Path.cwd() / "switchboard.toml",
        Path.home() / ".switchboard" / "switchboard.toml",
    ]


def load_config(path: Path | None = None) -> Config:
    """Load configuration from a TOML file.

    If path is None, searches for switchboard.toml in the current directory
    then ~/.switchboard/. Returns default config if no file is found.
    """
    if path is None:
        for candidate in default_config_paths():
            if candidate.exists():
                path = candidate
                break

    if path is None or not path.exists():
        return Config()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    return parse_config(raw)
