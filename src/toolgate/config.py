"""Configuration management for toolgate."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_INABILITY_PHRASES = [
    "i would need to",
    "i'd need to",
    "i can't",
    "i cannot",
    "i don't have access",
    "i do not have access",
    "unable to",
    "i'm not able to",
    "i am not able to",
    "don't have the ability",
    "no access to",
]

DEFAULT_EMPTY_RESPONSE_TEXT = "Sorry, I could not generate a response."


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or pyproject.toml."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / "pyproject.toml").exists():
            return current_dir

        parent_dir = current_dir.parent

        # Stop if we reach filesystem root
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .toolgate/config.toml if it exists."""
    config_file = repo_root / ".toolgate" / "config.toml"

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        logger.warning(f"Ignoring malformed config file {config_file}: {e}")
        return None


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str) -> Optional[list[str]]:
    value = os.environ.get(name)
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


class CacheConfig(BaseModel):
    """Bounds for the classification cache."""

    ttl_seconds: float = Field(default=300.0, gt=0)
    max_entries: int = Field(default=1000, ge=1)
    reset_after_failures: int = Field(default=3, ge=1)

    model_config = {"validate_assignment": True}


class ClassifierConfig(BaseModel):
    """Auxiliary classification call settings."""

    engine: Literal["auto", "fake", "openai", "anthropic"] = Field(default="auto")
    model: Optional[str] = Field(default=None)
    timeout_seconds: float = Field(default=3.0, gt=0)
    max_message_chars: int = Field(default=500, ge=1)
    history_window: int = Field(default=4, ge=0)
    prompt_path: Optional[Path] = Field(default=None)
    prompt_refresh_seconds: float = Field(default=300.0, ge=0)

    model_config = {"validate_assignment": True}


class PipelineConfig(BaseModel):
    """Timeouts and loading behaviour of the orchestrator."""

    completion_timeout_seconds: float = Field(default=60.0, gt=0)
    execution_timeout_seconds: float = Field(default=30.0, gt=0)
    catalog_timeout_seconds: float = Field(default=10.0, gt=0)
    selective_loading: bool = Field(default=False)
    known_capability_names: list[str] = Field(default_factory=list)
    empty_response_text: str = Field(default=DEFAULT_EMPTY_RESPONSE_TEXT)

    model_config = {"validate_assignment": True}


class FallbackConfig(BaseModel):
    """Missed-capability detection settings."""

    enabled: bool = Field(default=True)
    phrases: list[str] = Field(default_factory=lambda: list(DEFAULT_INABILITY_PHRASES))
    match_capability_names: bool = Field(default=True)

    model_config = {"validate_assignment": True}


class MetricsConfig(BaseModel):
    """Rolling window and optional JSONL sink."""

    window_size: int = Field(default=1000, ge=1)
    sink_path: Optional[Path] = Field(default=None)

    model_config = {"validate_assignment": True}


class GateConfig(BaseModel):
    """Configuration for the intent-aware gating pipeline."""

    cache: CacheConfig = Field(default_factory=CacheConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    model_config = {"frozen": False}

    @classmethod
    def load(cls, start_dir: Optional[Path] = None) -> "GateConfig":
        """Load configuration with the following precedence:

        1. TOOLGATE_* environment variables
        2. repo-local .toolgate/config.toml (walk upward from start_dir or CWD)
        3. Built-in defaults

        A config file that fails validation is ignored with a warning.
        """
        repo_root = _find_repo_root(start_dir or Path.cwd())
        data = _load_repo_config_data(repo_root) or {}

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid .toolgate/config.toml, using defaults: {e}")
            config = cls()

        config._apply_env_overrides()
        return config

    def _apply_env_overrides(self) -> None:
        """Apply flat TOOLGATE_* env vars on top of the loaded config.

        Values are validated on assignment; an invalid override is logged
        and skipped.
        """
        for env_name, section, field_name in _ENV_FIELDS:
            if val := os.environ.get(env_name):
                _assign(getattr(self, section), field_name, val, env_name)

        _assign(
            self.pipeline,
            "selective_loading",
            _env_bool("TOOLGATE_SELECTIVE_LOADING", self.pipeline.selective_loading),
            "TOOLGATE_SELECTIVE_LOADING",
        )
        if (names := _env_list("TOOLGATE_KNOWN_CAPABILITIES")) is not None:
            _assign(self.pipeline, "known_capability_names", names, "TOOLGATE_KNOWN_CAPABILITIES")

        _assign(
            self.fallback,
            "enabled",
            _env_bool("TOOLGATE_FALLBACK_ENABLED", self.fallback.enabled),
            "TOOLGATE_FALLBACK_ENABLED",
        )
        if (phrases := _env_list("TOOLGATE_FALLBACK_PHRASES")) is not None:
            _assign(self.fallback, "phrases", phrases, "TOOLGATE_FALLBACK_PHRASES")

    def to_toml_str(self) -> str:
        """Render the effective configuration as .toolgate/config.toml content."""
        lines = ["# toolgate configuration", ""]
        for section, model in (
            ("cache", self.cache),
            ("classifier", self.classifier),
            ("pipeline", self.pipeline),
            ("fallback", self.fallback),
            ("metrics", self.metrics),
        ):
            lines.append(f"[{section}]")
            for key, value in model.model_dump(mode="json").items():
                if value is None:
                    continue
                lines.append(f"{key} = {_toml_value(value)}")
            lines.append("")
        return "\n".join(lines)


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


_ENV_FIELDS = (
    ("TOOLGATE_CACHE_TTL_SECONDS", "cache", "ttl_seconds"),
    ("TOOLGATE_CACHE_MAX_ENTRIES", "cache", "max_entries"),
    ("TOOLGATE_CLASSIFIER_ENGINE", "classifier", "engine"),
    ("TOOLGATE_CLASSIFIER_MODEL", "classifier", "model"),
    ("TOOLGATE_CLASSIFIER_TIMEOUT_SECONDS", "classifier", "timeout_seconds"),
    ("TOOLGATE_CLASSIFIER_PROMPT_PATH", "classifier", "prompt_path"),
    ("TOOLGATE_COMPLETION_TIMEOUT_SECONDS", "pipeline", "completion_timeout_seconds"),
    ("TOOLGATE_EXECUTION_TIMEOUT_SECONDS", "pipeline", "execution_timeout_seconds"),
    ("TOOLGATE_CATALOG_TIMEOUT_SECONDS", "pipeline", "catalog_timeout_seconds"),
    ("TOOLGATE_METRICS_WINDOW", "metrics", "window_size"),
    ("TOOLGATE_METRICS_SINK", "metrics", "sink_path"),
)


def _assign(section: BaseModel, field_name: str, value: Any, env_name: str) -> None:
    try:
        setattr(section, field_name, value)
    except ValidationError as e:
        logger.warning(f"Ignoring invalid {env_name}={value!r}: {e.errors()[0]['msg']}")
