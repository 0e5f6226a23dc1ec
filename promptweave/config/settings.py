"""
Configuration loader for PromptWeave.
Reads settings from YAML file with environment variable substitution.

Environment variables are only consulted here; the rest of the package
receives an explicit Settings object.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from promptweave.middleware.context import RetryConfig
from promptweave.models.schemas import ProviderConfig, ProviderType


@dataclass
class LLMSettings:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    temperature: float = 0.7
    max_tokens: int = 1024
    api_key: str = ""
    base_url: str = ""


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay: float = 1.0             # seconds
    max_delay: float = 10.0             # seconds
    backoff_factor: float = 2.0
    jitter: bool = True
    retryable_patterns: Optional[list[str]] = None   # None = built-in transient patterns


@dataclass
class Settings:
    debug: bool = False
    echo: bool = False
    max_llm_calls: int = 100            # enforced only when debug is on
    loop_max_iterations: int = 100
    log_level: str = "INFO"
    llm: LLMSettings = field(default_factory=LLMSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)

    @property
    def call_limit(self) -> Optional[int]:
        return self.max_llm_calls if self.debug else None

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            type=ProviderType(self.llm.provider),
            model=self.llm.model,
            api_key=self.llm.api_key,
            base_url=self.llm.base_url or None,
        )

    def retry_config(self) -> RetryConfig:
        kwargs: dict[str, Any] = dict(
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay,
            max_delay=self.retry.max_delay,
            backoff_factor=self.retry.backoff_factor,
            jitter=self.retry.jitter,
        )
        if self.retry.retryable_patterns is not None:
            kwargs["retryable_patterns"] = list(self.retry.retryable_patterns)
        return RetryConfig(**kwargs)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file, then apply PROMPTWEAVE_* overrides."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "PROMPTWEAVE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.debug = raw.get("debug", settings.debug)
        settings.echo = raw.get("echo", settings.echo)
        settings.max_llm_calls = int(raw.get("max_llm_calls", settings.max_llm_calls))
        settings.loop_max_iterations = int(
            raw.get("loop_max_iterations", settings.loop_max_iterations)
        )
        settings.log_level = raw.get("log_level", settings.log_level)

        if "llm" in raw:
            llm = raw["llm"]
            settings.llm = LLMSettings(
                provider=llm.get("provider", "anthropic"),
                model=llm.get("model", "claude-sonnet-4-20250514"),
                temperature=llm.get("temperature", 0.7),
                max_tokens=llm.get("max_tokens", 1024),
                api_key=llm.get("api_key", ""),
                base_url=llm.get("base_url", ""),
            )

        if "retry" in raw:
            r = raw["retry"]
            settings.retry = RetrySettings(
                max_attempts=r.get("max_attempts", 3),
                base_delay=r.get("base_delay", 1.0),
                max_delay=r.get("max_delay", 10.0),
                backoff_factor=r.get("backoff_factor", 2.0),
                jitter=r.get("jitter", True),
                retryable_patterns=r.get("retryable_patterns"),
            )

    if "PROMPTWEAVE_DEBUG" in os.environ:
        settings.debug = _env_flag(os.environ["PROMPTWEAVE_DEBUG"])
    if "PROMPTWEAVE_ECHO" in os.environ:
        settings.echo = _env_flag(os.environ["PROMPTWEAVE_ECHO"])
    if os.environ.get("PROMPTWEAVE_MAX_LLM_CALLS"):
        settings.max_llm_calls = int(os.environ["PROMPTWEAVE_MAX_LLM_CALLS"])

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Route structlog through a level filter and the console renderer."""
    settings = settings or get_settings()
    level_name = "DEBUG" if settings.debug else settings.log_level.upper()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=False,
    )
