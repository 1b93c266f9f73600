"""Configuration loading from environment variables and mnemo.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "mnemo.toml"
_CONFIG_DIR = Path.home() / ".mnemo"

DEFAULT_API_URL = "https://api.lanonasis.com"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


@dataclass
class RetryConfig:
    """Retry tuning for the request pipeline. Delays are milliseconds."""

    max_retries: int = 3
    retry_delay: int = 1000
    backoff: str = "exponential"
    max_delay: int = 30_000


@dataclass
class ApiConfig:
    """Memory service connection settings."""

    url: str = DEFAULT_API_URL
    auth_token: str | None = None
    api_key: str | None = None
    organization_id: str | None = None
    user_id: str | None = None
    project_scope: str = "lanonasis-maas"
    timeout: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class EngineConfig:
    """Reasoning backend used for intent resolution.

    `name` selects the direct provider ("openai", "anthropic" or "none").
    When `router_url` is set, the router is tried before the provider.
    """

    name: str = "openai"
    api_key: str | None = None
    base_url: str = DEFAULT_OPENAI_BASE_URL
    model: str | None = None
    router_url: str | None = None
    router_api_key: str | None = None
    use_case: str = "memory_assistant"
    temperature: float = 0.3
    max_tokens: int = 500
    timeout: int = 30


@dataclass
class ReplConfig:
    """Interactive session settings."""

    nl_mode: bool = True
    max_history: int = 50
    context_search: bool = True


@dataclass
class MnemoConfig:
    """Top-level configuration."""

    api: ApiConfig = field(default_factory=ApiConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    repl: ReplConfig = field(default_factory=ReplConfig)
    log_level: str = "WARNING"


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _default_model(engine_name: str) -> str | None:
    if engine_name == "openai":
        return "gpt-4o-mini"
    if engine_name == "anthropic":
        return "claude-sonnet-4-5-20250929"
    return None


def load_config(config_path: Path | None = None) -> MnemoConfig:
    """Load configuration from environment variables and optional mnemo.toml.

    Priority: environment variables > mnemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _CONFIG_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    api_data = file_data.get("api", {})
    retry_data = api_data.get("retry", {})
    engine_data = file_data.get("engine", {})
    repl_data = file_data.get("repl", {})

    engine_name = os.getenv("MNEMO_ENGINE", engine_data.get("name", "openai"))
    if engine_name == "anthropic":
        engine_key = os.getenv("ANTHROPIC_API_KEY", engine_data.get("api_key"))
    else:
        engine_key = os.getenv("OPENAI_API_KEY", engine_data.get("api_key"))

    model = engine_data.get("model", _default_model(engine_name))
    if engine_name == "openai":
        model = os.getenv("OPENAI_MODEL", model)

    config = MnemoConfig(
        api=ApiConfig(
            url=os.getenv("MEMORY_API_URL", api_data.get("url", DEFAULT_API_URL)),
            auth_token=os.getenv("MEMORY_AUTH_TOKEN", api_data.get("auth_token")),
            api_key=os.getenv("MEMORY_API_KEY", api_data.get("api_key")),
            organization_id=os.getenv("MNEMO_ORG_ID", api_data.get("organization_id")),
            user_id=os.getenv("MNEMO_USER_ID", api_data.get("user_id")),
            project_scope=os.getenv(
                "MNEMO_PROJECT_SCOPE", api_data.get("project_scope", "lanonasis-maas")
            ),
            timeout=float(os.getenv("MNEMO_TIMEOUT", api_data.get("timeout", 30.0))),
            retry=RetryConfig(
                max_retries=int(
                    os.getenv("MNEMO_MAX_RETRIES", retry_data.get("max_retries", 3))
                ),
                retry_delay=int(
                    os.getenv("MNEMO_RETRY_DELAY", retry_data.get("retry_delay", 1000))
                ),
                backoff=os.getenv("MNEMO_BACKOFF", retry_data.get("backoff", "exponential")),
                max_delay=int(retry_data.get("max_delay", 30_000)),
            ),
        ),
        engine=EngineConfig(
            name=engine_name,
            api_key=engine_key,
            base_url=os.getenv(
                "OPENAI_BASE_URL", engine_data.get("base_url", DEFAULT_OPENAI_BASE_URL)
            ),
            model=os.getenv("MNEMO_MODEL", model),
            router_url=os.getenv("AI_ROUTER_URL", engine_data.get("router_url")),
            router_api_key=os.getenv("AI_ROUTER_API_KEY", engine_data.get("router_api_key")),
            use_case=engine_data.get("use_case", "memory_assistant"),
            temperature=float(engine_data.get("temperature", 0.3)),
            max_tokens=int(engine_data.get("max_tokens", 500)),
            timeout=int(engine_data.get("timeout", 30)),
        ),
        repl=ReplConfig(
            nl_mode=_as_bool(os.getenv("MNEMO_NL_MODE", repl_data.get("nl_mode", True))),
            # The history must hold at least one turn
            max_history=max(1, int(os.getenv("MNEMO_MAX_HISTORY", repl_data.get("max_history", 50)))),
            context_search=_as_bool(repl_data.get("context_search", True)),
        ),
        log_level=os.getenv("MNEMO_LOG_LEVEL", file_data.get("log_level", "WARNING")),
    )
    return config
