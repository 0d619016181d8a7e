from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

DEFAULT_BOT_NAME = "jarvis"
DEFAULT_PREFIX = "jira"
DEFAULT_DRAFT_TTL = 1800
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_LLM_URL = "https://api.openai.com/v1"


class ConfigError(RuntimeError):
    pass


@dataclass
class AssistantConfig:
    command_prefix: str = DEFAULT_PREFIX
    bot_name: str = DEFAULT_BOT_NAME
    create_enabled: bool = False
    draft_ttl_seconds: int = DEFAULT_DRAFT_TTL
    # Jira
    jira_base_url: str = ""
    jira_email: str = ""
    jira_api_token: str = ""
    project_keys: list[str] = field(default_factory=list)
    project_aliases: dict[str, str] = field(default_factory=dict)
    # LLM
    llm_base_url: str = DEFAULT_LLM_URL
    llm_api_key: str = ""
    llm_model: str = DEFAULT_MODEL
    llm_fallback_model: str = ""
    llm_timeout: float = 60.0
    # Logging
    logging_json_enabled: bool = False
    logging_level: str = "INFO"

    @property
    def jira_configured(self) -> bool:
        return bool(self.jira_base_url and self.jira_email and self.jira_api_token)

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key)


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _as_bool(value: Any, default: bool = False) -> bool:
    value = _resolve_env_var(value)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def parse_csv(text: str) -> list[str]:
    """Split a comma-separated string, trimming entries and dropping empties."""
    return [part.strip() for part in (text or "").split(",") if part.strip()]


def parse_project_name_map(text: str) -> dict[str, str]:
    """Parse ``name1:KEY1,name2:KEY2`` into ``{"name1": "KEY1", ...}``.

    Names are lowercased and keys uppercased; malformed entries are skipped.
    """
    out: dict[str, str] = {}
    for entry in parse_csv(text):
        name, sep, key = entry.partition(":")
        if not sep:
            continue
        name, key = name.strip().lower(), key.strip().upper()
        if name and key:
            out[name] = key
    return out


def _unresolved(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("$")


def _aliases(value: Any) -> dict[str, str]:
    value = _resolve_env_var(value)
    if _unresolved(value):
        return {}
    if isinstance(value, str):
        return parse_project_name_map(value)
    if isinstance(value, dict):
        return {
            str(k).strip().lower(): str(v).strip().upper()
            for k, v in value.items()
            if str(k).strip() and str(v).strip()
        }
    return {}


def _keys(value: Any) -> list[str]:
    value = _resolve_env_var(value)
    if _unresolved(value):
        return []
    if isinstance(value, str):
        return parse_csv(value)
    if isinstance(value, list):
        keys = [str(_resolve_env_var(v)).strip() for v in value]
        return [k for k in keys if k and not _unresolved(k)]
    return []


def load_config(path: str | Path) -> AssistantConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        raw = cast(dict[str, Any], yaml.safe_load(p.read_text(encoding="utf-8")) or {})
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root must be a mapping: {p}")
    assistant = cast(dict[str, Any], raw.get("assistant", {}) or {})
    jira = cast(dict[str, Any], raw.get("jira", {}) or {})
    llm = cast(dict[str, Any], raw.get("llm", {}) or {})
    logging_config = cast(dict[str, Any], raw.get("logging", {}) or {})

    def s(section: dict[str, Any], key: str, default: str = "") -> str:
        value = _resolve_env_var(section.get(key))
        if value is None or _unresolved(value):
            return default
        return str(value).strip()

    try:
        ttl = int(_resolve_env_var(assistant.get("draft_ttl_seconds", DEFAULT_DRAFT_TTL)))
        timeout = float(_resolve_env_var(llm.get("timeout", 60.0)))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid numeric setting in {p}: {exc}") from exc

    return AssistantConfig(
        command_prefix=s(assistant, "command_prefix", DEFAULT_PREFIX),
        bot_name=s(assistant, "bot_name", DEFAULT_BOT_NAME),
        create_enabled=_as_bool(assistant.get("create_enabled"), False),
        draft_ttl_seconds=ttl,
        jira_base_url=s(jira, "base_url"),
        jira_email=s(jira, "email"),
        jira_api_token=s(jira, "api_token"),
        project_keys=_keys(jira.get("project_keys")),
        project_aliases=_aliases(jira.get("project_aliases")),
        llm_base_url=s(llm, "base_url", DEFAULT_LLM_URL),
        llm_api_key=s(llm, "api_key"),
        llm_model=s(llm, "model", DEFAULT_MODEL),
        llm_fallback_model=s(llm, "fallback_model"),
        llm_timeout=timeout,
        logging_json_enabled=_as_bool(logging_config.get("json_enabled"), False),
        logging_level=s(logging_config, "level", "INFO").upper(),
    )


def _env(name: str, default: str = "") -> str:
    value = os.environ.get(name, "").strip()
    return value or default


def load_config_from_env(dotenv_path: str | None = ".env") -> AssistantConfig:
    """Build the configuration from process environment variables.

    A ``.env`` file is loaded first when present; variables already set in the
    environment win.
    """
    if dotenv_path and Path(dotenv_path).exists():
        load_dotenv(dotenv_path, override=False)
    try:
        ttl = int(_env("DRAFT_TTL_SECONDS", str(DEFAULT_DRAFT_TTL)))
    except ValueError:
        ttl = DEFAULT_DRAFT_TTL
    return AssistantConfig(
        command_prefix=_env("COMMAND_PREFIX", DEFAULT_PREFIX),
        bot_name=_env("BOT_NAME", DEFAULT_BOT_NAME),
        create_enabled=_env("JIRA_CREATE_ENABLED", "false").lower() == "true",
        draft_ttl_seconds=ttl,
        jira_base_url=_env("JIRA_BASE_URL"),
        jira_email=_env("JIRA_EMAIL"),
        jira_api_token=_env("JIRA_API_TOKEN"),
        project_keys=parse_csv(_env("JIRA_PROJECT_KEYS")),
        project_aliases=parse_project_name_map(_env("JIRA_PROJECT_NAME_MAP")),
        llm_base_url=_env("OPENAI_BASE_URL", DEFAULT_LLM_URL),
        llm_api_key=_env("OPENAI_API_KEY"),
        llm_model=_env("OPENAI_MODEL", DEFAULT_MODEL),
        llm_fallback_model=_env("OPENAI_FALLBACK_MODEL"),
        logging_json_enabled=_env("ISSUECHAT_LOG_JSON", "false").lower() == "true",
        logging_level=_env("ISSUECHAT_LOG_LEVEL", "INFO").upper(),
    )


__all__ = [
    "AssistantConfig",
    "ConfigError",
    "load_config",
    "load_config_from_env",
    "parse_csv",
    "parse_project_name_map",
]
