from __future__ import annotations

import os
from pathlib import Path

SETTINGS_PATH_ENV = "GPT4SHEETS_SETTINGS_PATH"
AI_FUNCTIONS_ENV = "GPT4SHEETS_AI_FUNCTIONS"
REQUEST_TIMEOUT_ENV = "GPT4SHEETS_REQUEST_TIMEOUT"
MAX_RETRIES_ENV = "OPENAI_MAX_RETRIES"
RETRY_BASE_SECONDS_ENV = "OPENAI_RETRY_BASE_SECONDS"

DEFAULT_SETTINGS_PATH = Path.home() / ".gpt4sheets" / "settings.json"
DEFAULT_AI_FUNCTION_NAMES = frozenset({"AI_CALL", "AI_CALL_ADV"})
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0

BACKUP_SHEET_SUFFIX = "_BCKFM"
MAX_SHEET_TITLE_LENGTH = 31

OUTPUT_TYPES = ("text", "list", "matrix")

MODEL_CONFIG: dict[str, object] = {
    "default": "gemini-2.0-flash",
    "quick_select": [
        "gemini-2.0-flash",
        "gpt-4.1",
        "claude-3-5-sonnet-latest",
        "sonar",
        "deepseek-v3",
    ],
    "all": {
        "gemini": [
            "gemini-2.5-flash-preview-05-20",
            "gemini-2.5-pro-preview-05-06",
            "gemini-2.0-flash",
            "gemini-2.0-flash-lite",
            "gemini-2.0-flash-thinking-exp-01-21",
            "gemini-1.5-pro",
            "gemini-1.5-flash",
            "gemini-1.5-flash-8b",
        ],
        "openai": [
            "gpt-4.1",
            "gpt-4o",
            "o3",
            "o4-mini",
            "o3-mini",
            "gpt-4.1-mini",
            "gpt-4.1-nano",
            "gpt-4o-mini",
        ],
        "anthropic": [
            "claude-opus-4-0",
            "claude-sonnet-4-0",
            "claude-3-5-haiku-latest",
            "claude-3-5-sonnet-latest",
            "claude-3-7-sonnet-latest",
            "claude-3-opus-latest",
        ],
        "perplexity": [
            "sonar",
            "sonar-pro",
        ],
        "deepseek": [
            "deepseek-v3",
        ],
    },
}

# catalogue name -> name the provider API expects
API_MODEL_ALIASES = {
    "deepseek-v3": "deepseek-chat",
}

API_ENDPOINTS = {
    "gemini": "https://generativelanguage.googleapis.com/v1beta/models",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1/messages",
    "perplexity": "https://api.perplexity.ai",
    "deepseek": "https://api.deepseek.com/v1",
}

PROPERTY_KEYS = {
    "api_keys": "api-keys",
    "default_model": "default-model",
    "default_temperature": "default-temperature",
    "include_search_results": "include_search_results",
}


def _get_env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def get_settings_path() -> Path:
    return _get_env_path(SETTINGS_PATH_ENV) or DEFAULT_SETTINGS_PATH


def get_ai_function_names() -> frozenset[str]:
    value = os.getenv(AI_FUNCTIONS_ENV, "").strip()
    if not value:
        return DEFAULT_AI_FUNCTION_NAMES
    names = {item.strip().upper() for item in value.split(",") if item.strip()}
    return frozenset(names) or DEFAULT_AI_FUNCTION_NAMES


def get_request_timeout() -> float:
    value = os.getenv(REQUEST_TIMEOUT_ENV, "").strip()
    if not value:
        return DEFAULT_REQUEST_TIMEOUT_SECONDS
    return float(value)


def get_max_retries(default: int = 6) -> int:
    return int(os.getenv(MAX_RETRIES_ENV, "").strip() or default)


def get_retry_base_seconds(default: float = 0.5) -> float:
    return float(os.getenv(RETRY_BASE_SECONDS_ENV, "").strip() or default)


def get_env_api_key(provider: str) -> str:
    return os.getenv(f"{provider.upper()}_API_KEY", "").strip()
