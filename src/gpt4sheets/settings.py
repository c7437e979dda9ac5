from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from gpt4sheets.api_keys import get_api_key, get_stored_api_keys, remove_api_key, set_api_key, store_api_keys
from gpt4sheets.config import DEFAULT_SYSTEM_PROMPT, MODEL_CONFIG, PROPERTY_KEYS
from gpt4sheets.property_store import MemoryPropertyStore
from gpt4sheets.providers import (
    MODEL_TABLE,
    CallOptions,
    Invoker,
    ModelRequest,
    Provider,
    invoke_model,
)

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}


class UserSettings(BaseModel):
    api_keys: dict[str, str] = Field(default_factory=dict)
    default_model: str = Field(default=MODEL_CONFIG["default"], min_length=1)
    default_temperature: float = Field(default=0.0, ge=0, le=1)
    include_search_results: bool = False
    available_models: list[str] = Field(default_factory=lambda: list(MODEL_CONFIG["quick_select"]))


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str


def all_models() -> list[str]:
    return [model for models in MODEL_TABLE.values() for model in models]


def get_default_model(store: MemoryPropertyStore) -> str:
    return store.get(PROPERTY_KEYS["default_model"], None) or MODEL_CONFIG["default"]


def get_default_temperature(store: MemoryPropertyStore) -> float:
    raw = store.get(PROPERTY_KEYS["default_temperature"], "0") or "0"
    try:
        return float(raw)
    except ValueError:
        return 0.0


def get_include_search_results(store: MemoryPropertyStore) -> bool:
    raw = store.get(PROPERTY_KEYS["include_search_results"], "") or ""
    return raw.strip().lower() in _TRUE_VALUES


def get_user_settings(store: MemoryPropertyStore) -> UserSettings:
    try:
        return UserSettings(
            api_keys=get_stored_api_keys(store),
            default_model=get_default_model(store),
            default_temperature=get_default_temperature(store),
            include_search_results=get_include_search_results(store),
        )
    except ValidationError as err:
        print(f"Failed to get user settings: {err}")
        return UserSettings()


def save_user_settings(store: MemoryPropertyStore, settings: dict[str, Any]) -> OperationResult:
    if "api_keys" in settings and settings["api_keys"] is not None:
        if not store_api_keys(store, dict(settings["api_keys"])):
            return OperationResult(False, "Failed to save API keys")
    if settings.get("default_model"):
        result = set_default_model(store, settings["default_model"])
        if not result.success:
            return result
    if settings.get("default_temperature") is not None:
        result = set_default_temperature(store, settings["default_temperature"])
        if not result.success:
            return result
    if settings.get("include_search_results") is not None:
        result = set_include_search_results(store, bool(settings["include_search_results"]))
        if not result.success:
            return result
    return OperationResult(True, "Settings saved successfully")


def _provider_name(provider: Provider | str) -> str | None:
    try:
        return Provider(str(getattr(provider, "value", provider)).strip().lower()).value
    except ValueError:
        return None


def set_provider_api_key(store: MemoryPropertyStore, provider: Provider | str, api_key: str) -> OperationResult:
    name = _provider_name(provider)
    if name is None:
        return OperationResult(False, f"Unknown provider: {provider}")
    if not api_key or not api_key.strip():
        return OperationResult(False, f"{name} API key is required")
    if set_api_key(store, name, api_key.strip()):
        return OperationResult(True, f"{name} API key saved successfully")
    return OperationResult(False, f"Failed to save {name} API key")


def remove_provider_api_key(store: MemoryPropertyStore, provider: Provider | str) -> OperationResult:
    name = _provider_name(provider)
    if name is None:
        return OperationResult(False, f"Unknown provider: {provider}")
    if remove_api_key(store, name):
        return OperationResult(True, f"{name} API key removed successfully")
    return OperationResult(False, f"Failed to remove {name} API key")


def set_default_model(store: MemoryPropertyStore, model_name: str) -> OperationResult:
    if model_name not in all_models():
        return OperationResult(False, f"Invalid model: {model_name}")
    if store.set(PROPERTY_KEYS["default_model"], model_name):
        return OperationResult(True, f"Default model set to {model_name}")
    return OperationResult(False, "Failed to save default model")


def set_default_temperature(store: MemoryPropertyStore, temperature: Any) -> OperationResult:
    try:
        temp = float(temperature)
    except (TypeError, ValueError):
        temp = float("nan")
    if not 0 <= temp <= 1:
        return OperationResult(False, "Temperature must be a number between 0 and 1")
    if store.set(PROPERTY_KEYS["default_temperature"], str(temp)):
        return OperationResult(True, f"Default temperature set to {temp}")
    return OperationResult(False, "Failed to save default temperature")


def set_include_search_results(store: MemoryPropertyStore, enabled: bool) -> OperationResult:
    if store.set(PROPERTY_KEYS["include_search_results"], "true" if enabled else "false"):
        state = "enabled" if enabled else "disabled"
        return OperationResult(True, f"Perplexity search results {state}")
    return OperationResult(False, "Failed to save search results preference")


def verify_api_key(
    store: MemoryPropertyStore,
    provider: Provider | str,
    api_key: str,
    invoker: Invoker = invoke_model,
) -> OperationResult:
    """Store ``api_key`` and check it with a one-line call; roll back if the call fails."""
    name = _provider_name(provider)
    if name is None:
        return OperationResult(False, f"Unknown provider: {provider}")
    models = MODEL_TABLE[Provider(name)]
    if not models:
        return OperationResult(False, f"No available models for provider: {name}")

    original_key = get_stored_api_keys(store).get(name)
    set_api_key(store, name, api_key)
    request = ModelRequest(
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        prompt="Say 'Hello'",
        model=models[0],
        temperature=0,
    )
    result = invoker(request, api_key, CallOptions.from_env())
    if not result.ok:
        if original_key:
            set_api_key(store, name, original_key)
        else:
            remove_api_key(store, name)
        return OperationResult(False, f"API key test failed: Error: {result.error.message}")
    return OperationResult(True, f"{name} API key is valid")


def get_api_key_status(store: MemoryPropertyStore) -> dict[str, dict[str, Any]]:
    status = {}
    for provider in Provider:
        key = get_api_key(store, provider)
        status[provider.value] = {
            "configured": bool(key.strip()),
            "key_preview": f"{key[:8]}..." if key else "Not set",
        }
    return status


def get_all_models_grouped() -> dict[str, Any]:
    return {
        "quick_select": list(MODEL_CONFIG["quick_select"]),
        "all": [{"provider": provider.value, "models": list(models)} for provider, models in MODEL_TABLE.items()],
    }
