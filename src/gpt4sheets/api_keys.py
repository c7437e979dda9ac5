from __future__ import annotations

import json

from gpt4sheets.config import PROPERTY_KEYS, get_env_api_key
from gpt4sheets.property_store import MemoryPropertyStore
from gpt4sheets.providers import Provider, UnknownModelError, provider_for_model


def get_stored_api_keys(store: MemoryPropertyStore) -> dict[str, str]:
    raw = store.get(PROPERTY_KEYS["api_keys"], "{}") or "{}"
    try:
        loaded = json.loads(raw)
    except ValueError:
        print("Stored API keys are not valid JSON; ignoring them.")
        return {}
    if not isinstance(loaded, dict):
        return {}
    return {str(k): str(v) for k, v in loaded.items() if v is not None}


def store_api_keys(store: MemoryPropertyStore, api_keys: dict[str, str]) -> bool:
    return store.set(PROPERTY_KEYS["api_keys"], json.dumps(api_keys))


def _provider_key(provider: Provider | str) -> str:
    if isinstance(provider, Provider):
        return provider.value
    return str(provider).strip().lower()


def get_api_key(store: MemoryPropertyStore, provider: Provider | str) -> str:
    name = _provider_key(provider)
    stored = get_stored_api_keys(store).get(name, "").strip()
    return stored or get_env_api_key(name)


def set_api_key(store: MemoryPropertyStore, provider: Provider | str, api_key: str) -> bool:
    api_keys = get_stored_api_keys(store)
    api_keys[_provider_key(provider)] = api_key
    return store_api_keys(store, api_keys)


def remove_api_key(store: MemoryPropertyStore, provider: Provider | str) -> bool:
    api_keys = get_stored_api_keys(store)
    api_keys.pop(_provider_key(provider), None)
    return store_api_keys(store, api_keys)


def validate_api_key_for_model(store: MemoryPropertyStore, model_name: str) -> tuple[bool, str]:
    try:
        provider = provider_for_model(model_name)
    except UnknownModelError as err:
        return False, f"Error validating API key: {err}"
    if not get_api_key(store, provider):
        return (
            False,
            f"No API key found for {provider.value}. "
            f"Please set your {provider.value} API key in the settings.",
        )
    return True, f"API key found for {provider.value}"


def get_available_providers(store: MemoryPropertyStore) -> list[str]:
    return [provider.value for provider in Provider if get_api_key(store, provider)]


def has_any_api_keys(store: MemoryPropertyStore) -> bool:
    return bool(get_available_providers(store))
