from __future__ import annotations

import pytest

from gpt4sheets.api_keys import set_api_key
from gpt4sheets.config import DEFAULT_SYSTEM_PROMPT
from gpt4sheets.functions import ai_call, ai_call_adv
from gpt4sheets.property_store import MemoryPropertyStore
from gpt4sheets.providers import CallFailure, CallSuccess, ErrorKind, Provider, ProviderError


class _RecordingInvoker:
    def __init__(self, result) -> None:
        self.result = result
        self.calls = []

    def __call__(self, request, api_key, options):
        self.calls.append((request, api_key, options))
        return self.result


@pytest.fixture
def store(monkeypatch) -> MemoryPropertyStore:
    for provider in Provider:
        monkeypatch.delenv(f"{provider.value.upper()}_API_KEY", raising=False)
    store = MemoryPropertyStore()
    set_api_key(store, Provider.GEMINI, "g-key")
    set_api_key(store, Provider.OPENAI, "sk-key")
    return store


def test_ai_call_uses_stored_defaults(store: MemoryPropertyStore) -> None:
    store.set("default-temperature", "0.4")
    invoker = _RecordingInvoker(CallSuccess("Paris"))

    assert ai_call("Capital of France?", 12.0, store=store, invoker=invoker) == "Paris"

    request, api_key, options = invoker.calls[0]
    assert request.model == "gemini-2.0-flash"
    assert request.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert request.input_text == "12"
    assert request.temperature == 0.4
    assert api_key == "g-key"
    assert options.include_search_results is False


def test_ai_call_requires_prompt(store: MemoryPropertyStore) -> None:
    invoker = _RecordingInvoker(CallSuccess("unused"))
    assert ai_call(None, store=store, invoker=invoker) == "Error: Please provide a prompt"
    assert ai_call("   ", store=store, invoker=invoker) == "Error: Please provide a prompt"
    assert invoker.calls == []


def test_ai_call_reports_provider_errors(store: MemoryPropertyStore) -> None:
    invoker = _RecordingInvoker(CallFailure(ProviderError(ErrorKind.HTTP, "HTTP 500: boom")))
    assert ai_call("hi", store=store, invoker=invoker) == "Error: HTTP 500: boom"


def test_ai_call_adv_passes_every_parameter(store: MemoryPropertyStore) -> None:
    store.set("include_search_results", "true")
    invoker = _RecordingInvoker(CallSuccess(["a", "b"]))

    value = ai_call_adv("List", "Be terse", "input", 0.7, "gpt-4o", "LIST", True, store=store, invoker=invoker)

    assert value == ["a", "b"]
    request, api_key, options = invoker.calls[0]
    assert request.prompt == "List"
    assert request.system_prompt == "Be terse"
    assert request.input_text == "input"
    assert request.temperature == 0.7
    assert request.model == "gpt-4o"
    assert request.output_type == "list"
    assert api_key == "sk-key"
    assert options.include_search_results is True


def test_ai_call_adv_blank_arguments_take_defaults(store: MemoryPropertyStore) -> None:
    invoker = _RecordingInvoker(CallSuccess("ok"))

    ai_call_adv("hi", None, None, None, None, None, store=store, invoker=invoker)

    request = invoker.calls[0][0]
    assert request.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert request.model == "gemini-2.0-flash"
    assert request.temperature == 0.0
    assert request.output_type == "text"


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"prompt": ""}, "Error: Please provide a prompt"),
        ({"output_type": "table"}, "Error: outputType must be one of: 'text', 'list', or 'matrix'"),
        ({"temperature": 2}, "Error: temperature must be a number between 0 and 1"),
        ({"temperature": "hot"}, "Error: temperature must be a number between 0 and 1"),
        (
            {"model_name": "claude-3-opus-latest"},
            "Error: No API key found for anthropic. Please set your anthropic API key in the settings.",
        ),
        ({"model_name": "gpt-99"}, "Error validating API key: Unknown model"),
    ],
)
def test_ai_call_adv_validation(store: MemoryPropertyStore, kwargs, expected: str) -> None:
    invoker = _RecordingInvoker(CallSuccess("unused"))
    arguments = {"prompt": "hi", **kwargs}

    value = ai_call_adv(store=store, invoker=invoker, **arguments)

    assert value.startswith(expected)
    assert invoker.calls == []
