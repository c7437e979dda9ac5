"""Spreadsheet functions that call AI models.

``AI_CALL`` uses the stored defaults; ``AI_CALL_ADV`` exposes every
parameter. Both return what a cell displays: the answer text, a list or
matrix for structured output, or an ``"Error: ..."`` string.
"""
from __future__ import annotations

from typing import Any

from gpt4sheets.api_keys import get_api_key, validate_api_key_for_model
from gpt4sheets.config import DEFAULT_SYSTEM_PROMPT, OUTPUT_TYPES
from gpt4sheets.formula_args import as_text
from gpt4sheets.property_store import MemoryPropertyStore
from gpt4sheets.providers import (
    CallOptions,
    Invoker,
    ModelRequest,
    UnknownModelError,
    invoke_model,
    provider_for_model,
)
from gpt4sheets.settings import get_default_model, get_default_temperature, get_include_search_results


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _invoke(store: MemoryPropertyStore, request: ModelRequest, invoker: Invoker) -> Any:
    try:
        provider = provider_for_model(request.model)
    except UnknownModelError as err:
        return f"Error: {err}"
    options = CallOptions.from_env(include_search_results=get_include_search_results(store))
    result = invoker(request, get_api_key(store, provider), options)
    if not result.ok:
        return f"Error: {result.error.message}"
    return result.value


def ai_call(
    prompt: Any = None,
    input_text: Any = "",
    *,
    store: MemoryPropertyStore,
    invoker: Invoker = invoke_model,
) -> Any:
    if _is_blank(prompt):
        return "Error: Please provide a prompt"
    request = ModelRequest(
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        prompt=as_text(prompt),
        input_text=as_text(input_text),
        temperature=get_default_temperature(store),
        model=get_default_model(store),
        output_type="text",
    )
    return _invoke(store, request, invoker)


def ai_call_adv(
    prompt: Any = None,
    system_prompt: Any = DEFAULT_SYSTEM_PROMPT,
    input_text: Any = "",
    temperature: Any = 0,
    model_name: Any = "",
    output_type: Any = "text",
    overflow: Any = False,
    *,
    store: MemoryPropertyStore,
    invoker: Invoker = invoke_model,
) -> Any:
    if _is_blank(prompt):
        return "Error: Please provide a prompt"

    output_type = as_text(output_type).strip().lower() or "text"
    if output_type not in OUTPUT_TYPES:
        return "Error: outputType must be one of: 'text', 'list', or 'matrix'"

    try:
        temp = float(0 if _is_blank(temperature) else temperature)
    except (TypeError, ValueError):
        temp = float("nan")
    if not 0 <= temp <= 1:
        return "Error: temperature must be a number between 0 and 1"

    selected_model = as_text(model_name).strip() or get_default_model(store)
    valid, message = validate_api_key_for_model(store, selected_model)
    if not valid:
        return message if message.startswith("Error") else f"Error: {message}"

    request = ModelRequest(
        system_prompt=as_text(system_prompt) if not _is_blank(system_prompt) else DEFAULT_SYSTEM_PROMPT,
        prompt=as_text(prompt),
        input_text=as_text(input_text),
        temperature=temp,
        model=selected_model,
        output_type=output_type,
    )
    # overflow is accepted for formula compatibility; structured output is returned either way
    return _invoke(store, request, invoker)


FUNCTIONS = {
    "AI_CALL": ai_call,
    "AI_CALL_ADV": ai_call_adv,
}

FUNCTION_ARITY = {
    "AI_CALL": 2,
    "AI_CALL_ADV": 7,
}
