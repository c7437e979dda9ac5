from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

import httpx
from openai import APIError, APITimeoutError

from gpt4sheets.config import (
    API_ENDPOINTS,
    API_MODEL_ALIASES,
    MODEL_CONFIG,
    OUTPUT_TYPES,
    get_max_retries,
    get_request_timeout,
    get_retry_base_seconds,
)
from gpt4sheets.openai_helpers import (
    _announce_retry,
    _call_openai_with_retries,
    _format_error_reason,
    _is_model_not_found_error,
    _model_supports_temperature,
    _rate_limit_sleep_seconds,
    _response_to_dict,
    build_client,
)

ANTHROPIC_VERSION = "2023-06-01"
MAX_OUTPUT_TOKENS = 4096

STRUCTURE_INSTRUCTIONS = {
    "list": "Please respond with a JSON array of strings.",
    "matrix": "Please respond with a JSON array of arrays (matrix format).",
}

_GEMINI_SCHEMAS = {
    "list": {"type": "ARRAY", "items": {"type": "STRING"}},
    "matrix": {"type": "ARRAY", "items": {"type": "ARRAY", "items": {"type": "STRING"}}},
}

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class Provider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    PERPLEXITY = "perplexity"
    DEEPSEEK = "deepseek"


MODEL_TABLE: dict[Provider, tuple[str, ...]] = {
    Provider(name): tuple(models) for name, models in MODEL_CONFIG["all"].items()
}
_PROVIDER_BY_MODEL: dict[str, Provider] = {
    model: provider for provider, models in MODEL_TABLE.items() for model in models
}


class UnknownModelError(ValueError):
    pass


def provider_for_model(model_name: str) -> Provider:
    provider = _PROVIDER_BY_MODEL.get((model_name or "").strip())
    if provider is None:
        raise UnknownModelError(
            f'Unknown model: "{model_name}". Please add it to MODEL_CONFIG or select a different model.'
        )
    return provider


def api_model_name(model_name: str) -> str:
    return API_MODEL_ALIASES.get(model_name, model_name)


class ErrorKind(str, Enum):
    MISSING_API_KEY = "missing_api_key"
    UNKNOWN_MODEL = "unknown_model"
    INVALID_ARGUMENT = "invalid_argument"
    HTTP = "http"
    TIMEOUT = "timeout"
    API = "api"
    EMPTY_RESPONSE = "empty_response"
    PARSE = "parse"


@dataclass(frozen=True)
class ProviderError:
    kind: ErrorKind
    message: str
    provider: Provider | None = None
    status_code: int | None = None


@dataclass(frozen=True)
class CallSuccess:
    value: Any
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class CallFailure:
    error: ProviderError
    ok: bool = field(default=False, init=False)


CallResult = Union[CallSuccess, CallFailure]


class ProviderCallError(Exception):
    def __init__(self, error: ProviderError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass(frozen=True)
class ModelRequest:
    system_prompt: str
    prompt: str
    model: str
    input_text: str = ""
    temperature: float = 0.0
    output_type: str = "text"

    @property
    def structured(self) -> bool:
        return self.output_type in ("list", "matrix")

    def user_message(self, with_instruction: bool = True) -> str:
        message = self.prompt + (f"\n\n{self.input_text}" if self.input_text else "")
        if with_instruction and self.structured:
            message += "\n\n" + STRUCTURE_INSTRUCTIONS[self.output_type]
        return message


@dataclass(frozen=True)
class CallOptions:
    include_search_results: bool = False
    max_retries: int = 6
    base_sleep_seconds: float = 0.5
    timeout: float = 120.0

    @classmethod
    def from_env(cls, include_search_results: bool = False) -> "CallOptions":
        return cls(
            include_search_results=include_search_results,
            max_retries=get_max_retries(),
            base_sleep_seconds=get_retry_base_seconds(),
            timeout=get_request_timeout(),
        )


def _fail(kind: ErrorKind, message: str, provider: Provider | None = None, status_code: int | None = None):
    return ProviderCallError(ProviderError(kind, message, provider, status_code))


def parse_structured(text: str, output_type: str, provider: Provider | None = None) -> list[Any]:
    """Decode a JSON list/matrix answer into a list of strings or rows of strings."""
    raw = (text or "").strip()
    fenced = _CODE_FENCE_RE.match(raw)
    if fenced:
        raw = fenced.group(1)
    try:
        parsed = json.loads(raw)
    except ValueError as err:
        raise _fail(ErrorKind.PARSE, f"Error parsing structured response: {err}", provider) from err
    if isinstance(parsed, dict):
        lists = [value for value in parsed.values() if isinstance(value, list)]
        if len(lists) == 1:
            parsed = lists[0]
    if not isinstance(parsed, list):
        raise _fail(ErrorKind.PARSE, "Error parsing structured response: expected a JSON array", provider)
    if output_type == "list":
        return [_cell_text(item) for item in parsed]
    return [[_cell_text(v) for v in row] if isinstance(row, list) else [_cell_text(row)] for row in parsed]


def _cell_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False) if isinstance(value, (dict, list)) else str(value)


def _finish(text: str, request: ModelRequest, provider: Provider) -> Any:
    if request.structured:
        return parse_structured(text, request.output_type, provider)
    return text


def _first_entry(items: Any, provider: Provider) -> dict[str, Any]:
    if not items:
        raise _fail(ErrorKind.EMPTY_RESPONSE, "No response generated", provider)
    if not isinstance(items, list) or not isinstance(items[0], dict):
        raise _fail(ErrorKind.PARSE, "Invalid response format", provider)
    return items[0]


def _text_of(value: Any, provider: Provider) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _fail(ErrorKind.PARSE, "Invalid response format", provider)
    return value


def _post_json(
    provider: Provider,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    options: CallOptions,
    params: dict[str, str] | None = None,
) -> dict[str, Any]:
    attempt = 0
    while True:
        try:
            response = httpx.post(url, json=payload, headers=headers, params=params, timeout=options.timeout)
        except httpx.TimeoutException as err:
            raise _fail(ErrorKind.TIMEOUT, f"Request timed out: {err}", provider) from err
        except httpx.RequestError as err:
            raise _fail(ErrorKind.HTTP, f"Request failed: {err}", provider) from err

        if response.status_code == 429 and attempt < options.max_retries:
            sleep_seconds = _rate_limit_sleep_seconds(response.text, attempt, options.base_sleep_seconds)
            _announce_retry(attempt, options.max_retries, sleep_seconds)
            time.sleep(sleep_seconds)
            attempt += 1
            continue
        if response.status_code < 200 or response.status_code >= 300:
            raise _fail(
                ErrorKind.HTTP,
                f"HTTP {response.status_code}: {response.text}",
                provider,
                response.status_code,
            )
        try:
            data = response.json()
        except ValueError as err:
            raise _fail(ErrorKind.PARSE, f"Invalid JSON response: {err}", provider) from err
        if not isinstance(data, dict):
            raise _fail(ErrorKind.PARSE, f"Unexpected response body: {type(data).__name__}", provider)
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else None
            raise _fail(ErrorKind.API, message or json.dumps(error), provider)
        return data


def call_gemini(request: ModelRequest, api_key: str, options: CallOptions) -> Any:
    provider = Provider.GEMINI
    full_prompt = request.system_prompt + "\n\n" + request.user_message(with_instruction=False)
    generation_config: dict[str, Any] = {"temperature": float(request.temperature or 0)}
    if request.structured:
        generation_config["response_mime_type"] = "application/json"
        generation_config["response_schema"] = _GEMINI_SCHEMAS[request.output_type]
    payload = {"contents": [{"parts": [{"text": full_prompt}]}], "generationConfig": generation_config}

    url = f"{API_ENDPOINTS['gemini']}/{api_model_name(request.model)}:generateContent"
    data = _post_json(
        provider,
        url,
        payload,
        {"Content-Type": "application/json"},
        options,
        params={"key": api_key},
    )
    candidate = _first_entry(data.get("candidates"), provider)
    content = candidate.get("content")
    part = _first_entry(content.get("parts") if isinstance(content, dict) else None, provider)
    return _finish(_text_of(part.get("text"), provider), request, provider)


def call_anthropic(request: ModelRequest, api_key: str, options: CallOptions) -> Any:
    provider = Provider.ANTHROPIC
    payload = {
        "model": api_model_name(request.model),
        "max_tokens": MAX_OUTPUT_TOKENS,
        "temperature": float(request.temperature or 0),
        "system": request.system_prompt,
        "messages": [{"role": "user", "content": request.user_message()}],
    }
    headers = {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }
    data = _post_json(provider, API_ENDPOINTS["anthropic"], payload, headers, options)
    block = _first_entry(data.get("content"), provider)
    return _finish(_text_of(block.get("text"), provider), request, provider)


def _chat_completion(
    provider: Provider,
    request: ModelRequest,
    api_key: str,
    options: CallOptions,
    **extra: Any,
) -> tuple[dict[str, Any], str]:
    client = build_client(api_key, base_url=API_ENDPOINTS[provider.value], timeout=options.timeout)
    model = api_model_name(request.model)
    request_kwargs: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": request.system_prompt},
            {"role": "user", "content": request.user_message()},
        ],
    }
    if _model_supports_temperature(model):
        request_kwargs["temperature"] = float(request.temperature or 0)
    request_kwargs.update(extra)
    try:
        response = _call_openai_with_retries(
            client,
            request_kwargs,
            max_retries=options.max_retries,
            base_sleep_seconds=options.base_sleep_seconds,
            timeout=options.timeout,
        )
    except APITimeoutError as err:
        raise _fail(ErrorKind.TIMEOUT, f"Request timed out: {err}", provider) from err
    except APIError as err:
        kind = ErrorKind.UNKNOWN_MODEL if _is_model_not_found_error(err) else ErrorKind.API
        raise _fail(kind, _format_error_reason(err), provider, getattr(err, "status_code", None)) from err

    data = _response_to_dict(response)
    choice = _first_entry(data.get("choices"), provider)
    message = choice.get("message")
    content = _text_of(message.get("content") if isinstance(message, dict) else None, provider)
    return data, content


def call_openai(request: ModelRequest, api_key: str, options: CallOptions) -> Any:
    extra: dict[str, Any] = {}
    if request.structured:
        extra["response_format"] = {"type": "json_object"}
    _, content = _chat_completion(Provider.OPENAI, request, api_key, options, **extra)
    return _finish(content, request, Provider.OPENAI)


def call_deepseek(request: ModelRequest, api_key: str, options: CallOptions) -> Any:
    _, content = _chat_completion(
        Provider.DEEPSEEK, request, api_key, options, max_tokens=MAX_OUTPUT_TOKENS
    )
    return _finish(content, request, Provider.DEEPSEEK)


def format_search_results(search_results: list[dict[str, Any]]) -> str:
    lines = ["===== SEARCH RESULTS =====", ""]
    for index, result in enumerate(search_results, start=1):
        lines.append(f"[{index}] {result.get('title') or 'Untitled'}")
        lines.append(result.get("url") or "No URL")
        lines.append(result.get("date") or "No date available")
        lines.append("")
    return "\n".join(lines)


def call_perplexity(request: ModelRequest, api_key: str, options: CallOptions) -> Any:
    data, content = _chat_completion(Provider.PERPLEXITY, request, api_key, options)
    if request.structured:
        return parse_structured(content, request.output_type, Provider.PERPLEXITY)
    search_results = data.get("search_results") or []
    if options.include_search_results and search_results:
        content += "\n\n" + format_search_results(search_results)
    return content


Adapter = Callable[[ModelRequest, str, CallOptions], Any]

ADAPTERS: dict[Provider, Adapter] = {
    Provider.GEMINI: call_gemini,
    Provider.OPENAI: call_openai,
    Provider.ANTHROPIC: call_anthropic,
    Provider.PERPLEXITY: call_perplexity,
    Provider.DEEPSEEK: call_deepseek,
}


def invoke_model(request: ModelRequest, api_key: str, options: CallOptions | None = None) -> CallResult:
    """Send one request to the provider serving ``request.model``."""
    try:
        provider = provider_for_model(request.model)
    except UnknownModelError as err:
        return CallFailure(ProviderError(ErrorKind.UNKNOWN_MODEL, str(err)))
    if request.output_type not in OUTPUT_TYPES:
        return CallFailure(
            ProviderError(ErrorKind.INVALID_ARGUMENT, f"unsupported output type: {request.output_type}", provider)
        )
    if not api_key:
        return CallFailure(
            ProviderError(
                ErrorKind.MISSING_API_KEY,
                f"No API key found for {provider.value}. "
                f"Please set your {provider.value} API key in the settings.",
                provider,
            )
        )
    try:
        value = ADAPTERS[provider](request, api_key, options or CallOptions.from_env())
    except ProviderCallError as err:
        return CallFailure(err.error)
    return CallSuccess(value)


Invoker = Callable[[ModelRequest, str, CallOptions], CallResult]
