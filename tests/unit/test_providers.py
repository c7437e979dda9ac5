from __future__ import annotations

from typing import Any

import httpx
import pytest
from openai import APITimeoutError

from gpt4sheets import openai_helpers, providers
from gpt4sheets.providers import (
    CallOptions,
    ErrorKind,
    ModelRequest,
    Provider,
    ProviderCallError,
    UnknownModelError,
    api_model_name,
    invoke_model,
    parse_structured,
    provider_for_model,
)

OPTIONS = CallOptions(max_retries=2, base_sleep_seconds=0.01, timeout=5.0)


class _FakeCompletions:
    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        return self.payload


class _FakeChat:
    def __init__(self, completions: _FakeCompletions) -> None:
        self.completions = completions


def _install_fake_openai(monkeypatch, content: str, **extra: Any) -> dict[str, Any]:
    seen: dict[str, Any] = {"clients": []}
    completions = _FakeCompletions({"choices": [{"message": {"content": content}}], **extra})
    seen["completions"] = completions

    class _FakeOpenAI:
        def __init__(self, **kwargs: Any) -> None:
            seen["clients"].append(kwargs)
            self.chat = _FakeChat(completions)

    monkeypatch.setattr(openai_helpers, "OpenAI", _FakeOpenAI)
    return seen


def _install_fake_post(monkeypatch, responses: list[httpx.Response]) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def _fake_post(url: str, **kwargs: Any) -> httpx.Response:
        calls.append({"url": url, **kwargs})
        return responses.pop(0)

    monkeypatch.setattr(providers.httpx, "post", _fake_post)
    return calls


def test_provider_lookup() -> None:
    assert provider_for_model("gemini-2.0-flash") is Provider.GEMINI
    assert provider_for_model("gpt-4o") is Provider.OPENAI
    assert provider_for_model("claude-3-5-sonnet-latest") is Provider.ANTHROPIC
    assert provider_for_model("sonar") is Provider.PERPLEXITY
    assert provider_for_model("deepseek-v3") is Provider.DEEPSEEK
    assert api_model_name("deepseek-v3") == "deepseek-chat"
    assert api_model_name("gpt-4o") == "gpt-4o"
    with pytest.raises(UnknownModelError):
        provider_for_model("gpt-99")


def test_user_message_adds_structure_instruction() -> None:
    request = ModelRequest("sys", "List fruits", "gpt-4o", input_text="tropical", output_type="list")
    assert request.user_message() == (
        "List fruits\n\ntropical\n\nPlease respond with a JSON array of strings."
    )
    assert request.user_message(with_instruction=False) == "List fruits\n\ntropical"


def test_parse_structured_variants() -> None:
    assert parse_structured('["a", "b"]', "list") == ["a", "b"]
    assert parse_structured('```json\n["a", 2]\n```', "list") == ["a", "2"]
    assert parse_structured('{"items": ["x"]}', "list") == ["x"]
    assert parse_structured('[["a", 1], ["b", null]]', "matrix") == [["a", "1"], ["b", ""]]
    assert parse_structured('["a", "b"]', "matrix") == [["a"], ["b"]]


def test_parse_structured_rejects_non_arrays() -> None:
    with pytest.raises(ProviderCallError) as excinfo:
        parse_structured("not json", "list", Provider.OPENAI)
    assert excinfo.value.error.kind is ErrorKind.PARSE

    with pytest.raises(ProviderCallError):
        parse_structured('{"a": 1}', "list")


def test_invoke_model_without_key_fails_fast(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, "unused")

    result = invoke_model(ModelRequest("sys", "hi", "gpt-4o"), "", OPTIONS)

    assert result.ok is False
    assert result.error.kind is ErrorKind.MISSING_API_KEY
    assert result.error.provider is Provider.OPENAI
    assert seen["clients"] == []


def test_invoke_model_unknown_model() -> None:
    result = invoke_model(ModelRequest("sys", "hi", "nope"), "key", OPTIONS)
    assert result.ok is False
    assert result.error.kind is ErrorKind.UNKNOWN_MODEL


def test_openai_text_call(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, "Hello there")

    result = invoke_model(ModelRequest("be brief", "hi", "gpt-4o", temperature=0.3), "sk-test", OPTIONS)

    assert result.ok is True
    assert result.value == "Hello there"
    assert seen["clients"][0]["api_key"] == "sk-test"
    assert seen["clients"][0]["base_url"] == "https://api.openai.com/v1"
    call = seen["completions"].calls[0]
    assert call["model"] == "gpt-4o"
    assert call["temperature"] == 0.3
    assert call["messages"][0] == {"role": "system", "content": "be brief"}
    assert "response_format" not in call


def test_openai_list_call_uses_json_mode(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, '{"items": ["a", "b"]}')

    result = invoke_model(ModelRequest("sys", "two letters", "gpt-4o", output_type="list"), "sk", OPTIONS)

    assert result.value == ["a", "b"]
    call = seen["completions"].calls[0]
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][1]["content"].endswith("Please respond with a JSON array of strings.")


def test_reasoning_models_skip_temperature(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, "ok")

    invoke_model(ModelRequest("sys", "hi", "o3", temperature=0.7), "sk", OPTIONS)

    assert "temperature" not in seen["completions"].calls[0]


def test_deepseek_uses_api_alias_and_endpoint(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, "ok")

    result = invoke_model(ModelRequest("sys", "hi", "deepseek-v3"), "ds", OPTIONS)

    assert result.value == "ok"
    assert seen["clients"][0]["base_url"] == "https://api.deepseek.com/v1"
    call = seen["completions"].calls[0]
    assert call["model"] == "deepseek-chat"
    assert call["max_tokens"] == 4096


def test_perplexity_appends_search_results(monkeypatch) -> None:
    search = [{"title": "Source", "url": "https://example.com", "date": "2025-01-01"}, {}]
    _install_fake_openai(monkeypatch, "Answer", search_results=search)
    request = ModelRequest("sys", "q", "sonar")

    plain = invoke_model(request, "pplx", OPTIONS)
    with_sources = invoke_model(
        request, "pplx", CallOptions(include_search_results=True, max_retries=0, timeout=5.0)
    )

    assert plain.value == "Answer"
    assert with_sources.value.startswith("Answer\n\n===== SEARCH RESULTS =====")
    assert "[1] Source\nhttps://example.com\n2025-01-01" in with_sources.value
    assert "[2] Untitled\nNo URL\nNo date available" in with_sources.value


def test_gemini_matrix_call(monkeypatch) -> None:
    body = {"candidates": [{"content": {"parts": [{"text": '[["a", "b"], ["c", "d"]]'}]}}]}
    calls = _install_fake_post(monkeypatch, [httpx.Response(200, json=body)])

    result = invoke_model(
        ModelRequest("sys", "grid", "gemini-2.0-flash", input_text="data", output_type="matrix"),
        "g-key",
        OPTIONS,
    )

    assert result.value == [["a", "b"], ["c", "d"]]
    call = calls[0]
    assert call["url"].endswith("/gemini-2.0-flash:generateContent")
    assert call["params"] == {"key": "g-key"}
    assert call["json"]["contents"][0]["parts"][0]["text"] == "sys\n\ngrid\n\ndata"
    config = call["json"]["generationConfig"]
    assert config["response_mime_type"] == "application/json"
    assert config["response_schema"]["items"]["type"] == "ARRAY"


def test_gemini_empty_candidates(monkeypatch) -> None:
    _install_fake_post(monkeypatch, [httpx.Response(200, json={"candidates": []})])

    result = invoke_model(ModelRequest("sys", "hi", "gemini-2.0-flash"), "g", OPTIONS)

    assert result.ok is False
    assert result.error.kind is ErrorKind.EMPTY_RESPONSE


def test_anthropic_call_headers(monkeypatch) -> None:
    calls = _install_fake_post(monkeypatch, [httpx.Response(200, json={"content": [{"text": "Hi"}]})])

    result = invoke_model(ModelRequest("sys", "hi", "claude-3-5-sonnet-latest"), "ant", OPTIONS)

    assert result.value == "Hi"
    call = calls[0]
    assert call["headers"]["x-api-key"] == "ant"
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    assert call["json"]["system"] == "sys"
    assert call["json"]["max_tokens"] == 4096


def test_http_error_becomes_failure(monkeypatch) -> None:
    _install_fake_post(monkeypatch, [httpx.Response(401, text="bad key")])

    result = invoke_model(ModelRequest("sys", "hi", "claude-3-5-sonnet-latest"), "ant", OPTIONS)

    assert result.ok is False
    assert result.error.kind is ErrorKind.HTTP
    assert result.error.status_code == 401
    assert result.error.message == "HTTP 401: bad key"


def test_api_error_payload_becomes_failure(monkeypatch) -> None:
    _install_fake_post(monkeypatch, [httpx.Response(200, json={"error": {"message": "quota"}})])

    result = invoke_model(ModelRequest("sys", "hi", "gemini-2.0-flash"), "g", OPTIONS)

    assert result.error.kind is ErrorKind.API
    assert result.error.message == "quota"


def test_rate_limited_http_call_retries(monkeypatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(providers.time, "sleep", sleeps.append)
    _install_fake_post(
        monkeypatch,
        [
            httpx.Response(429, text="Please try again in 120ms"),
            httpx.Response(200, json={"content": [{"text": "later"}]}),
        ],
    )

    result = invoke_model(ModelRequest("sys", "hi", "claude-3-5-sonnet-latest"), "ant", OPTIONS)

    assert result.value == "later"
    assert sleeps == [pytest.approx(0.17)]


def test_timeout_becomes_failure(monkeypatch) -> None:
    def _timeout(url: str, **kwargs: Any) -> httpx.Response:
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(providers.httpx, "post", _timeout)

    result = invoke_model(ModelRequest("sys", "hi", "gemini-2.0-flash"), "g", OPTIONS)

    assert result.error.kind is ErrorKind.TIMEOUT


def test_rate_limit_sleep_seconds() -> None:
    assert openai_helpers._rate_limit_sleep_seconds("try again in 950ms", 0, 0.5) == 1.0
    assert openai_helpers._rate_limit_sleep_seconds("", 2, 0.5) == 2.0
    assert openai_helpers._rate_limit_sleep_seconds("", 10, 0.5) == 10.0


@pytest.mark.parametrize(
    "body",
    [
        [],
        {"candidates": ["text only"]},
        {"candidates": [{"content": "flat"}]},
        {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
    ],
)
def test_malformed_gemini_bodies_become_parse_failures(monkeypatch, body) -> None:
    _install_fake_post(monkeypatch, [httpx.Response(200, json=body)])

    result = invoke_model(ModelRequest("sys", "hi", "gemini-2.0-flash"), "g", OPTIONS)

    assert result.ok is False
    assert result.error.kind in (ErrorKind.PARSE, ErrorKind.EMPTY_RESPONSE)


def test_malformed_anthropic_content_becomes_failure(monkeypatch) -> None:
    _install_fake_post(monkeypatch, [httpx.Response(200, json={"content": "Hi"})])

    result = invoke_model(ModelRequest("sys", "hi", "claude-3-5-sonnet-latest"), "ant", OPTIONS)

    assert result.error.kind is ErrorKind.PARSE


def test_malformed_chat_choice_becomes_failure(monkeypatch) -> None:
    seen = _install_fake_openai(monkeypatch, "unused")
    seen["completions"].payload = {"choices": ["oops"]}

    result = invoke_model(ModelRequest("sys", "hi", "gpt-4o"), "sk", OPTIONS)

    assert result.error.kind is ErrorKind.PARSE


def test_chat_timeout_reports_the_call_timeout(monkeypatch, capsys) -> None:
    monkeypatch.setenv("GPT4SHEETS_REQUEST_TIMEOUT", "300")
    seen = _install_fake_openai(monkeypatch, "unused")

    def _timeout(**kwargs: Any) -> Any:
        raise APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    seen["completions"].create = _timeout

    result = invoke_model(ModelRequest("sys", "hi", "gpt-4o"), "sk", OPTIONS)

    assert result.error.kind is ErrorKind.TIMEOUT
    assert "Request timed out after 5s." in capsys.readouterr().out
