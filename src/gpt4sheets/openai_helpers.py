from __future__ import annotations

import re
import time
from typing import Any

from openai import APITimeoutError, NotFoundError, OpenAI, RateLimitError

from gpt4sheets.config import get_request_timeout

_RETRY_AFTER_MS_RE = re.compile(r"try again in\s+(\d+)ms")


def build_client(api_key: str, base_url: str | None = None, timeout: float | None = None) -> OpenAI:
    return OpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout if timeout is not None else get_request_timeout(),
        max_retries=0,
    )


def _response_to_dict(response: Any) -> dict[str, Any]:
    if hasattr(response, "model_dump"):
        return response.model_dump()
    if hasattr(response, "dict"):
        return response.dict()
    if isinstance(response, dict):
        return response
    return {"raw": str(response)}


def _model_supports_temperature(model: str | None) -> bool:
    if not model:
        return True
    # o-series reasoning models only accept the default temperature
    return not re.match(r"^o\d", model.strip().lower())


def _is_model_not_found_error(err: Exception) -> bool:
    msg = str(err).lower()
    if isinstance(err, NotFoundError):
        return ("model" in msg) or ("model_not_found" in msg)
    status_code = getattr(err, "status_code", None)
    if status_code == 404:
        return ("model" in msg) or ("model_not_found" in msg)
    return "model_not_found" in msg


def _format_error_reason(err: Exception) -> str:
    status_code = getattr(err, "status_code", None)
    if status_code is not None:
        return f"{status_code}: {err}"
    return str(err)


def _rate_limit_sleep_seconds(message: str, attempt: int, base_sleep_seconds: float) -> float:
    match = _RETRY_AFTER_MS_RE.search(message.lower())
    if match:
        return (int(match.group(1)) + 50) / 1000.0
    return min(base_sleep_seconds * (2**attempt), 10.0)


def _announce_retry(attempt: int, max_retries: int, sleep_seconds: float) -> None:
    print(
        f"Rate limited (attempt {attempt + 1}/{max_retries}). "
        f"Sleeping {sleep_seconds:.2f}s then retrying..."
    )


def _call_openai_with_retries(
    client: OpenAI,
    request_kwargs: dict[str, Any],
    *,
    max_retries: int,
    base_sleep_seconds: float,
    timeout: float | None = None,
) -> Any:
    attempt = 0
    while True:
        try:
            return client.chat.completions.create(**request_kwargs)
        except APITimeoutError:
            limit = timeout if timeout is not None else get_request_timeout()
            print(f"Request timed out after {limit:.0f}s.")
            raise
        except RateLimitError as err:
            msg = str(err).lower()
            code = getattr(err, "code", None)
            should_retry = (code == "rate_limit_exceeded") or ("rate limit" in msg)
            if not should_retry:
                raise
            if attempt >= max_retries:
                raise
            sleep_seconds = _rate_limit_sleep_seconds(msg, attempt, base_sleep_seconds)
            _announce_retry(attempt, max_retries, sleep_seconds)
            time.sleep(sleep_seconds)
            attempt += 1
