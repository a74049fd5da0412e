from __future__ import annotations

import json
from dataclasses import dataclass

import requests

from .redaction import redact_sensitive_text

DEFAULT_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "openai": "https://api.openai.com/v1",
    "openai_compatible": "https://api.openai.com/v1",
}


@dataclass(frozen=True)
class OpenAICompatibleConfig:
    provider: str
    model: str
    api_key: str
    timeout_seconds: int
    api_base_url: str | None = None


@dataclass(frozen=True)
class ToolCallCompletion:
    """One chat completion: free text, or the first function the model chose to call."""

    content: str
    tool_name: str | None
    arguments: dict[str, object] | None


class OpenAICompatibleClient:
    def __init__(self, cfg: OpenAICompatibleConfig) -> None:
        provider = (cfg.provider or "").strip().lower()
        if provider not in DEFAULT_BASE_URLS:
            raise ValueError(f"provider must be one of: {', '.join(DEFAULT_BASE_URLS)}")
        self._api_key = (cfg.api_key or "").strip()
        self._model = (cfg.model or "").strip()
        if not self._api_key or not self._model:
            raise RuntimeError("LLM API key and model are both required.")
        self._timeout_seconds = max(1, int(cfg.timeout_seconds))
        self._endpoint = (
            ((cfg.api_base_url or "").strip() or DEFAULT_BASE_URLS[provider]).rstrip("/")
            + "/chat/completions"
        )

    def complete(
        self,
        *,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        message = self._post(messages, temperature, max_tokens)
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise RuntimeError("LLM completion missing content.")
        return content.strip()

    def complete_with_tools(
        self,
        *,
        messages: list[dict[str, str]],
        tools: list[dict[str, object]],
        temperature: float,
        max_tokens: int,
    ) -> ToolCallCompletion:
        message = self._post(messages, temperature, max_tokens, tools=tools)
        content = message.get("content")
        text = content.strip() if isinstance(content, str) else ""

        calls = message.get("tool_calls")
        if not calls or not isinstance(calls, list):
            return ToolCallCompletion(content=text, tool_name=None, arguments=None)
        function = calls[0].get("function") if isinstance(calls[0], dict) else None
        name = function.get("name") if isinstance(function, dict) else None
        if not isinstance(name, str) or not name.strip():
            raise RuntimeError("LLM tool call is missing a function name.")

        raw_arguments = function.get("arguments")
        arguments = (
            raw_arguments
            if isinstance(raw_arguments, dict)
            else extract_first_json_object(str(raw_arguments or ""))
        )
        if arguments is None:
            raise RuntimeError(f"LLM tool call '{name}' returned malformed arguments.")
        return ToolCallCompletion(content=text, tool_name=name.strip(), arguments=arguments)

    def _post(
        self,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        tools: list[dict[str, object]] | None = None,
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        response = requests.post(
            self._endpoint,
            headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            json=payload,
            timeout=self._timeout_seconds,
        )
        if not response.ok:
            detail = redact_sensitive_text(response.text.strip())[:400]
            raise RuntimeError(f"LLM completion failed ({response.status_code}): {detail or 'request failed'}")

        body = response.json()
        choices = body.get("choices") if isinstance(body, dict) else None
        first = choices[0] if isinstance(choices, list) and choices else None
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise RuntimeError("LLM completion returned no usable message.")
        return message


def extract_first_json_object(raw_text: str) -> dict[str, object] | None:
    """Parse a JSON object from model output, tolerating code fences and surrounding prose."""
    text = (raw_text or "").strip()
    if text.startswith("```"):
        text = text.strip("`").removeprefix("json").strip()
    if not text:
        return None
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
