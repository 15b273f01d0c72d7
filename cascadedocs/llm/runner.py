"""Adapters around the AI provider (OpenAI-compatible HTTP endpoint or Ollama CLI)."""

from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..config import AIConfig
from ..errors import ProviderError, RateLimited

_AUTO_BASE_URL = object()
_AUTO_API_KEY = object()


class TextGenerator(Protocol):
    """Anything that turns a prompt into text; the engines depend only on this."""

    def generate(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> str: ...


@dataclass
class LLMRequest:
    """Represents one inference request."""

    prompt: str
    system: Optional[str]
    model: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    executable: Optional[str]
    base_url: Optional[str]
    api_key: Optional[str]
    request_timeout: Optional[float]
    json_mode: bool = False


class LLMRunner:
    """Executes prompts against the configured model runtime."""

    DEFAULT_MODEL = "gpt-4o"
    DEFAULT_BASE_URLS = ("https://api.openai.com/v1",)
    ENV_MODEL_KEYS = ("CASCADEDOCS_AI_MODEL", "OPENAI_MODEL")
    ENV_BASE_URL_KEYS = ("CASCADEDOCS_AI_BASE_URL", "OPENAI_BASE_URL")
    ENV_API_KEY_KEYS = ("CASCADEDOCS_AI_API_KEY", "OPENAI_API_KEY")

    def __init__(
        self,
        model: str | None = None,
        *,
        base_url: str | None | object = _AUTO_BASE_URL,
        executable: str = "ollama",
        temperature: Optional[float] = 0.3,
        max_tokens: Optional[int] = None,
        api_key: str | None | object = _AUTO_API_KEY,
        request_timeout: Optional[float] = 300.0,
        runner: Callable[[LLMRequest], str] | None = None,
    ) -> None:
        self.model = self._resolve_model(model)
        self.base_url = self._resolve_base_url(base_url)
        self.executable = executable
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = self._resolve_api_key(api_key)
        self.request_timeout = request_timeout
        if runner is not None:
            self._runner = runner
        else:
            self._runner = self._http_runner if self.base_url else self._cli_runner

    @classmethod
    def from_config(
        cls, config: AIConfig, *, runner: Callable[[LLMRequest], str] | None = None
    ) -> "LLMRunner":
        base_url: str | None | object = _AUTO_BASE_URL
        if config.runner == "ollama":
            base_url = None
        elif config.base_url:
            base_url = config.base_url
        return cls(
            model=config.model,
            base_url=base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            api_key=config.api_key if config.api_key else _AUTO_API_KEY,
            request_timeout=config.request_timeout,
            runner=runner,
        )

    def generate(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        json_mode: bool = False,
        timeout: float | None = None,
    ) -> str:
        """Send the prompt to the provider and return the response text."""
        request = LLMRequest(
            prompt=prompt,
            system=system,
            model=model or self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            executable=self.executable,
            base_url=self.base_url,
            api_key=self.api_key,
            request_timeout=self._effective_timeout(timeout),
            json_mode=json_mode,
        )
        return self._runner(request)

    def _effective_timeout(self, timeout: float | None) -> Optional[float]:
        if timeout is None:
            return self.request_timeout
        if self.request_timeout is None:
            return timeout
        return min(timeout, self.request_timeout)

    @staticmethod
    def _normalize_base_url(url: str) -> str:
        return url.rstrip("/")

    @staticmethod
    def _cli_runner(request: LLMRequest) -> str:
        args = [request.executable or "ollama", "run", request.model]
        if request.json_mode:
            args.extend(["--format", "json"])
        prompt = request.prompt
        if request.system:
            prompt = f"{request.system}\n\n{prompt}"
        args.append(prompt)
        try:
            completed = subprocess.run(
                args,
                check=True,
                capture_output=True,
                text=True,
                timeout=request.request_timeout,
            )
        except FileNotFoundError as exc:  # pragma: no cover - depends on environment
            raise ProviderError(
                f"Unable to locate '{request.executable}'. Install Ollama or configure ai.base_url."
            ) from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - depends on environment
            raise ProviderError(f"LLM runner timed out after {exc.timeout}s") from exc
        except subprocess.CalledProcessError as exc:  # pragma: no cover - depends on environment
            raise ProviderError(
                f"LLM runner failed with exit code {exc.returncode}: {exc.stderr.strip()}"
            ) from exc
        return completed.stdout.strip()

    @staticmethod
    def _http_runner(request: LLMRequest) -> str:
        if not request.base_url:
            raise ProviderError("HTTP runner requires a base_url to be configured.")
        endpoint = f"{request.base_url}/chat/completions"
        payload: dict[str, object] = {
            "model": request.model,
            "messages": LLMRunner._build_messages(request.system, request.prompt),
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"

        http_request = Request(endpoint, data=data, headers=headers, method="POST")
        timeout = request.request_timeout or 300.0

        try:
            with urlopen(http_request, timeout=timeout) as response:  # type: ignore[arg-type]
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
            message = detail.strip() or str(exc.reason)
            if exc.code == 429:
                raise RateLimited(
                    f"AI provider rate limited the request: {message}",
                    retry_after=_parse_retry_after(exc.headers.get("Retry-After") if exc.headers else None),
                ) from exc
            raise ProviderError(
                f"LLM HTTP runner failed with status {exc.code}: {message}"
            ) from exc
        except URLError as exc:
            raise ProviderError(f"LLM HTTP runner failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ProviderError(f"LLM HTTP runner timed out after {timeout}s") from exc

        try:
            response_payload = json.loads(raw.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise ProviderError("LLM HTTP runner returned invalid JSON") from exc

        content = LLMRunner._extract_content(response_payload)
        if not content:
            raise ProviderError("LLM HTTP runner returned an empty response")
        return content.strip()

    @staticmethod
    def _build_messages(system: str | None, prompt: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    @staticmethod
    def _extract_content(payload: dict[str, object]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        first = choices[0]
        if not isinstance(first, dict):
            return ""
        message = first.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str):
                return content
        text = first.get("text")
        if isinstance(text, str):
            return text
        return ""

    def _resolve_model(self, model: str | None) -> str:
        if model:
            return model
        env_value = self._first_env_value(self.ENV_MODEL_KEYS)
        if env_value:
            return env_value
        return self.DEFAULT_MODEL

    def _resolve_base_url(self, base_url: str | None | object) -> str | None:
        if base_url is None:
            return None
        if base_url is not _AUTO_BASE_URL:
            return self._normalize_base_url(str(base_url))
        env_value = self._first_env_value(self.ENV_BASE_URL_KEYS)
        if env_value:
            return self._normalize_base_url(env_value)
        for candidate in self.DEFAULT_BASE_URLS:
            if candidate:
                return self._normalize_base_url(candidate)
        return None

    def _resolve_api_key(self, api_key: str | None | object) -> str | None:
        if api_key is _AUTO_API_KEY:
            return self._first_env_value(self.ENV_API_KEY_KEYS)
        return api_key  # type: ignore[return-value]

    @staticmethod
    def _first_env_value(keys: Sequence[str]) -> str | None:
        for key in keys:
            value = os.getenv(key)
            if value:
                return value
        return None


def _parse_retry_after(value: str | None) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


__all__ = ["LLMRequest", "LLMRunner", "TextGenerator"]
