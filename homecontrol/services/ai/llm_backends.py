"""
Language-model backends for the irrigation advisor.

Two hosted providers are supported: OpenAI Chat Completions (``openai``
SDK, which also reaches OpenAI-compatible servers through ``base_url``) and
Anthropic Messages (``anthropic`` SDK).

Each SDK is imported only when its backend connects, so an engine running
with ``LLM_PROVIDER=none`` does not need either package. Use
:func:`create_backend` rather than the classes directly; it returns
``None`` whenever the advisor should stay on its local rules.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from homecontrol.domain.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

JSON_ONLY_SUFFIX = "\n\nRespond ONLY with valid JSON, no markdown fences."


@dataclass
class LLMResponse:
    """One completion, normalised across providers."""

    text: str
    model: str
    # prompt_tokens / completion_tokens / total_tokens
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: float = 0.0
    raw: Any = None


def _token_usage(prompt: int | None, completion: int | None) -> dict[str, int]:
    prompt = prompt or 0
    completion = completion or 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


class LLMBackend(ABC):
    """Shared lifecycle for hosted completion APIs.

    Subclasses supply the provider name, a way to build the SDK client and a
    single request/response mapping. ``generate`` takes care of readiness,
    timing and turning SDK failures into :class:`ExternalServiceError`.
    """

    name: str = ""
    default_model: str = ""

    def __init__(self, api_key: str, model: str = "", timeout: int = 30):
        self._api_key = api_key
        self._model = model or self.default_model
        self._timeout = timeout
        self._client: Any = None

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def _has_credentials(self) -> bool:
        return bool(self._api_key)

    @abstractmethod
    def _connect(self) -> Any:
        """Build and return the SDK client."""

    @abstractmethod
    def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> tuple[str, str, dict[str, int], Any]:
        """Run one request and return ``(text, model, usage, raw)``."""

    def initialize(self) -> bool:
        if not self._has_credentials():
            logger.warning("%s backend has no API key; staying on local rules", self.name)
            return False
        try:
            self._client = self._connect()
        except ImportError:
            logger.error("%s backend unavailable: SDK package is not installed", self.name)
            return False
        except Exception as exc:
            logger.error("%s backend could not create its client: %s", self.name, exc)
            return False
        logger.info("%s backend ready (model=%s)", self.name, self._model)
        return True

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 512,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Send one system/user prompt pair.

        ``json_mode`` asks the provider for a bare JSON object. Raises
        ``RuntimeError`` if :meth:`initialize` has not succeeded.
        """
        if not self.is_available:
            raise RuntimeError(f"{self.name} backend not initialised")

        started = time.perf_counter()
        try:
            text, model, usage, raw = self._complete(
                system_prompt, user_prompt, max_tokens, temperature, json_mode
            )
        except Exception as exc:
            raise ExternalServiceError(
                f"{self.name} completion failed: {exc}",
                detail={"provider": self.name, "model": self._model},
            ) from exc
        elapsed_ms = (time.perf_counter() - started) * 1000

        return LLMResponse(text=text, model=model or self._model, usage=usage, latency_ms=elapsed_ms, raw=raw)


class OpenAIBackend(LLMBackend):
    """Chat Completions backend.

    ``base_url`` targets a compatible local server; such servers usually
    accept any key, so a missing key is tolerated there.
    """

    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str, model: str = "", base_url: str | None = None, timeout: int = 30):
        super().__init__(api_key, model, timeout)
        self._base_url = base_url

    def _has_credentials(self) -> bool:
        return bool(self._api_key or self._base_url)

    def _connect(self) -> Any:
        import openai

        options: dict[str, Any] = {"api_key": self._api_key or "not-needed", "timeout": self._timeout}
        if self._base_url:
            options["base_url"] = self._base_url
        return openai.OpenAI(**options)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode):
        request: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        reply = self._client.chat.completions.create(**request)
        usage = {}
        if reply.usage:
            usage = _token_usage(reply.usage.prompt_tokens, reply.usage.completion_tokens)
        return reply.choices[0].message.content or "", reply.model, usage, reply


class AnthropicBackend(LLMBackend):
    """Messages API backend. Has no JSON response mode, so the prompt asks for it."""

    name = "anthropic"
    default_model = "claude-3-5-haiku-latest"

    def _connect(self) -> Any:
        import anthropic

        return anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode):
        content = user_prompt + JSON_ONLY_SUFFIX if json_mode else user_prompt
        reply = self._client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": content}],
        )
        text = reply.content[0].text if reply.content else ""
        usage = {}
        if reply.usage:
            usage = _token_usage(reply.usage.input_tokens, reply.usage.output_tokens)
        return text, reply.model, usage, reply


_PROVIDERS: dict[str, type[LLMBackend]] = {
    OpenAIBackend.name: OpenAIBackend,
    AnthropicBackend.name: AnthropicBackend,
}


def create_backend(
    provider: str,
    *,
    api_key: str = "",
    model: str = "",
    base_url: str | None = None,
    timeout: int = 30,
) -> LLMBackend | None:
    """Return a ready backend for ``provider``, or ``None`` to use local rules.

    ``None`` covers ``"none"``, unknown names and failed initialisation.
    """
    key = (provider or "").strip().lower()
    if key in ("", "none"):
        logger.info("LLM provider disabled; advisor uses local rules")
        return None

    backend_cls = _PROVIDERS.get(key)
    if backend_cls is None:
        logger.error("Unknown LLM provider '%s'", provider)
        return None

    if backend_cls is OpenAIBackend:
        backend: LLMBackend = OpenAIBackend(api_key, model, base_url=base_url or None, timeout=timeout)
    else:
        backend = backend_cls(api_key, model, timeout=timeout)

    if not backend.initialize():
        logger.warning("LLM backend '%s' is not usable; advisor uses local rules", key)
        return None
    return backend
