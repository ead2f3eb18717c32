"""
LLM Service - the generative text delegate used for routing and extraction.

Features:
- Automatic failover: GROQ → Gemini
- NO retry logic - fails fast, tries next provider
- Provider health tracking (a provider with 3 consecutive failures is
  skipped until every provider is failing)
- Langfuse telemetry on every call

Usage:
    llm = LLMService(LLMConfig(groq_api_key="..."))
    text = await llm.generate_response("Say hello", ModelType.DEFAULT)
    text = await llm.generate_response_with_history(prompt, ModelType.GROQ, [("user", "hi")])
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from .config import LLMConfig
from .exceptions import LLMServiceError
from .telemetry import is_telemetry_enabled, trace_llm_call

logger = logging.getLogger(__name__)

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"
GEMINI_URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

History = Sequence[Tuple[str, str]]


class ModelType(Enum):
    """Which provider a call should use."""
    DEFAULT = "default"
    GROQ = "groq"
    GEMINI = "gemini"

    @classmethod
    def parse(cls, value: str) -> "ModelType":
        try:
            return cls(value.lower())
        except ValueError:
            return cls.DEFAULT


class GenerativeTextDelegate(ABC):
    """Contract the host needs from a text generation backend."""

    @abstractmethod
    async def generate_response(self, prompt: str, model_type: ModelType = ModelType.DEFAULT) -> str:
        pass

    @abstractmethod
    async def generate_response_with_history(
        self,
        prompt: str,
        model_type: ModelType = ModelType.DEFAULT,
        history: Optional[History] = None,
    ) -> str:
        pass


def history_to_messages(prompt: str, history: Optional[History] = None) -> List[Dict[str, str]]:
    """Map (role, text) turns plus the new prompt to chat messages."""
    messages = []
    for role, text in history or []:
        role = (role or "user").lower()
        if role in ("assistant", "ai", "model", "bot"):
            role = "assistant"
        elif role != "system":
            role = "user"
        messages.append({"role": role, "content": text})
    messages.append({"role": "user", "content": prompt})
    return messages


class LLMService(GenerativeTextDelegate):
    """
    Groq/Gemini implementation of GenerativeTextDelegate over httpx.
    """

    def __init__(self, config: Optional[LLMConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config or LLMConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.request_timeout)

        self._failures: Dict[str, int] = {"groq": 0, "gemini": 0}
        self._max_failures = 3

        groq_status = "✅" if self.config.groq_api_key else "❌"
        gemini_status = "✅" if self.config.gemini_api_key else "❌"
        logger.info(f"🤖 LLMService initialized: GROQ {groq_status}, Gemini {gemini_status}")

    def _has_key(self, provider: str) -> bool:
        if provider == "groq":
            return bool(self.config.groq_api_key)
        return bool(self.config.gemini_api_key)

    def _get_provider_order(self, model_type: ModelType = ModelType.DEFAULT) -> List[str]:
        """Get providers in order of preference, skipping ones that are failing."""
        if model_type == ModelType.GROQ:
            candidates = ["groq"]
        elif model_type == ModelType.GEMINI:
            candidates = ["gemini"]
        else:
            candidates = ["groq", "gemini"]

        candidates = [p for p in candidates if self._has_key(p)]
        providers = [p for p in candidates if self._failures[p] < self._max_failures]

        # If all failing, reset and try again
        if candidates and not providers:
            logger.warning("🔄 All LLM providers failing, resetting failure counts...")
            for p in candidates:
                self._failures[p] = 0
            providers = list(candidates)

        return providers

    def _model_for(self, provider: str) -> str:
        return self.config.groq_model if provider == "groq" else self.config.gemini_model

    async def _call_groq(self, messages: List[Dict[str, str]], json_mode: bool = False) -> str:
        payload = {
            "model": self.config.groq_model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = await self._client.post(
            GROQ_URL,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.config.groq_api_key}",
                "Content-Type": "application/json"
            },
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"].strip()

    async def _call_gemini(self, messages: List[Dict[str, str]]) -> str:
        url = f"{GEMINI_URL_TEMPLATE.format(model=self.config.gemini_model)}?key={self.config.gemini_api_key}"

        # Gemini 2.5 spends part of maxOutputTokens on thinking
        effective_max_tokens = max(self.config.max_tokens + 100, 200)
        payload = {
            "contents": [{"parts": [{"text": self._messages_to_prompt(messages)}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": effective_max_tokens,
            }
        }

        response = await self._client.post(url, json=payload, timeout=self.config.request_timeout)
        response.raise_for_status()
        return self._extract_gemini_text(response.json())

    @staticmethod
    def _messages_to_prompt(messages: List[Dict[str, str]]) -> str:
        """Convert chat messages to a single prompt for Gemini."""
        parts = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            if role == "system":
                parts.append(f"Instructions: {content}")
            elif role == "assistant":
                parts.append(f"Assistant: {content}")
            else:
                parts.append(content)
        return "\n\n".join(parts)

    @staticmethod
    def _extract_gemini_text(data: dict) -> str:
        """Extract text from a Gemini response."""
        candidates = data.get("candidates", [])
        if not candidates:
            raise ValueError("No candidates in Gemini response")

        parts = candidates[0].get("content", {}).get("parts", [])
        if not parts:
            finish_reason = candidates[0].get("finishReason", "UNKNOWN")
            if finish_reason == "MAX_TOKENS":
                raise ValueError("Gemini hit MAX_TOKENS before generating content")
            raise ValueError(f"No parts in Gemini response (finish_reason: {finish_reason})")

        return parts[0].get("text", "").strip()

    async def call_with_messages(
        self,
        messages: List[Dict[str, str]],
        model_type: ModelType = ModelType.DEFAULT,
        json_mode: bool = False,
        trace_name: str = "apphost-llm",
    ) -> str:
        """Call the first healthy provider, failing over on errors."""
        providers = self._get_provider_order(model_type)
        if not providers:
            raise LLMServiceError("No LLM API keys configured", {"model_type": model_type.value})

        last_error: Optional[Exception] = None
        for provider in providers:
            logger.info(f"🤖 [{trace_name}] Calling {provider.upper()}...")
            try:
                with trace_llm_call(
                    name=trace_name,
                    model=f"{provider}/{self._model_for(provider)}",
                    input_data={"messages": messages},
                    model_parameters={"temperature": self.config.temperature, "max_tokens": self.config.max_tokens},
                    metadata={"source": "LLMService", "provider": provider},
                ) as trace:
                    if provider == "groq":
                        result = await self._call_groq(messages, json_mode)
                    else:
                        result = await self._call_gemini(messages)
                    trace.update(output=result[:500], metadata={"success": True, "provider": provider})
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                error_str = str(e).lower()
                if "429" in error_str or "rate" in error_str:
                    logger.warning(f"⚠️ [{trace_name}] {provider.upper()} rate limited")
                else:
                    logger.warning(f"⚠️ [{trace_name}] {provider.upper()} failed: {e}")
                self._failures[provider] += 1
                last_error = e
                continue

            self._failures[provider] = max(0, self._failures[provider] - 1)
            logger.info(f"✅ [{trace_name}] {provider.upper()} succeeded")
            return result

        raise LLMServiceError(
            f"All LLM providers failed. Last error: {last_error}",
            {"providers": providers},
        )

    async def generate_response(self, prompt: str, model_type: ModelType = ModelType.DEFAULT) -> str:
        return await self.call_with_messages(history_to_messages(prompt), model_type)

    async def generate_response_with_history(
        self,
        prompt: str,
        model_type: ModelType = ModelType.DEFAULT,
        history: Optional[History] = None,
    ) -> str:
        return await self.call_with_messages(
            history_to_messages(prompt, history), model_type, trace_name="apphost-llm-history"
        )

    def get_status(self) -> dict:
        """Get current status of all providers."""
        return {
            "groq": {
                "available": bool(self.config.groq_api_key),
                "model": self.config.groq_model,
                "failures": self._failures["groq"],
            },
            "gemini": {
                "available": bool(self.config.gemini_api_key),
                "model": self.config.gemini_model,
                "failures": self._failures["gemini"],
            },
            "telemetry": is_telemetry_enabled(),
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
