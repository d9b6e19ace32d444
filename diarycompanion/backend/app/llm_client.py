from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import requests

from .config import Settings

logger = logging.getLogger(__name__)

EXTERNAL = "external"
FALLBACK = "fallback"


@dataclass
class LLMResult:
    source: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.source == EXTERNAL and bool(self.text)


def fallback(reason: str) -> LLMResult:
    return LLMResult(source=FALLBACK, error=reason)


class ChatCompletionClient:
    """Minimal chat-completions client; every failure becomes a fallback result."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 200,
        temperature: float = 0.8,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.session = session

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatCompletionClient":
        return cls(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            timeout=settings.llm_timeout,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, system_prompt: str, user_content: str) -> dict:
        messages: List[dict] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        return {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    def complete(self, system_prompt: str, user_content: str) -> LLMResult:
        if not self.is_available():
            return fallback("not_configured")
        post = self.session.post if self.session is not None else requests.post
        try:
            response = post(
                f"{self.base_url}/chat/completions",
                json=self.build_payload(system_prompt, user_content),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Chat completion request failed: %s", exc.__class__.__name__)
            return fallback("network_error")
        if not response.ok:
            logger.warning("Chat completion returned HTTP %s", response.status_code)
            return fallback(f"http_{response.status_code}")
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Chat completion response was malformed")
            return fallback("malformed_response")
        text = (content or "").strip()
        if not text:
            return fallback("empty_response")
        return LLMResult(source=EXTERNAL, text=text)
