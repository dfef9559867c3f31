"""HTTP client for an OpenAI-compatible chat-completions gateway."""

from __future__ import annotations

import logging

import httpx

from ...config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a logistics optimization AI. Always respond with valid JSON only."


class AIGatewayError(Exception):
    """The gateway answered without usable content."""


class ChatCompletionsGateway:
    def __init__(
        self,
        api_key: str,
        url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("AI gateway API key is not configured.")
        self.api_key = api_key
        self.url = url or settings.ai_gateway_url
        self.model = model or settings.ai_model
        self.timeout = timeout if timeout is not None else settings.ai_timeout_seconds
        self.transport = transport

    def complete(self, prompt: str) -> str:
        """Send one prompt and return the first choice's text.

        Raises ``httpx.HTTPError`` for transport and status failures and
        ``AIGatewayError`` when the body has no message content.
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0), transport=self.transport) as client:
            response = client.post(self.url, json=payload, headers=headers)
            if response.status_code == 429:
                logger.warning("AI rate limit exceeded (429)")
            elif response.status_code == 402:
                logger.warning("AI credits exhausted (402)")
            response.raise_for_status()
            data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIGatewayError(f"Malformed completion payload: {exc}") from exc
        if not isinstance(content, str) or not content.strip():
            raise AIGatewayError("Completion contained no text.")
        return content
