"""
LLM Gateway — Claude API integration.

Single provider (Anthropic), non-streaming. Used by the primary post
formatter; callers must treat every failure as a reason to fall back.
"""

from typing import Optional

import httpx
import structlog

from rainwatch.config import settings

logger = structlog.get_logger(__name__)

# Anthropic API constants
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class LLMGateway:
    """Gateway for the Claude messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.timeout = timeout
        self._transport = transport
        if not self.api_key:
            logger.warning("anthropic_api_key_missing", msg="LLM formatting will be unavailable")

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        system: str,
        user_message: str,
        model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 400,
    ) -> str:
        """
        Non-streaming generation.

        Returns the full text response ("" when no API key is configured).
        Raises httpx.HTTPError on transport or status errors and ValueError
        when a 2xx body is not a messages response.
        """
        if not self.api_key:
            return ""

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user_message}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    ANTHROPIC_API_URL, json=payload, headers=headers
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("llm_generate_error", model=model, error=str(e))
            raise
        except ValueError as e:
            # Proxies and captive portals answer 200 with HTML
            logger.error("llm_generate_bad_body", model=model, error=str(e))
            raise

        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, list):
            raise ValueError("messages response has no content list")
        return "".join(
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        )
