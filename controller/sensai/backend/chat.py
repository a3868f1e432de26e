"""Chat-completion HTTP client used by the coach."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """OpenAI-compatible ``/chat/completions`` wrapper returning plain text or None."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.chat.base_url, timeout=settings.http_timeout_seconds
        )

    async def complete(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        cfg = self.settings.chat
        payload = {
            "model": cfg.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_tokens,
        }
        try:
            response = await self._client.post(
                "/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {cfg.api_key}"},
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
            text = (content or "").strip()
            return text or None
        except httpx.TimeoutException:
            logger.error("chat.complete: request timeout")
        except httpx.HTTPStatusError as e:
            logger.error("chat.complete: HTTP %d - %s", e.response.status_code, e.response.text[:200])
        except httpx.HTTPError as e:
            logger.error("chat.complete: network error - %s", e)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("chat.complete: malformed response - %s", e)
        return None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing chat HTTP client: %s", e)


__all__ = ["ChatCompletionClient"]
