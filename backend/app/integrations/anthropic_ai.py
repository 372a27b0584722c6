from __future__ import annotations

import os
from typing import Any, Optional

import anthropic

from backend.app.integrations.base import first_text_block
from backend.app.resilience.errors import (
    DependencyTimeoutError,
    RateLimitedError,
    UnrecoverableError,
)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def anthropic_is_configured() -> bool:
    return bool(os.getenv("ANTHROPIC_API_KEY"))


class AnthropicCompletionProvider:
    provider = "anthropic"

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 4000,
        client: Optional[Any] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            raise RateLimitedError(f"anthropic rate limit: {exc}", service=self.provider) from exc
        except anthropic.APITimeoutError as exc:
            raise DependencyTimeoutError(f"anthropic request timed out: {exc}", service=self.provider) from exc
        except anthropic.APIConnectionError as exc:
            raise UnrecoverableError(f"anthropic connection error: {exc}", service=self.provider, transient=True) from exc
        except anthropic.APIStatusError as exc:
            raise UnrecoverableError(
                f"anthropic returned HTTP {exc.status_code}: {exc}",
                service=self.provider,
                transient=exc.status_code >= 500,
            ) from exc
        return first_text_block(response.content)
