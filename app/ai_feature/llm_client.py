from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings

Message = Dict[str, str]


class LLMError(RuntimeError):
    """The language model endpoint failed or answered in an unexpected shape."""


class ChatCompletionClient:
    """
    Minimal client for an OpenAI-compatible /chat/completions endpoint.

    Args:
        base_url: API root, e.g. https://api.openai.com/v1
        api_key: bearer token, omitted from headers when None
        model: model name sent with every request
        transport: optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        messages: List[Message],
        temperature: float = 0,
        max_tokens: int = 1000,
    ) -> str:
        """Send a chat and return the first choice's text (stripped)."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected LLM response format: {data!r}") from e

        return (content or "").strip()


def get_llm_client() -> ChatCompletionClient:
    return ChatCompletionClient(
        base_url=settings.LLM_BASE_URL,
        api_key=settings.LLM_API_KEY,
        model=settings.LLM_MODEL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
