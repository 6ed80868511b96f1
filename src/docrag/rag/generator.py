"""
Generation collaborator: answers a question from assembled context through an
OpenAI-compatible chat completions endpoint.
"""

from typing import Any

import httpx

from ..config.settings import ModelEndpoint
from ..core.errors import GenerationError
from ..core.retry import RetryPolicy, is_transient_error
from ..observability.logging import get_logger
from ..observability.probe import probe

logger = get_logger(__name__)

NO_ANSWER = "I don't know based on the current context."

SYSTEM_PROMPT = (
    "You are a careful assistant that answers ONLY from the given CONTEXT.\n"
    f'- If the answer is not present, say "{NO_ANSWER}"\n'
    "- Always cite like [filename > section] after each claim. Do NOT fabricate."
)


def build_user_prompt(question: str, context: str) -> str:
    return (
        "Answer the QUESTION using only the CONTEXT.\n\n"
        f"QUESTION:\n{question}\n\n"
        f"CONTEXT:\n{context}"
    )


class ChatClient:
    """Chat completions client with the shared retry policy."""

    def __init__(
        self,
        endpoint: ModelEndpoint,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.endpoint = endpoint
        self.retry_policy = retry_policy or RetryPolicy.from_endpoint(endpoint)
        self._owned_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(endpoint.timeout))

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client:
            await self._http_client.aclose()

    async def complete(self, question: str, context: str) -> str:
        """Ask the model to answer ``question`` from ``context``; returns the stripped answer."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(question, context)},
        ]
        with probe("generator.complete", model=self.endpoint.name):
            try:
                return await self.retry_policy.call(self._post, messages, op_name="generation")
            except GenerationError:
                raise
            except Exception as e:
                logger.error("Generation request failed", error=type(e).__name__)
                raise GenerationError(
                    f"Generation request failed: {str(e) or type(e).__name__}",
                    transient=is_transient_error(e),
                ) from e

    async def _post(self, messages: list[dict[str, str]]) -> str:
        response = await self._http_client.post(
            f"{self.endpoint.base_url}/chat/completions",
            json={"model": self.endpoint.name, "messages": messages},
            headers=self._get_headers(),
        )
        response.raise_for_status()
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GenerationError(f"Malformed chat completion response: {e}") from e
        return (content or "").strip()

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.api_key:
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers
