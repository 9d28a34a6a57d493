"""OpenAI-compatible chat completion provider.

Works with any endpoint speaking the OpenAI chat completions API; the default
configuration points at Groq.
"""

from typing import Any, Dict

from dreamjournal.app.providers.base import BaseProvider
from dreamjournal.app.providers.retry import RetryPolicy, with_retry


class OpenAICompatibleProvider(BaseProvider):
    """Chat completions over a shared or per-request httpx client."""

    @with_retry(policy=RetryPolicy(max_retries=2, base_delay=0.5, max_delay=4.0))
    async def chat_completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send a non-streaming chat completion request.

        Raises:
            httpx.HTTPStatusError: If the API returns an error status
        """
        url = self._get_endpoint_url("/chat/completions")

        async with self._client_context() as client:
            resp = await client.post(
                url, headers=self.headers, json=payload, timeout=self.timeout
            )
            resp.raise_for_status()
            return resp.json()
