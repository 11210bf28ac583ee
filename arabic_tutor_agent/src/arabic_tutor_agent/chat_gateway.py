"""
Chat Completion Gateway

Thin wrapper around the OpenAI chat completions endpoint that always asks for
a JSON object reply, bounds every call with the shared retry policy, and
never lets a malformed reply crash the caller.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from arabic_tutor_agent.errors import ConfigurationError
from arabic_tutor_agent.retry_policy import RetryPolicy
from arabic_tutor_agent.settings import TutorSettings

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4-1106-preview"

PROMPT_ANALYSIS_INSTRUCTIONS = (
    "Analyze the given Arabic learning prompt and break it down into "
    "grammatical components, difficulty level, and cultural context."
)


def parse_json_object(raw: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model reply that is supposed to be a JSON object.

    Malformed JSON, or JSON that is not an object, yields an empty dict.
    """
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"⚠️ [ChatGateway] Reply is not valid JSON, using empty object: {e}")
        return {}
    if not isinstance(value, dict):
        logger.warning(f"⚠️ [ChatGateway] Reply JSON is a {type(value).__name__}, expected an object")
        return {}
    return value


class ChatCompletionGateway:
    """
    Sends a system prompt plus ordered chat history to the LLM.

    Safe for concurrent use: the only state is configuration and the
    underlying HTTP client.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_CHAT_MODEL,
        max_tokens: int = 1000,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: TutorSettings) -> "ChatCompletionGateway":
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        # Retries are owned by RetryPolicy, not the SDK
        client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)
        return cls(
            client,
            model=settings.openai_model,
            max_tokens=settings.chat_max_tokens,
            retry_policy=RetryPolicy(
                max_attempts=settings.chat_max_attempts,
                base_delay=settings.chat_retry_base_delay,
                max_delay=settings.chat_retry_max_delay,
            ),
        )

    async def complete(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> str:
        """
        Request a JSON-object completion.

        Args:
            system_prompt: System message placed first
            history: Ordered {"role", "content"} messages, latest user turn last
            temperature: Sampling temperature
            max_tokens: Reply budget (defaults to the gateway's)
            timeout_ms: Per-attempt deadline

        Returns:
            The raw JSON string from the model ("{}" when the reply is empty)
        """
        messages = [{"role": "system", "content": system_prompt}, *history]
        budget = max_tokens or self.max_tokens
        timeout = timeout_ms / 1000 if timeout_ms else None

        async def _call():
            return await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
                max_tokens=budget,
            )

        response = await self.retry_policy.run(_call, description="Chat completion", timeout=timeout)

        content = None
        if response.choices:
            content = response.choices[0].message.content
        logger.debug(f"🤖 [ChatGateway] Received {len(content or '')} chars from {self.model}")
        return content or "{}"

    async def analyze_prompt_structure(self, prompt: str) -> Dict[str, Any]:
        """Break an Arabic learning prompt into grammar, difficulty and cultural context."""
        raw = await self.complete(
            PROMPT_ANALYSIS_INSTRUCTIONS,
            [{"role": "user", "content": prompt}],
            temperature=0.3,
        )
        return parse_json_object(raw)
