import asyncio
import logging
from typing import Dict, List, Optional

from groq import Groq, GroqError

from config.settings import AISettings
from core.errors import LLMError

logger = logging.getLogger(__name__)


class LLMClient:
    """Thin async wrapper around the Groq chat completions API."""

    def __init__(
        self,
        api_key: str,
        models: Dict[str, str],
        default_model: str,
        max_tokens: int = 1000,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
    ):
        self.models = dict(models)
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.client: Optional[Groq] = None

        if not api_key:
            logger.warning("GROQ_API_KEY is missing; LLM calls will fail until it is configured")
        else:
            self.client = Groq(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: AISettings) -> "LLMClient":
        return cls(
            api_key=settings.groq_api_key,
            models=settings.models,
            default_model=settings.default_model,
            max_tokens=settings.max_tokens,
            max_retries=settings.max_retries,
        )

    def resolve_model(self, model_id: Optional[str]) -> str:
        """Map a public model id to the provider's model name"""
        model_id = model_id or self.default_model
        if model_id not in self.models:
            raise LLMError(f"Unknown model: {model_id}")
        return self.models[model_id]

    async def complete(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.0,
        json_mode: bool = False,
    ) -> str:
        """
        Send a system prompt plus chat messages and return the reply text.
        The blocking SDK call runs in a worker thread; failures are retried
        with exponential back-off.
        """
        if self.client is None:
            raise LLMError("GROQ_API_KEY is not configured")

        request = {
            "model": self.resolve_model(model),
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        attempts = self.max_retries + 1
        last_err: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                response = await asyncio.to_thread(self.client.chat.completions.create, **request)
                content = response.choices[0].message.content or ""
                logger.debug("Groq response length: %d chars", len(content))
                return content.strip()
            except GroqError as e:
                last_err = e
                logger.warning("Groq attempt %d/%d failed: %s", attempt, attempts, e)
                if attempt < attempts:
                    await asyncio.sleep(self.retry_backoff * 2 ** (attempt - 1))
        raise LLMError(f"Groq failed after {attempts} attempts: {last_err}")
