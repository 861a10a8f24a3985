import httpx
import logging
from typing import Dict, List

from core.config import settings
from core.constants import AI_EMPTY_REPLY, AI_FALLBACK_REPLY

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant for a CRM dashboard."


class LLMService:
    """Single request/response client for an OpenAI-compatible completion API.

    generate_reply never raises: every failure degrades to AI_FALLBACK_REPLY
    so the chat turn can still persist an AI message.
    """

    def __init__(self):
        self.token = settings.OPENAI_API_KEY
        self.api_url = settings.AI_API_URL
        self.model = settings.AI_MODEL
        self.timeout = settings.AI_TIMEOUT_SECONDS
        self.max_attempts = settings.AI_MAX_ATTEMPTS

    def _build_messages(self, system_prompt: str, user_message: str) -> List[Dict[str, str]]:
        """Build the system + user message pair sent to the completion API."""
        return [
            {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": user_message},
        ]

    @staticmethod
    def _extract_reply(data: dict) -> str:
        """Pull the first choice's content out of a completion response."""
        choices = data.get("choices") or []
        if not choices:
            return AI_EMPTY_REPLY
        content = (choices[0].get("message") or {}).get("content") or ""
        content = content.strip()
        return content or AI_EMPTY_REPLY

    async def generate_reply(self, system_prompt: str, user_message: str) -> str:
        """
        Generate a reply for user_message grounded by system_prompt.

        Returns the fallback reply on missing credentials, network errors,
        timeouts, non-2xx responses, or malformed bodies.
        """
        if not self.token:
            logger.error("OPENAI_API_KEY is not configured")
            return AI_FALLBACK_REPLY

        url = f"{self.api_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "messages": self._build_messages(system_prompt, user_message),
            "max_tokens": settings.AI_MAX_TOKENS,
            "temperature": settings.AI_TEMPERATURE,
        }

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=payload, headers=headers, timeout=self.timeout)

                if not 200 <= response.status_code < 300:
                    logger.error(
                        "Completion request failed (attempt %d/%d): %s %s",
                        attempt, self.max_attempts, response.status_code, response.text[:200],
                    )
                    continue

                return self._extract_reply(response.json())

            except httpx.TimeoutException:
                logger.error("Completion request timed out after %.1fs (attempt %d/%d)",
                             self.timeout, attempt, self.max_attempts)
            except httpx.HTTPError as e:
                logger.error("Completion request error (attempt %d/%d): %s", attempt, self.max_attempts, e)
            except (ValueError, AttributeError, TypeError) as e:
                # Body was not JSON or not shaped like a completion
                logger.error("Malformed completion response: %s", e)
                return AI_FALLBACK_REPLY

        return AI_FALLBACK_REPLY


llm_service = LLMService()
