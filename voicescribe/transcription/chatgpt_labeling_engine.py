"""ChatGPT engine for sending labeling prompts and getting responses."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ..errors import UpstreamFailure

logger = logging.getLogger(__name__)


@dataclass
class EngineReply:
    """Model output plus the tokens the call consumed."""
    content: str
    total_tokens: int = 0


class ChatGPTLabelingEngine:
    """Simple engine for sending prompts to ChatGPT and getting responses."""

    def __init__(self,
                 api_key: str,
                 model: str = "gpt-4",
                 temperature: float = 0.3,
                 max_tokens: int = 2000,
                 base_url: str = "https://api.openai.com/v1",
                 timeout: float = 120.0):
        """Initialize ChatGPT labeling engine.

        Args:
            api_key: OpenAI API key
            model: Chat model used for speaker labeling
            temperature: Temperature for response generation (0.0 to 1.0)
            max_tokens: Maximum tokens in response
            base_url: API root
            timeout: Total timeout per request in seconds
        """
        self.api_key = api_key
        self.model = model
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.url = f"{base_url.rstrip('/')}/chat/completions"

        logger.info(f"ChatGPTLabelingEngine initialized with model: {model}")

    async def send_prompt(self, prompt: str, system_prompt: Optional[str] = None) -> EngineReply:
        """Send a prompt to ChatGPT and get the response.

        Args:
            prompt: User prompt
            system_prompt: Optional system message

        Returns:
            EngineReply with the response text and total tokens used

        Raises:
            UpstreamFailure: If the API call fails or the body is unusable
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        data = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise UpstreamFailure(f"ChatGPT API error: {response.status} - {error_text}")
                    result = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamFailure(f"ChatGPT API request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise UpstreamFailure(f"ChatGPT API request timed out after {self.timeout.total}s") from e
        except ValueError as e:
            raise UpstreamFailure(f"ChatGPT API returned invalid JSON: {e}") from e

        try:
            content = str(result["choices"][0]["message"]["content"] or "")
            usage = result.get("usage") or {}
            total_tokens = int(usage.get("total_tokens") or 0)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise UpstreamFailure(f"ChatGPT API response is malformed: {e}") from e

        return EngineReply(content=content.strip(), total_tokens=total_tokens)
