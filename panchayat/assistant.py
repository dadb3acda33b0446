"""
Remote chat service: turns an ordered conversation into one assistant reply.

The persona for (language, category) is prepended as a system message. Any
failure of the completion backend ends in FALLBACK_REPLY; callers never see a
transport error from here.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import openai as openai_mod
from openai import AsyncOpenAI

from .config import AI_TIMEOUT_SECONDS, AI_TOP_K, OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_MODEL
from .errors import RateLimitError
from .models import Message
from .personas import system_prompt

logger = logging.getLogger(__name__)

FALLBACK_REPLY = ("I apologize, but I am having trouble processing your request right now. "
                  "Please try again later.")
ALLOWED_ROLES = {"user", "assistant"}


class ChatAssistant:
    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = OPENAI_MODEL,
                 temperature: float = 0.7, top_k: Optional[int] = AI_TOP_K, top_p: float = 0.95,
                 max_tokens: int = 1024, max_retries: int = 3, retry_delay: float = 1.0):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.top_k = top_k
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def client(self) -> AsyncOpenAI:
        # Built on first use so the server can start without an API key
        if self._client is None:
            self._client = AsyncOpenAI(api_key=OPENAI_API_KEY, base_url=OPENAI_BASE_URL,
                                       timeout=AI_TIMEOUT_SECONDS)
        return self._client

    @staticmethod
    def build_messages(history: Sequence[Message], language, category) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt(language, category)}]
        for m in history:
            role = m.role.value if hasattr(m.role, "value") else str(m.role)
            if role not in ALLOWED_ROLES:
                role = "user"
            messages.append({"role": role, "content": m.content})
        return messages

    async def _complete(self, messages: List[Dict[str, str]]) -> Optional[str]:
        kwargs = {"temperature": self.temperature, "top_p": self.top_p, "max_tokens": self.max_tokens}
        if self.top_k:
            kwargs["extra_body"] = {"top_k": self.top_k}
        for attempt in range(self.max_retries):
            try:
                resp = await self.client.chat.completions.create(
                    model=self.model, messages=messages, **kwargs)
                content = resp.choices[0].message.content
                return content.strip() if content else None
            except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
                logger.warning("Completion retry %d: %s", attempt + 1, e)
                if attempt == self.max_retries - 1:
                    if isinstance(e, openai_mod.RateLimitError):
                        raise RateLimitError("The assistant is receiving too many requests") from e
                    raise
                await asyncio.sleep(self.retry_delay * 2 ** attempt)
        return None

    async def reply(self, history: Sequence[Message], language, category) -> str:
        messages = self.build_messages(history, language, category)
        try:
            text = await self._complete(messages)
        except Exception as e:
            logger.error("AI response error: %s", e)
            return FALLBACK_REPLY
        if not text:
            logger.warning("AI backend returned an empty reply")
            return FALLBACK_REPLY
        return text
