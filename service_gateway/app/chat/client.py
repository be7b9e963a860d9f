"""
Chat completion client for the Gateway.
"""

import random
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
from pydantic import BaseModel, Field

from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception


DEFAULT_INITIAL_PROMPT = (
    "You are a no-nonsense, brutally honest advisor with charisma and confidence. "
    "Cut through excuses and give actionable, high-impact advice on business, finance "
    "and personal development. Speak with conviction, use bold analogies and "
    "counterintuitive insights, and challenge the user to take ownership of their "
    "situation. Keep replies short and conversational, never longer than two paragraphs."
)

SUMMARY_SYSTEM_PROMPT = "You are a helpful assistant that provides concise summaries."

MOTIVATIONAL_MESSAGES = [
    "I like where you're going with this. Keep pushing forward!",
    "That's a great start. Let's refine it together.",
    "You're on the right track. Keep thinking big!",
    "I hear you! Every great journey starts with clarity. Let's find yours.",
    "This has potential. Let's keep building on it.",
    "You've got something here. Let's sharpen the vision.",
    "Success is in the details. Can we focus a bit more?",
    "Great energy! Let's channel that into something actionable.",
    "Big ideas like this need time. Let's shape it step by step.",
    "You're closer than you think. Let's refine it together.",
    "There's something powerful in what you're saying. Let's dig deeper.",
    "Every obstacle is an opportunity. Let's turn this into one.",
    "I like the ambition. Let's make it even clearer.",
    "You're showing real insight here. Let's elevate it.",
    "Momentum is key. Keep this up and you'll see results.",
    "This is the kind of thinking that leads to breakthroughs!",
    "You're on the verge of something big. Let's keep at it.",
    "Sometimes clarity comes with persistence. Stay the course.",
    "This is how successful people think. Let's keep brainstorming!",
    "I'm seeing the potential here. Let's turn it into action.",
]


class ChatConfig(BaseModel):
    """Completion parameters used for conversation replies."""
    model: str = Field("gpt-4o", min_length=1)
    max_tokens: int = Field(1000, gt=0)
    temperature: float = 0.5
    presence_penalty: float = 0.5
    frequency_penalty: float = 0.2


class ChatService(Protocol):
    async def get_next_message(self, messages: List[str]) -> str:
        ...

    async def summarize(self, messages: List[str]) -> str:
        ...


class ConfigurableChatService(ChatService, Protocol):
    """Chat service whose completion parameters and prompt can be swapped at runtime."""

    def update_config(self, config: ChatConfig) -> None:
        ...

    def update_initial_prompt(self, prompt: str) -> None:
        ...


def build_conversation(initial_prompt: str, messages: List[str]) -> List[Dict[str, str]]:
    """System prompt followed by the history, alternating user and assistant turns."""
    conversation = [{"role": "system", "content": initial_prompt}]
    for index, content in enumerate(messages):
        role = "assistant" if index % 2 == 1 else "user"
        conversation.append({"role": role, "content": content})
    return conversation


class GPTChatService:
    """OpenAI-compatible chat completion client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        config: Optional[ChatConfig] = None,
        initial_prompt: str = DEFAULT_INITIAL_PROMPT,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.logger = get_logger("gateway.chat_client")
        self._client = client
        self._lock = threading.Lock()
        self._config = config or ChatConfig()
        self._initial_prompt = initial_prompt
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)

    def update_config(self, config: ChatConfig) -> None:
        with self._lock:
            self._config = config.model_copy()
        self.logger.info("Chat config updated", model=config.model)

    def update_initial_prompt(self, prompt: str) -> None:
        with self._lock:
            self._initial_prompt = prompt
        self.logger.info("Initial prompt updated", length=len(prompt))

    def snapshot(self) -> Tuple[ChatConfig, str]:
        """Current config and prompt, read together."""
        with self._lock:
            return self._config.model_copy(), self._initial_prompt

    async def get_next_message(self, messages: List[str]) -> str:
        """Reply to the conversation, falling back to a canned message if every attempt fails."""
        config, initial_prompt = self.snapshot()
        payload = {
            "model": config.model,
            "messages": build_conversation(initial_prompt, messages),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "presence_penalty": config.presence_penalty,
            "frequency_penalty": config.frequency_penalty,
        }

        complete = retry_on_exception(
            (httpx.HTTPError, ExternalServiceError), config=self.retry_config
        )(self._complete)
        try:
            return await complete(payload)
        except RetryError as e:
            self.logger.warning("Chat completion failed, using fallback reply",
                                attempts=e.attempts, error=str(e.last_exception))
            return random.choice(MOTIVATIONAL_MESSAGES)

    async def summarize(self, messages: List[str]) -> str:
        config, _ = self.snapshot()
        prompt = "Please provide a concise summary of the following conversation:\n\n" + "\n".join(messages)
        payload = {
            "model": config.model,
            "messages": [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": 1000,
        }
        try:
            return await self._complete(payload)
        except ExternalServiceError as e:
            if e.code == "CHAT_EMPTY_RESPONSE":
                return "No summary generated"
            self.logger.error("Summary generation failed", error=e.message)
            return f"Error generating summary: {e.message}"
        except httpx.HTTPError as e:
            self.logger.error("Summary generation failed", error=str(e))
            return f"Error generating summary: {e}"

    async def _complete(self, payload: Dict[str, Any]) -> str:
        response = await self._post("/chat/completions", payload)
        if response.status_code != 200:
            raise ExternalServiceError(
                "openai",
                f"Chat completion returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
                code="CHAT_COMPLETION_FAILED",
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError("openai", f"Invalid completion payload: {e}",
                                       code="CHAT_COMPLETION_FAILED") from e
        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise ExternalServiceError("openai", "Completion returned no choices",
                                       code="CHAT_EMPTY_RESPONSE")
        return choices[0].get("message", {}).get("content", "")

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=headers)
