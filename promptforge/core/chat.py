"""
Multi-turn assistant chat.

A ChatSession keeps the conversation history and streams each reply through
the same GenerationClient the chain engine uses. A turn is recorded only
once its reply has streamed to completion.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from ..prompts.system_prompts import CHAT_SYSTEM_PROMPT
from .errors import ChatBusyError, GenerationError
from .interfaces import ChunkCallback, GenerationClient
from .models import new_id
from .prompt_assembly import assemble_chat_prompt

logger = structlog.get_logger(__name__)


@dataclass
class ChatMessage:
    role: str
    content: str
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)


class ChatSession:
    """Conversation with a generation service, one streamed reply per message."""

    def __init__(
        self,
        client: GenerationClient,
        system_instruction: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.client = client
        self.system_instruction = system_instruction or CHAT_SYSTEM_PROMPT
        self.model = model
        self._messages: List[ChatMessage] = []
        self._busy = False

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def clear(self) -> None:
        if self._busy:
            raise ChatBusyError("Cannot clear the conversation while a reply is streaming")
        self._messages.clear()

    async def send(self, message: str, on_chunk: Optional[ChunkCallback] = None) -> ChatMessage:
        """
        Send a user message and stream the assistant's reply.

        On failure neither the message nor the partial reply is added to the
        history, and the GenerationError propagates.
        """
        if not message or not message.strip():
            raise ValueError("Message cannot be empty")
        if self._busy:
            raise ChatBusyError("A reply is already streaming")

        turns = [(m.role, m.content) for m in self._messages] + [("user", message)]
        prompt_text = assemble_chat_prompt(self.system_instruction, turns)
        chunks: List[str] = []

        def collect(chunk: str) -> None:
            chunks.append(chunk)
            if on_chunk:
                on_chunk(chunk)

        self._busy = True
        try:
            await self.client.stream(prompt_text, collect, model=self.model)
        except GenerationError as e:
            logger.error("Chat reply failed", turn=len(self._messages) // 2 + 1, error=str(e))
            raise
        finally:
            self._busy = False

        reply = ChatMessage(role="assistant", content="".join(chunks))
        self._messages.extend([ChatMessage(role="user", content=message), reply])
        logger.debug("Chat reply received", turn=len(self._messages) // 2, chars=len(reply.content))
        return reply
