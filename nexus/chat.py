"""Conversations with agent personas."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from typing import List, Optional

from .inflight import InFlight
from .models import Agent, ChatMessage, ModelProvider
from .providers import AIProvider
from .stores import ChatHistoryStore, SettingsStore

CHAT_ERROR_MESSAGE = (
    "I encountered an error connecting to the service. Please check your API Keys in settings."
)
EMPTY_REPLY = "No response generated."


def unsupported_provider_message(agent: Agent) -> str:
    provider = ModelProvider(agent.provider).value
    return (
        f"[System]: Simulation - Interaction with {provider} ({agent.model_id}) requires their "
        "specific SDK. Since this build only integrates Google Gemini, please switch this Agent "
        "to use Google Gemini."
    )


class ChatOrchestrator:
    def __init__(
        self,
        chats: ChatHistoryStore,
        settings: SettingsStore,
        provider: AIProvider,
        executor: Executor,
    ) -> None:
        self._chats = chats
        self._settings = settings
        self._provider = provider
        self._executor = executor
        self._pending = InFlight("chat")
        self._logger = logging.getLogger("nexus.chat")

    def send_message(
        self,
        text: str,
        agent: Optional[Agent] = None,
        credential: Optional[str] = None,
    ) -> "Future[ChatMessage]":
        """Append ``text`` to the agent's transcript and request a reply.

        The user message is stored before this returns. The future always
        resolves to the model message that was appended, an error notice
        included; it never raises.
        """
        text = text.strip()
        if not text:
            raise ValueError("Message cannot be empty")
        if agent is None:
            agent = self._settings.active_agent()
        if credential is None:
            credential = self._settings.credential(ModelProvider(agent.provider))

        self._pending.acquire(agent.id)
        try:
            history = self._chats.history(agent.id)
            self._chats.append(agent.id, ChatMessage.user(text))
            return self._executor.submit(self._reply, agent, history, text, credential)
        except BaseException:
            self._pending.release(agent.id)
            raise

    def _reply(self, agent: Agent, history: List[ChatMessage], text: str, credential: str) -> ChatMessage:
        try:
            if ModelProvider(agent.provider) is not self._provider.provider:
                self._logger.info("Agent %s uses unsupported provider %s", agent.id, agent.provider)
                content = unsupported_provider_message(agent)
            else:
                try:
                    content = self._provider.chat(agent, history, text, credential) or EMPTY_REPLY
                except Exception:
                    self._logger.exception("Chat request failed for agent %s", agent.id)
                    content = CHAT_ERROR_MESSAGE
            reply = ChatMessage.model(content)
            self._chats.append(agent.id, reply)
            return reply
        finally:
            self._pending.release(agent.id)

    def is_pending(self, agent_id: str) -> bool:
        return agent_id in self._pending
