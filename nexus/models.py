"""Dataclasses describing the objects held in the nexus state tree."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class MeetingStatus(str, Enum):
    RECORDING = "RECORDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class ModelProvider(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


PLACEHOLDER_TITLE = "Analyzing Audio..."
ERROR_TITLE = "Error Processing"
DEFAULT_MODEL_ID = "gemini-2.5-flash"

# Selector value -> display label.
LANGUAGES: Dict[str, str] = {
    "auto": "Auto-Detect",
    "zh-CN": "Chinese (中文)",
    "en-US": "English",
    "ja-JP": "Japanese (日本語)",
}


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def language_label(code: str) -> str:
    return LANGUAGES.get(code, "Auto")


@dataclass(slots=True)
class MeetingRecord:
    """One captured audio session and everything derived from it.

    ``audio_payload`` and ``playable_reference`` only exist in the process that
    recorded the audio. They are never written to storage or backups.
    """

    id: str
    title: str
    created_at: datetime
    duration_seconds: float
    status: MeetingStatus
    tags: List[str] = field(default_factory=list)
    suggested_tags: List[str] = field(default_factory=list)
    transcription: Optional[str] = None
    report: Optional[str] = None
    language: Optional[str] = None
    audio_payload: Optional[bytes] = field(default=None, repr=False)
    playable_reference: Optional[str] = None

    @property
    def can_play(self) -> bool:
        return self.audio_payload is not None and self.playable_reference is not None


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    role: str
    content: str
    timestamp: datetime

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(id=new_id(), role="user", content=content, timestamp=utcnow())

    @classmethod
    def model(cls, content: str) -> "ChatMessage":
        return cls(id=new_id(), role="model", content=content, timestamp=utcnow())


@dataclass(slots=True)
class Agent:
    """A persona: a system prompt bound to a provider and model."""

    id: str
    name: str
    description: str
    icon: str
    system_instruction: str
    provider: ModelProvider = ModelProvider.GOOGLE
    model_id: str = DEFAULT_MODEL_ID
    is_default: bool = False


@dataclass(slots=True)
class WebTool:
    id: str
    name: str
    url: str
    icon: str = "🌐"


@dataclass(slots=True)
class ApiKeys:
    google: str = ""
    openai: str = ""
    anthropic: str = ""

    def for_provider(self, provider: ModelProvider) -> str:
        return getattr(self, ModelProvider(provider).value)


def default_agents() -> List[Agent]:
    return [
        Agent(
            id="secretary",
            name="Meeting Pro",
            description="Expert at organizing minutes and action items.",
            icon="📝",
            system_instruction=(
                "You are an expert meeting secretary. Your goal is to transcribe, summarize, "
                "and extract action items from meetings with high precision. Be formal and structured."
            ),
            is_default=True,
        ),
        Agent(
            id="lifecoach",
            name="Life Coach",
            description="Empathetic listener for personal growth.",
            icon="🌱",
            system_instruction=(
                "You are a warm, empathetic life coach. Listen to the user, offer encouragement, "
                "and help them break down complex life problems into manageable steps. "
                "Use a supportive tone."
            ),
        ),
        Agent(
            id="coder",
            name="Dev Buddy",
            description="Helps with coding and architecture.",
            icon="💻",
            system_instruction=(
                "You are a senior software engineer. Help with code snippets, architecture reviews, "
                "and debugging. Be concise and technical."
            ),
        ),
    ]


def default_web_tools() -> List[WebTool]:
    return [
        WebTool(id="notebookllm", name="NotebookLLM", url="https://notebooklm.google.com/", icon="📓"),
        WebTool(
            id="calendar",
            name="Google Calendar",
            url="https://calendar.google.com/calendar/embed",
            icon="📅",
        ),
    ]


@dataclass(slots=True)
class UserSettings:
    """Credentials, agents and web tools. Persisted as one unit."""

    api_keys: ApiKeys = field(default_factory=ApiKeys)
    agents: List[Agent] = field(default_factory=default_agents)
    web_tools: List[WebTool] = field(default_factory=default_web_tools)
    active_agent_id: str = "secretary"


@dataclass(slots=True)
class AppConfig:
    """Application configuration stored on disk."""

    default_language: str = "zh-CN"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    request_timeout: float = 120.0
    log_level: str = "INFO"
