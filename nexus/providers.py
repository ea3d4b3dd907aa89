"""Contract between the orchestrators and the external AI collaborator."""

from __future__ import annotations

from enum import Enum
from typing import List, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .models import Agent, ChatMessage, ModelProvider


class ErrorKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    NETWORK = "network"
    PROVIDER = "provider"
    INVALID_RESPONSE = "invalid_response"


class AIProviderError(RuntimeError):
    """Raised for any failure of an AI call."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.PROVIDER) -> None:
        super().__init__(message)
        self.kind = kind


class ProcessingResult(BaseModel):
    """Structured result of transcribing and summarising a recording."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1)
    transcription: str = Field(min_length=1)
    report: str = Field(min_length=1)
    suggested_tags: List[str] = Field(default_factory=list, alias="suggestedTags")
    language: str = ""


class AIProvider(Protocol):
    """Common interface for AI backends."""

    provider: ModelProvider

    def process_audio(
        self,
        audio: bytes,
        mime_type: str,
        agent: Agent,
        language: str,
        credential: str,
    ) -> ProcessingResult:
        """Transcribe and summarise ``audio`` in the voice of ``agent``."""

    def chat(
        self,
        agent: Agent,
        history: Sequence[ChatMessage],
        message: str,
        credential: str,
    ) -> str:
        """Return the agent's reply to ``message`` given the prior turns."""

    def refine_report(
        self,
        report: str,
        transcription: str,
        instruction: str,
        credential: str,
    ) -> str:
        """Return ``report`` rewritten to satisfy ``instruction``."""


def language_instruction(code: str) -> str:
    if code == "zh-CN":
        return "The audio is in Chinese. Output the Transcription and Report in Chinese (Simplified)."
    if code and code != "auto":
        return f"The audio is in {code}. Output strictly in this language."
    return "Detect the language automatically."


def require_credential(credential: str) -> str:
    if not credential or not credential.strip():
        raise AIProviderError(
            "API Key is missing. Please check your settings.", kind=ErrorKind.MISSING_CREDENTIAL
        )
    return credential.strip()
