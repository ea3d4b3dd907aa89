"""Google Gemini backend using the Generative Language REST API."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from .models import DEFAULT_MODEL_ID, Agent, ChatMessage, ModelProvider
from .providers import (
    AIProviderError,
    ErrorKind,
    ProcessingResult,
    language_instruction,
    require_credential,
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
REFINE_CONTEXT_CHARS = 5000

PROCESSING_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING", "description": "A short, professional title."},
        "transcription": {"type": "STRING", "description": "Full transcription."},
        "report": {"type": "STRING", "description": "The formatted report/minutes using Markdown."},
        "suggestedTags": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "List of 3-5 relevant tags.",
        },
        "language": {"type": "STRING", "description": "The primary language detected."},
    },
    "required": ["title", "transcription", "report", "suggestedTags", "language"],
}

PROMPTS = {
    "process_audio": (
        "You are acting as the following agent: {name}.\n"
        "Agent System Instructions: {instruction}\n\n"
        "Task:\n"
        "1. **Language**: {language}\n"
        "2. **Output**: Generate a JSON object with title, transcription, report, and tags.\n"
        "3. **Report Style**: The 'report' field must reflect your Agent Persona defined above.\n"
    ),
    "refine_report": (
        "You are an AI editor.\n"
        "**Original Transcription Context**: {transcription}...\n"
        "**Current Report**: {report}\n"
        '**Instruction**: "{instruction}"\n\n'
        "Rewrite the report to satisfy the instruction. Keep markdown. "
        "Output ONLY the new report text.\n"
    ),
}


class GeminiClient:
    """Transcription, chat and report refinement through Gemini models."""

    provider = ModelProvider.GOOGLE

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._logger = logging.getLogger("nexus.gemini")

    def _generate(self, model: str, credential: str, body: Dict[str, Any]) -> str:
        key = require_credential(credential)
        if not model.startswith("models/"):
            model = f"models/{model}"
        try:
            with httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"x-goog-api-key": key},
            ) as client:
                response = client.post(f"/v1beta/{model}:generateContent", json=body)
        except httpx.HTTPError as exc:
            raise AIProviderError("Failed to reach Gemini API", kind=ErrorKind.NETWORK) from exc

        if response.status_code != 200:
            self._logger.error("Gemini error: %s - %s", response.status_code, response.text[:500])
            raise AIProviderError(f"Gemini error: {response.status_code}", kind=ErrorKind.PROVIDER)

        try:
            data = response.json()
        except ValueError as exc:
            raise AIProviderError("Gemini returned a non-JSON body", kind=ErrorKind.INVALID_RESPONSE) from exc
        if not isinstance(data, dict) or not data.get("candidates"):
            raise AIProviderError("Gemini response missing candidates", kind=ErrorKind.INVALID_RESPONSE)
        try:
            parts = (data["candidates"][0].get("content") or {}).get("parts") or []
            return "".join(part.get("text", "") for part in parts).strip()
        except (AttributeError, KeyError, TypeError) as exc:
            self._logger.warning("Unexpected Gemini response: %s", response.text[:500])
            raise AIProviderError(
                "Gemini response has an unexpected shape", kind=ErrorKind.INVALID_RESPONSE
            ) from exc

    def process_audio(
        self,
        audio: bytes,
        mime_type: str,
        agent: Agent,
        language: str,
        credential: str,
    ) -> ProcessingResult:
        model = DEFAULT_MODEL_ID
        if agent.provider == ModelProvider.GOOGLE and agent.model_id:
            model = agent.model_id
        prompt = PROMPTS["process_audio"].format(
            name=agent.name,
            instruction=agent.system_instruction,
            language=language_instruction(language),
        )
        body = {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": mime_type or "audio/wav",
                                "data": base64.b64encode(audio).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": PROCESSING_SCHEMA,
            },
        }
        text = self._generate(model, credential, body)
        if not text:
            raise AIProviderError("No response from Gemini", kind=ErrorKind.INVALID_RESPONSE)
        try:
            return ProcessingResult.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            self._logger.warning("Rejected processing result: %s", text[:500])
            raise AIProviderError(
                f"Gemini returned an unexpected result: {exc}", kind=ErrorKind.INVALID_RESPONSE
            ) from exc

    def chat(
        self,
        agent: Agent,
        history: Sequence[ChatMessage],
        message: str,
        credential: str,
    ) -> str:
        contents: List[Dict[str, Any]] = [
            {"role": turn.role, "parts": [{"text": turn.content}]} for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})
        body = {
            "systemInstruction": {"parts": [{"text": agent.system_instruction}]},
            "contents": contents,
        }
        return self._generate(agent.model_id or DEFAULT_MODEL_ID, credential, body)

    def refine_report(
        self,
        report: str,
        transcription: str,
        instruction: str,
        credential: str,
    ) -> str:
        prompt = PROMPTS["refine_report"].format(
            transcription=transcription[:REFINE_CONTEXT_CHARS],
            report=report,
            instruction=instruction,
        )
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        return self._generate(DEFAULT_MODEL_ID, credential, body) or report
