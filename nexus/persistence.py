"""Mirror the stores to local storage, leaving audio payloads in memory."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import (
    Agent,
    ApiKeys,
    ChatMessage,
    MeetingRecord,
    MeetingStatus,
    ModelProvider,
    UserSettings,
    WebTool,
    default_agents,
    default_web_tools,
)
from .storage import Storage, StorageError
from .stores import ChatHistoryStore, MeetingStore, SettingsStore

MEETINGS_KEY = "nexus_meetings"
SETTINGS_KEY = "nexus_settings"
CHATS_KEY = "nexus_chats"

# Fields that only live as long as the process that recorded the audio.
TRANSIENT_FIELDS = frozenset({"audio_payload", "playable_reference"})

logger = logging.getLogger("nexus.persistence")


def persistable(record: MeetingRecord) -> Dict[str, Any]:
    """Project a record onto the fields that may leave memory.

    This is the only place a record crosses into storage or a backup.
    """
    data: Dict[str, Any] = {}
    for f in fields(record):
        if f.name in TRANSIENT_FIELDS:
            continue
        value = getattr(record, f.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, MeetingStatus):
            value = value.value
        elif isinstance(value, list):
            value = list(value)
        data[f.name] = value
    return data


def meeting_from_dict(data: Dict[str, Any]) -> MeetingRecord:
    return MeetingRecord(
        id=str(data["id"]),
        title=str(data["title"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        duration_seconds=float(data["duration_seconds"]),
        status=MeetingStatus(data["status"]),
        tags=list(data.get("tags") or []),
        suggested_tags=list(data.get("suggested_tags") or []),
        transcription=data.get("transcription"),
        report=data.get("report"),
        language=data.get("language"),
    )


def meetings_from_list(items: List[Dict[str, Any]]) -> List[MeetingRecord]:
    return [meeting_from_dict(item) for item in items]


def message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    data = asdict(message)
    data["timestamp"] = message.timestamp.isoformat()
    return data


def message_from_dict(data: Dict[str, Any]) -> ChatMessage:
    role = data["role"]
    if role not in ("user", "model"):
        raise ValueError(f"Unknown chat role: {role}")
    return ChatMessage(
        id=str(data["id"]),
        role=role,
        content=str(data["content"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
    )


def chats_to_dict(histories: Dict[str, List[ChatMessage]]) -> Dict[str, List[Dict[str, Any]]]:
    return {agent_id: [message_to_dict(m) for m in messages] for agent_id, messages in histories.items()}


def chats_from_dict(data: Dict[str, Any]) -> Dict[str, List[ChatMessage]]:
    return {agent_id: [message_from_dict(m) for m in messages] for agent_id, messages in data.items()}


def settings_to_dict(settings: UserSettings) -> Dict[str, Any]:
    data = asdict(settings)
    for agent in data["agents"]:
        agent["provider"] = ModelProvider(agent["provider"]).value
    return data


def settings_from_dict(data: Dict[str, Any]) -> UserSettings:
    agents = [
        Agent(**{**item, "provider": ModelProvider(item.get("provider", "google"))})
        for item in data.get("agents") or []
    ]
    web_tools = [WebTool(**item) for item in data.get("web_tools") or []]
    settings = UserSettings(
        api_keys=ApiKeys(**(data.get("api_keys") or {})),
        agents=agents or default_agents(),
        web_tools=web_tools if data.get("web_tools") is not None else default_web_tools(),
    )
    active = data.get("active_agent_id")
    if active and any(a.id == active for a in settings.agents):
        settings.active_agent_id = active
    else:
        settings.active_agent_id = settings.agents[0].id
    return settings


class PersistenceAdapter:
    """Reads the three state slots at startup and rewrites one after each mutation."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def _read(self, key: str) -> Optional[Any]:
        raw = self.storage.get(key)
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Stored {key} snapshot is corrupt: {exc}") from exc

    def _write(self, key: str, payload: Any) -> None:
        self.storage.set(key, json.dumps(payload, ensure_ascii=False))
        logger.debug("Persisted %s", key)

    def load_meetings(self) -> List[MeetingRecord]:
        payload = self._read(MEETINGS_KEY)
        if payload is None:
            return []
        try:
            return meetings_from_list(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored meetings are invalid: {exc}") from exc

    def load_settings(self) -> UserSettings:
        payload = self._read(SETTINGS_KEY)
        if payload is None:
            return UserSettings()
        try:
            return settings_from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored settings are invalid: {exc}") from exc

    def load_chats(self) -> Dict[str, List[ChatMessage]]:
        payload = self._read(CHATS_KEY)
        if payload is None:
            return {}
        try:
            return chats_from_dict(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise StorageError(f"Stored chat histories are invalid: {exc}") from exc

    def save_meetings(self, records: List[MeetingRecord]) -> None:
        self._write(MEETINGS_KEY, [persistable(r) for r in records])

    def save_settings(self, settings: UserSettings) -> None:
        self._write(SETTINGS_KEY, settings_to_dict(settings))

    def save_chats(self, histories: Dict[str, List[ChatMessage]]) -> None:
        self._write(CHATS_KEY, chats_to_dict(histories))

    def attach(self, meetings: MeetingStore, chats: ChatHistoryStore, settings: SettingsStore) -> None:
        meetings.subscribe(lambda store: self.save_meetings(store.all()))
        chats.subscribe(lambda store: self.save_chats(store.snapshot()))
        settings.subscribe(lambda store: self.save_settings(store.snapshot()))

    def clear(self) -> None:
        self.storage.clear()
