"""In-memory stores that make up the application state tree.

Each store owns its collection outright. Callers receive copies and change
state only through the store methods, every one of which runs under the
store lock and notifies subscribers (the persistence adapter) before
releasing it.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .models import (
    ERROR_TITLE,
    Agent,
    ChatMessage,
    MeetingRecord,
    MeetingStatus,
    ModelProvider,
    UserSettings,
    WebTool,
    new_id,
)
from .providers import ProcessingResult

logger = logging.getLogger("nexus.stores")

Listener = Callable[["ObservableStore"], None]


class InvalidTransition(RuntimeError):
    """Raised when a meeting record is asked to make an illegal status change."""


class SettingsError(RuntimeError):
    """Raised for settings operations that cannot be applied."""


class ObservableStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in self._listeners:
            listener(self)


def _copy_record(record: MeetingRecord) -> MeetingRecord:
    return replace(record, tags=list(record.tags), suggested_tags=list(record.suggested_tags))


def _dedupe(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


class MeetingStore(ObservableStore):
    """Meeting records, newest first, plus the currently selected record."""

    def __init__(self, records: Optional[Iterable[MeetingRecord]] = None) -> None:
        super().__init__()
        self._records: List[MeetingRecord] = [_copy_record(r) for r in records or []]
        self._selected_id: Optional[str] = None

    def all(self) -> List[MeetingRecord]:
        with self._lock:
            return [_copy_record(r) for r in self._records]

    def get(self, record_id: str) -> Optional[MeetingRecord]:
        with self._lock:
            index = self._index(record_id)
            return None if index is None else _copy_record(self._records[index])

    def __contains__(self, record_id: object) -> bool:
        with self._lock:
            return any(r.id == record_id for r in self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _index(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    def _update(self, record_id: str, check: Optional[Callable[[MeetingRecord], None]] = None, **changes) -> Optional[MeetingRecord]:
        with self._lock:
            index = self._index(record_id)
            if index is None:
                logger.debug("Ignoring update for missing record %s", record_id)
                return None
            current = self._records[index]
            if check is not None:
                check(current)
            updated = replace(current, **changes)
            self._records[index] = updated
            self._changed()
            return _copy_record(updated)

    def insert(self, record: MeetingRecord) -> MeetingRecord:
        with self._lock:
            if self._index(record.id) is not None:
                raise ValueError(f"Record {record.id} already exists")
            self._records.insert(0, _copy_record(record))
            self._changed()
        return _copy_record(record)

    def complete(self, record_id: str, result: ProcessingResult) -> Optional[MeetingRecord]:
        """Apply a successful processing result in a single step."""
        return self._update(
            record_id,
            check=_require_processing,
            status=MeetingStatus.COMPLETED,
            title=result.title,
            transcription=result.transcription,
            report=result.report,
            suggested_tags=_dedupe(result.suggested_tags),
            language=result.language,
        )

    def fail(self, record_id: str) -> Optional[MeetingRecord]:
        return self._update(
            record_id,
            check=_require_processing,
            status=MeetingStatus.ERROR,
            title=ERROR_TITLE,
        )

    def update_title(self, record_id: str, title: str) -> Optional[MeetingRecord]:
        title = title.strip()
        if not title:
            raise ValueError("Title cannot be empty")
        return self._update(record_id, title=title)

    def update_report(self, record_id: str, report: str) -> Optional[MeetingRecord]:
        if not report.strip():
            raise ValueError("Report cannot be empty")
        return self._update(record_id, check=_require_completed, report=report)

    def update_tags(
        self, record_id: str, tags: Iterable[str], suggested: Optional[Iterable[str]] = None
    ) -> Optional[MeetingRecord]:
        changes = {"tags": _dedupe(t.strip() for t in tags if t.strip())}
        if suggested is not None:
            changes["suggested_tags"] = _dedupe(suggested)
        return self._update(record_id, **changes)

    def add_tag(self, record_id: str, tag: str) -> Optional[MeetingRecord]:
        with self._lock:
            record = self.get(record_id)
            tag = tag.strip()
            if record is None or not tag or tag in record.tags:
                return record
            return self._update(record_id, tags=record.tags + [tag])

    def remove_tag(self, record_id: str, tag: str) -> Optional[MeetingRecord]:
        with self._lock:
            record = self.get(record_id)
            if record is None or tag not in record.tags:
                return record
            return self._update(record_id, tags=[t for t in record.tags if t != tag])

    def accept_suggested_tag(self, record_id: str, tag: str) -> Optional[MeetingRecord]:
        """Move ``tag`` from the suggestions into the tags, at most once."""
        with self._lock:
            record = self.get(record_id)
            if record is None or tag not in record.suggested_tags:
                return record
            tags = record.tags if tag in record.tags else record.tags + [tag]
            suggested = [t for t in record.suggested_tags if t != tag]
            return self._update(record_id, tags=tags, suggested_tags=suggested)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            index = self._index(record_id)
            if index is None:
                return False
            record = self._records.pop(index)
            if self._selected_id == record_id:
                self._selected_id = None
            self._changed()
        _discard_playable(record)
        return True

    def replace_all(self, records: Iterable[MeetingRecord], notify: bool = True) -> None:
        with self._lock:
            previous = self._records
            self._records = [_copy_record(r) for r in records]
            if self._selected_id is not None and self._index(self._selected_id) is None:
                self._selected_id = None
            if notify:
                self._changed()
        kept = {r.playable_reference for r in self._records}
        for record in previous:
            if record.playable_reference not in kept:
                _discard_playable(record)

    def release_playables(self) -> None:
        """Remove every playback file; the references do not outlive the process."""
        with self._lock:
            released = [r for r in self._records if r.playable_reference]
            for index, record in enumerate(self._records):
                if record.playable_reference:
                    self._records[index] = replace(record, playable_reference=None)
        for record in released:
            _discard_playable(record)

    def select(self, record_id: Optional[str]) -> None:
        with self._lock:
            if record_id is not None and self._index(record_id) is None:
                raise KeyError(record_id)
            self._selected_id = record_id

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    def selected(self) -> Optional[MeetingRecord]:
        with self._lock:
            return None if self._selected_id is None else self.get(self._selected_id)


def _require_processing(record: MeetingRecord) -> None:
    if record.status is not MeetingStatus.PROCESSING:
        raise InvalidTransition(f"Record {record.id} is {record.status.value}, not PROCESSING")


def _require_completed(record: MeetingRecord) -> None:
    if record.status is not MeetingStatus.COMPLETED:
        raise InvalidTransition(f"Record {record.id} is {record.status.value}, not COMPLETED")


def _discard_playable(record: MeetingRecord) -> None:
    if not record.playable_reference:
        return
    try:
        os.unlink(record.playable_reference)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove playback file %s: %s", record.playable_reference, exc)


class ChatHistoryStore(ObservableStore):
    """Ordered chat transcripts keyed by agent id."""

    def __init__(self, histories: Optional[Dict[str, List[ChatMessage]]] = None) -> None:
        super().__init__()
        self._histories: Dict[str, List[ChatMessage]] = {
            agent_id: list(messages) for agent_id, messages in (histories or {}).items()
        }

    def history(self, agent_id: str) -> List[ChatMessage]:
        with self._lock:
            return list(self._histories.get(agent_id, []))

    def snapshot(self) -> Dict[str, List[ChatMessage]]:
        with self._lock:
            return {agent_id: list(messages) for agent_id, messages in self._histories.items()}

    def append(self, agent_id: str, message: ChatMessage) -> None:
        with self._lock:
            self._histories.setdefault(agent_id, []).append(message)
            self._changed()

    def clear(self, agent_id: str) -> None:
        with self._lock:
            if self._histories.pop(agent_id, None) is not None:
                self._changed()

    def replace_all(self, histories: Dict[str, List[ChatMessage]], notify: bool = True) -> None:
        with self._lock:
            self._histories = {agent_id: list(messages) for agent_id, messages in histories.items()}
            if notify:
                self._changed()


class SettingsStore(ObservableStore):
    """The single process-wide :class:`UserSettings` instance."""

    def __init__(self, settings: Optional[UserSettings] = None) -> None:
        super().__init__()
        self._settings = copy.deepcopy(settings) if settings is not None else UserSettings()

    def snapshot(self) -> UserSettings:
        with self._lock:
            return copy.deepcopy(self._settings)

    def replace(self, settings: UserSettings, notify: bool = True) -> None:
        with self._lock:
            self._settings = copy.deepcopy(settings)
            if notify:
                self._changed()

    def credential(self, provider: ModelProvider) -> str:
        with self._lock:
            return self._settings.api_keys.for_provider(provider)

    def set_api_key(self, provider: ModelProvider, value: str) -> None:
        with self._lock:
            setattr(self._settings.api_keys, ModelProvider(provider).value, value.strip())
            self._changed()

    def agents(self) -> List[Agent]:
        with self._lock:
            return copy.deepcopy(self._settings.agents)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            for agent in self._settings.agents:
                if agent.id == agent_id:
                    return copy.deepcopy(agent)
            return None

    def active_agent(self) -> Agent:
        """Return the active agent, falling back to the first configured one."""
        with self._lock:
            if not self._settings.agents:
                raise SettingsError("No agents are configured")
            agent = self.get_agent(self._settings.active_agent_id)
            return agent if agent is not None else copy.deepcopy(self._settings.agents[0])

    def select_agent(self, agent_id: str) -> Agent:
        with self._lock:
            agent = self.get_agent(agent_id)
            if agent is None:
                raise SettingsError(f"Unknown agent: {agent_id}")
            self._settings.active_agent_id = agent_id
            self._changed()
            return agent

    def save_agent(self, agent: Agent, confirm: Optional[Callable[[str], bool]] = None) -> bool:
        """Create or update ``agent``.

        When the agent's provider has no API key configured, ``confirm`` is
        asked whether to save anyway. Returns ``False`` if the user declined.
        """
        if not agent.name.strip() or not agent.system_instruction.strip():
            raise SettingsError("An agent needs a name and a system instruction")
        provider = ModelProvider(agent.provider)
        with self._lock:
            if not self.credential(provider) and confirm is not None:
                message = (
                    f"Warning: You have not configured an API Key for {provider.value} yet.\n\n"
                    "This agent will not work without it. Do you want to proceed saving?"
                )
                if not confirm(message):
                    return False
            agents = self._settings.agents
            for index, existing in enumerate(agents):
                if existing.id == agent.id:
                    agents[index] = replace(agent, provider=provider, is_default=existing.is_default)
                    break
            else:
                agents.append(replace(agent, provider=provider, is_default=False))
            self._changed()
            return True

    def delete_agent(self, agent_id: str) -> None:
        with self._lock:
            agent = self.get_agent(agent_id)
            if agent is None:
                raise SettingsError(f"Unknown agent: {agent_id}")
            if agent.is_default:
                raise SettingsError(f"Agent {agent.name} is built in and cannot be deleted")
            self._settings.agents = [a for a in self._settings.agents if a.id != agent_id]
            if self._settings.active_agent_id == agent_id and self._settings.agents:
                self._settings.active_agent_id = self._settings.agents[0].id
            self._changed()

    def web_tools(self) -> List[WebTool]:
        with self._lock:
            return copy.deepcopy(self._settings.web_tools)

    def add_web_tool(self, name: str, url: str, icon: str = "🌐") -> WebTool:
        name, url = name.strip(), url.strip()
        if not name or not url:
            raise SettingsError("A web tool needs a name and a URL")
        tool = WebTool(id=new_id(), name=name, url=url, icon=icon or "🌐")
        with self._lock:
            self._settings.web_tools.append(tool)
            self._changed()
        return copy.deepcopy(tool)

    def delete_web_tool(self, tool_id: str) -> bool:
        with self._lock:
            remaining = [t for t in self._settings.web_tools if t.id != tool_id]
            if len(remaining) == len(self._settings.web_tools):
                return False
            self._settings.web_tools = remaining
            self._changed()
            return True
