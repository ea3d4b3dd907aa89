"""Composition root wiring stores, adapters and orchestrators together."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from .backup import BackupManager
from .chat import ChatOrchestrator
from .config import APP_DIR, load_config
from .gemini import GeminiClient
from .models import AppConfig
from .notify import ConsoleNotifier, Notifier
from .persistence import PersistenceAdapter
from .providers import AIProvider
from .recording import RecordingOrchestrator
from .storage import Storage
from .stores import ChatHistoryStore, MeetingStore, SettingsStore

logger = logging.getLogger("nexus.app")


class NexusApp:
    """Owns the application state for the lifetime of the process.

    The stores are loaded from storage before anything else touches them and
    are then attached to the persistence adapter, so every later mutation is
    written back immediately.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        provider: Optional[AIProvider] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[AppConfig] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = config or load_config()
        self.storage = storage or Storage()
        self.notifier = notifier or ConsoleNotifier()
        self.provider = provider or GeminiClient(
            base_url=self.config.gemini_base_url, timeout=self.config.request_timeout
        )
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="nexus-ai")

        self.persistence = PersistenceAdapter(self.storage)
        self.settings = SettingsStore(self.persistence.load_settings())
        self.meetings = MeetingStore(self.persistence.load_meetings())
        self.chats = ChatHistoryStore(self.persistence.load_chats())
        self.persistence.attach(self.meetings, self.chats, self.settings)
        logger.debug(
            "Loaded %d meetings, %d agents, %d chat histories",
            len(self.meetings),
            len(self.settings.agents()),
            len(self.chats.snapshot()),
        )

        self.recording = RecordingOrchestrator(
            self.meetings, self.settings, self.provider, self.notifier, self.executor
        )
        self.chat = ChatOrchestrator(self.chats, self.settings, self.provider, self.executor)
        self.backup = BackupManager(
            self.settings, self.meetings, self.chats, self.persistence, self.notifier
        )

    @classmethod
    def from_directory(cls, directory: Path = APP_DIR, **kwargs) -> "NexusApp":
        return cls(storage=Storage(directory / "nexus.db"), **kwargs)

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=True)
        self.meetings.release_playables()

    def __enter__(self) -> "NexusApp":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
