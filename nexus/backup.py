"""Export, import and reset of the complete application state."""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict

from .models import UserSettings, utcnow
from .notify import Notifier
from .persistence import (
    PersistenceAdapter,
    chats_from_dict,
    chats_to_dict,
    meetings_from_list,
    persistable,
    settings_from_dict,
    settings_to_dict,
)
from .stores import ChatHistoryStore, MeetingStore, SettingsStore

BACKUP_VERSION = 1

IMPORT_PROMPT = "This will overwrite your current settings, agents, and meetings. Are you sure?"
RESET_PROMPT = (
    "DANGER: This will permanently delete ALL meetings, chats, and custom agents. "
    "This cannot be undone."
)

logger = logging.getLogger("nexus.backup")


class SnapshotFormatError(ValueError):
    """Raised when a backup document does not have the expected shape."""


def backup_filename(today: date) -> str:
    return f"nexus-backup-{today.isoformat()}.json"


class BackupManager:
    def __init__(
        self,
        settings: SettingsStore,
        meetings: MeetingStore,
        chats: ChatHistoryStore,
        persistence: PersistenceAdapter,
        notifier: Notifier,
    ) -> None:
        self._settings = settings
        self._meetings = meetings
        self._chats = chats
        self._persistence = persistence
        self._notifier = notifier

    def export_snapshot(self) -> Dict[str, Any]:
        return {
            "version": BACKUP_VERSION,
            "date": utcnow().isoformat(),
            "settings": settings_to_dict(self._settings.snapshot()),
            "meetings": [persistable(r) for r in self._meetings.all()],
            "chat_histories": chats_to_dict(self._chats.snapshot()),
        }

    def write_backup(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / backup_filename(utcnow().date())
        path.write_text(json.dumps(self.export_snapshot(), indent=2, ensure_ascii=False))
        logger.info("Backup written to %s", path)
        return path

    @staticmethod
    def read_backup(path: Path) -> Dict[str, Any]:
        try:
            document = json.loads(path.read_text())
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SnapshotFormatError(f"Failed to parse backup file: {exc}") from exc
        if not isinstance(document, dict):
            raise SnapshotFormatError("Invalid backup file format.")
        return document

    def import_snapshot(self, document: Dict[str, Any]) -> bool:
        """Replace settings, meetings and chat histories with ``document``.

        Every section is decoded before any store is touched, so a malformed
        document leaves the current state as it was. Returns ``False`` when the
        user declines the overwrite.
        """
        if not isinstance(document, dict) or not document.get("version"):
            raise SnapshotFormatError("Invalid backup file format.")
        if not isinstance(document.get("settings"), dict):
            raise SnapshotFormatError("Invalid backup file format.")
        try:
            settings = settings_from_dict(document["settings"])
            meetings = None
            if document.get("meetings") is not None:
                meetings = meetings_from_list(document["meetings"])
            chats = None
            if document.get("chat_histories") is not None:
                chats = chats_from_dict(document["chat_histories"])
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SnapshotFormatError(f"Invalid backup file format: {exc}") from exc

        if not self._notifier.confirm(IMPORT_PROMPT):
            return False

        self._settings.replace(settings)
        if meetings is not None:
            self._meetings.replace_all(meetings)
        if chats is not None:
            self._chats.replace_all(chats)
        logger.info("Imported backup version %s", document["version"])
        self._notifier.alert("Data imported successfully!")
        return True

    def reset_all(self) -> bool:
        if not self._notifier.confirm(RESET_PROMPT):
            return False
        self._persistence.clear()
        self._settings.replace(UserSettings(), notify=False)
        self._meetings.replace_all([], notify=False)
        self._chats.replace_all({}, notify=False)
        logger.warning("All stored data was cleared")
        return True
