"""Drive a finished capture through AI processing into the meeting store."""

from __future__ import annotations

import logging
import mimetypes
import tempfile
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Optional, Tuple

from .inflight import InFlight
from .models import (
    PLACEHOLDER_TITLE,
    Agent,
    MeetingRecord,
    MeetingStatus,
    ModelProvider,
    language_label,
    new_id,
    utcnow,
)
from .notify import Notifier
from .providers import AIProvider, AIProviderError, ProcessingResult
from .stores import MeetingStore, SettingsStore

PROCESSING_FAILED_NOTICE = "Processing failed. Please check your API Keys in settings."

logger = logging.getLogger("nexus.meetings")


@dataclass(frozen=True)
class ProcessingOutcome:
    """Either a result or the error that replaced it."""

    record_id: str
    result: Optional[ProcessingResult] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordingOrchestrator:
    def __init__(
        self,
        meetings: MeetingStore,
        settings: SettingsStore,
        provider: AIProvider,
        notifier: Notifier,
        executor: Executor,
    ) -> None:
        self._meetings = meetings
        self._settings = settings
        self._provider = provider
        self._notifier = notifier
        self._executor = executor
        self._refining = InFlight("refine")

    def start_processing(
        self,
        audio_payload: bytes,
        duration_seconds: float,
        agent: Optional[Agent] = None,
        language: str = "auto",
        credential: Optional[str] = None,
        mime_type: str = "audio/wav",
    ) -> Tuple[MeetingRecord, "Future[ProcessingOutcome]"]:
        """Insert a PROCESSING record and hand the audio to the AI provider.

        Returns straight away with the new record (already selected) and a
        future that settles once the record reached COMPLETED or ERROR.
        """
        if agent is None:
            agent = self._settings.active_agent()
        if credential is None:
            credential = self._settings.credential(ModelProvider.GOOGLE)

        record = MeetingRecord(
            id=new_id(),
            title=PLACEHOLDER_TITLE,
            created_at=utcnow(),
            duration_seconds=float(duration_seconds),
            status=MeetingStatus.PROCESSING,
            language=language_label(language),
            audio_payload=audio_payload,
            playable_reference=_write_playable(audio_payload, mime_type),
        )
        record = self._meetings.insert(record)
        self._meetings.select(record.id)
        logger.info("Processing record %s (%.1fs, agent=%s)", record.id, record.duration_seconds, agent.id)

        future = self._executor.submit(
            self._process, record.id, audio_payload, mime_type, agent, language, credential
        )
        return record, future

    def _process(
        self,
        record_id: str,
        audio: bytes,
        mime_type: str,
        agent: Agent,
        language: str,
        credential: str,
    ) -> ProcessingOutcome:
        try:
            result = self._provider.process_audio(audio, mime_type, agent, language, credential)
        except Exception as exc:
            logger.exception("Processing failed for record %s", record_id)
            try:
                if self._meetings.fail(record_id) is None:
                    logger.info("Record %s was deleted before processing failed", record_id)
            except Exception:
                logger.exception("Could not store the error status of record %s", record_id)
            finally:
                self._notifier.alert(PROCESSING_FAILED_NOTICE)
            return ProcessingOutcome(record_id=record_id, error=exc)

        try:
            completed = self._meetings.complete(record_id, result)
        except Exception as exc:
            logger.exception("Could not store the result of record %s", record_id)
            return ProcessingOutcome(record_id=record_id, result=result, error=exc)
        if completed is None:
            logger.info("Record %s was deleted before processing finished; result dropped", record_id)
        else:
            logger.info("Record %s completed: %s", record_id, result.title)
        return ProcessingOutcome(record_id=record_id, result=result)

    def refine_report(self, record_id: str, instruction: str, credential: Optional[str] = None) -> MeetingRecord:
        """Rewrite a completed record's report following ``instruction``.

        Raises :class:`AIProviderError` and leaves the report untouched when
        the AI call fails.
        """
        instruction = instruction.strip()
        if not instruction:
            raise ValueError("Instruction cannot be empty")
        record = self._meetings.get(record_id)
        if record is None:
            raise KeyError(record_id)
        if record.status is not MeetingStatus.COMPLETED or not record.report:
            raise ValueError(f"Record {record_id} has no report to refine")
        if credential is None:
            credential = self._settings.credential(ModelProvider.GOOGLE)

        with self._refining.hold(record_id):
            try:
                report = self._provider.refine_report(
                    record.report, record.transcription or "", instruction, credential
                )
            except AIProviderError:
                logger.warning("Refinement failed for record %s", record_id)
                raise
            updated = self._meetings.update_report(record_id, report)
        if updated is None:
            raise KeyError(record_id)
        return updated

    def is_refining(self, record_id: str) -> bool:
        return record_id in self._refining


def _write_playable(audio: bytes, mime_type: str) -> str:
    suffix = mimetypes.guess_extension(mime_type or "") or ".wav"
    with tempfile.NamedTemporaryFile(prefix="nexus-", suffix=suffix, delete=False) as fh:
        fh.write(audio)
    return fh.name
