import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from nexus.app import NexusApp
from nexus.models import AppConfig, ModelProvider
from nexus.providers import ProcessingResult, require_credential
from nexus.storage import Storage


class RecordingNotifier:
    """Collects notices and answers every confirmation with ``answer``."""

    def __init__(self, answer=True):
        self.answer = answer
        self.alerts = []
        self.confirmations = []

    def alert(self, message):
        self.alerts.append(message)

    def confirm(self, message):
        self.confirmations.append(message)
        return self.answer


class FakeProvider:
    provider = ModelProvider.GOOGLE

    def __init__(self):
        self.result = ProcessingResult(
            title="Budget review",
            transcription="We went through the budget line by line.",
            report="## Summary\n- Budget approved",
            suggestedTags=["budget", "finance"],
            language="English",
        )
        self.reply = "Happy to help."
        self.refined = "## Summary\n- Budget approved\n- Shorter"
        self.error = None
        self.gate = None
        self.process_calls = []
        self.chat_calls = []
        self.refine_calls = []

    def _wait(self):
        if self.gate is not None:
            assert self.gate.wait(5)

    def process_audio(self, audio, mime_type, agent, language, credential):
        self.process_calls.append((audio, mime_type, agent.id, language, credential))
        require_credential(credential)
        self._wait()
        if self.error is not None:
            raise self.error
        return self.result

    def chat(self, agent, history, message, credential):
        self.chat_calls.append((agent.id, list(history), message, credential))
        require_credential(credential)
        self._wait()
        if self.error is not None:
            raise self.error
        return self.reply

    def refine_report(self, report, transcription, instruction, credential):
        self.refine_calls.append((report, transcription, instruction, credential))
        require_credential(credential)
        self._wait()
        if self.error is not None:
            raise self.error
        return self.refined


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def make_app(tmp_path, provider, notifier, executor):
    def factory(db_name="nexus.db", **overrides):
        kwargs = {
            "storage": Storage(db_path=tmp_path / db_name),
            "provider": provider,
            "notifier": notifier,
            "config": AppConfig(),
            "executor": executor,
        }
        kwargs.update(overrides)
        return NexusApp(**kwargs)

    return factory


@pytest.fixture
def nexus(make_app):
    app = make_app()
    app.settings.set_api_key(ModelProvider.GOOGLE, "test-key")
    return app


@pytest.fixture
def gate():
    return threading.Event()

