import json
import struct
import wave

import pytest
from typer.testing import CliRunner

from nexus import cli, config
from nexus.models import ModelProvider
from nexus.notify import ConsoleNotifier
from nexus.providers import AIProviderError

runner = CliRunner()


@pytest.fixture
def session(tmp_path, monkeypatch, make_app):
    monkeypatch.setattr(config, "CONFIG_PATH", tmp_path / "config.json")
    monkeypatch.setattr(cli, "LOGS_DIR", tmp_path / "logs")
    monkeypatch.setattr(cli, "_build_app", lambda assume_yes=False: make_app(notifier=ConsoleNotifier(assume_yes)))
    return make_app


def _wav(path, seconds=2):
    with wave.open(str(path), "wb") as fh:
        fh.setnchannels(1)
        fh.setsampwidth(2)
        fh.setframerate(8000)
        fh.writeframes(b"\x00\x00" * 8000 * seconds)
    return path


def _completed_record(session, tmp_path):
    session().settings.set_api_key(ModelProvider.GOOGLE, "key")
    result = runner.invoke(cli.app, ["process", str(_wav(tmp_path / "meeting.wav")), "--language", "en-US"])
    assert result.exit_code == 0, result.output
    return session().meetings.all()[0]


def test_process_reads_wav_duration(session, tmp_path):
    record = _completed_record(session, tmp_path)

    assert record.title == "Budget review"
    assert record.duration_seconds == 2.0
    assert record.audio_payload is None


def test_process_without_key_reports_failure(session, tmp_path):
    result = runner.invoke(cli.app, ["process", str(_wav(tmp_path / "meeting.wav"))])

    assert result.exit_code == 1
    assert session().meetings.all()[0].title == "Error Processing"


def test_process_needs_duration_for_other_formats(session, tmp_path):
    audio = tmp_path / "meeting.webm"
    audio.write_bytes(b"webm")

    result = runner.invoke(cli.app, ["process", str(audio)])

    assert result.exit_code == 1
    assert len(session().meetings) == 0


def test_list_and_show(session, tmp_path):
    record = _completed_record(session, tmp_path)

    listing = runner.invoke(cli.app, ["list"])
    shown = runner.invoke(cli.app, ["show", record.id[:6]])

    assert record.id[:8] in listing.output
    assert "Budget review" in shown.output
    assert "Audio: not available" in shown.output


def test_tags_accept_and_title(session, tmp_path):
    record = _completed_record(session, tmp_path)

    runner.invoke(cli.app, ["tags", "accept", record.id, "budget"])
    runner.invoke(cli.app, ["title", record.id, "Q3 Budget"])

    stored = session().meetings.get(record.id)
    assert stored.tags == ["budget"]
    assert stored.suggested_tags == ["finance"]
    assert stored.title == "Q3 Budget"


def test_refine_failure_keeps_report(session, tmp_path, provider):
    record = _completed_record(session, tmp_path)

    provider.error = AIProviderError("quota")
    result = runner.invoke(cli.app, ["refine", record.id, "Shorter"])

    assert result.exit_code == 1
    assert session().meetings.get(record.id).report == record.report


def test_delete_asks_for_confirmation(session, tmp_path):
    record = _completed_record(session, tmp_path)

    runner.invoke(cli.app, ["delete", record.id], input="n\n")
    assert record.id in session().meetings

    runner.invoke(cli.app, ["delete", record.id], input="y\n")
    assert record.id not in session().meetings


def test_chat_with_unsupported_agent(session, provider):
    session().settings.set_api_key(ModelProvider.OPENAI, "sk")
    added = runner.invoke(
        cli.app,
        ["agents", "add", "--name", "GPT", "--instruction", "Be brief.", "--provider", "openai", "--model", "gpt-4o", "--id", "gpt"],
    )
    assert added.exit_code == 0, added.output

    result = runner.invoke(cli.app, ["chat", "hello", "--agent", "gpt"])

    assert "openai (gpt-4o)" in result.output
    assert provider.chat_calls == []


def test_agents_use_and_protected_delete(session):
    runner.invoke(cli.app, ["agents", "use", "coder"])
    removed = runner.invoke(cli.app, ["agents", "remove", "secretary"])

    assert session().settings.active_agent().id == "coder"
    assert removed.exit_code == 1


def test_keys_and_tools(session):
    runner.invoke(cli.app, ["keys", "google", "abc"])
    runner.invoke(cli.app, ["tools", "add", "Docs", "https://docs.example.com"])

    app = session()
    assert app.settings.credential(ModelProvider.GOOGLE) == "abc"
    assert [t.name for t in app.settings.web_tools()][-1] == "Docs"


def test_export_import_and_reset(session, tmp_path):
    runner.invoke(cli.app, ["keys", "google", "abc"])
    exported = runner.invoke(cli.app, ["export", str(tmp_path / "out")])
    assert exported.exit_code == 0, exported.output
    backup = next((tmp_path / "out").glob("nexus-backup-*.json"))

    reset = runner.invoke(cli.app, ["reset", "--yes"])
    assert reset.exit_code == 0
    assert session().settings.credential(ModelProvider.GOOGLE) == ""

    imported = runner.invoke(cli.app, ["import", str(backup), "--yes"])
    assert imported.exit_code == 0, imported.output
    assert session().settings.credential(ModelProvider.GOOGLE) == "abc"


def test_import_rejects_invalid_file(session, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"meetings": []}))

    result = runner.invoke(cli.app, ["import", str(path), "--yes"])

    assert result.exit_code == 1


def test_config_updates_file(session, tmp_path):
    runner.invoke(cli.app, ["config", "--default-language", "ja-JP"])

    assert config.load_config().default_language == "ja-JP"
    assert runner.invoke(cli.app, ["config", "--default-language", "xx"]).exit_code == 1


def test_wav_with_zero_frame_rate_needs_duration(session, tmp_path):
    fmt = struct.pack("<HHIIHH", 1, 1, 0, 0, 2, 16)
    data = b"\x00\x00" * 10
    body = b"WAVEfmt " + struct.pack("<I", len(fmt)) + fmt + b"data" + struct.pack("<I", len(data)) + data
    audio = tmp_path / "silent.wav"
    audio.write_bytes(b"RIFF" + struct.pack("<I", len(body)) + body)

    assert cli._wav_duration(audio) is None
    result = runner.invoke(cli.app, ["process", str(audio)])

    assert result.exit_code == 1
    assert len(session().meetings) == 0
