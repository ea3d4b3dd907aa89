"""Command line interface for the nexus application."""

from __future__ import annotations

import json
import mimetypes
import wave
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterator, Optional

import typer

from . import config as config_mod
from .app import NexusApp
from .backup import RESET_PROMPT, SnapshotFormatError
from .config import ConfigError
from .inflight import InFlightError
from .logging_setup import configure_logging
from .models import LANGUAGES, Agent, MeetingRecord, ModelProvider, new_id
from .notify import ConsoleNotifier
from .providers import AIProviderError
from .stores import InvalidTransition, SettingsError
from .storage import Storage, StorageError

app = typer.Typer(add_completion=False, help="Record, summarise and chat with your AI agents.")
tags_app = typer.Typer(help="Edit the tags of a record.")
agents_app = typer.Typer(help="Manage agent personas.")
tools_app = typer.Typer(help="Manage embedded web tools.")
app.add_typer(tags_app, name="tags")
app.add_typer(agents_app, name="agents")
app.add_typer(tools_app, name="tools")

LOGS_DIR = config_mod.APP_DIR / "logs"


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _build_app(assume_yes: bool = False) -> NexusApp:
    return NexusApp(notifier=ConsoleNotifier(assume_yes=assume_yes))


def _open_storage() -> Storage:
    return Storage()


@contextmanager
def _session(assume_yes: bool = False) -> Iterator[NexusApp]:
    try:
        nexus = _build_app(assume_yes)
    except (StorageError, ConfigError) as exc:
        _fail(f"{exc}\nRun `nexus reset` to start over.")
    try:
        yield nexus
    finally:
        nexus.close()


def _resolve(nexus: NexusApp, prefix: str) -> MeetingRecord:
    matches = [r for r in nexus.meetings.all() if r.id.startswith(prefix)]
    if not matches:
        _fail(f"No record matches {prefix!r}.")
    if len(matches) > 1:
        _fail(f"{prefix!r} matches {len(matches)} records; use a longer id.")
    return matches[0]


def _wav_duration(path: Path) -> Optional[float]:
    try:
        with wave.open(str(path), "rb") as fh:
            if not fh.getframerate():
                return None
            return fh.getnframes() / float(fh.getframerate())
    except (wave.Error, EOFError):
        return None


def _print_record(record: MeetingRecord) -> None:
    typer.secho(f"Title: {record.title}", fg=typer.colors.BLUE)
    typer.echo(f"Id: {record.id}")
    typer.echo(f"Status: {record.status.value}")
    typer.echo(f"Created: {record.created_at.astimezone():%Y-%m-%d %H:%M}")
    typer.echo(f"Duration: {record.duration_seconds:.1f}s")
    if record.language:
        typer.echo(f"Language: {record.language}")
    typer.echo("Tags: " + (", ".join(f"#{t}" for t in record.tags) or "-"))
    if record.suggested_tags:
        typer.echo("Suggested: " + ", ".join(record.suggested_tags))
    typer.echo("Audio: " + (record.playable_reference if record.can_play else "not available"))
    if record.report:
        typer.secho("\nReport:\n" + record.report, fg=typer.colors.GREEN)
    if record.transcription:
        typer.echo("\nTranscription:\n" + record.transcription)


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo("nexus v0.1.0")
        raise typer.Exit()
    try:
        cfg = config_mod.load_config()
    except ConfigError as exc:
        _fail(str(exc))
    configure_logging(LOGS_DIR, cfg.log_level)


@app.command()
def process(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the recorded audio."),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="auto, zh-CN, en-US or ja-JP."),
    duration: Optional[float] = typer.Option(None, "--duration", help="Length in seconds if not a WAV file."),
) -> None:
    """Store a recording and have the active agent transcribe and summarise it."""

    cfg = config_mod.load_config()
    language = language or cfg.default_language
    if language not in LANGUAGES:
        _fail(f"Unknown language {language!r}. Choose one of: {', '.join(LANGUAGES)}")
    if duration is None:
        duration = _wav_duration(audio)
        if duration is None:
            _fail("Cannot read the duration of this file; pass --duration.")

    mime_type = mimetypes.guess_type(audio.name)[0] or "audio/wav"
    with _session() as nexus:
        agent = nexus.settings.active_agent()
        record, future = nexus.recording.start_processing(
            audio.read_bytes(), duration, agent=agent, language=language, mime_type=mime_type
        )
        typer.secho(f"{agent.icon} {agent.name} is analysing {record.id[:8]}...", fg=typer.colors.BLUE)
        outcome = future.result()
        if not outcome.ok:
            raise typer.Exit(code=1)
        _print_record(nexus.meetings.get(record.id))


@app.command("list")
def list_command() -> None:
    """List stored records."""

    with _session() as nexus:
        rows = nexus.meetings.all()
    if not rows:
        typer.echo("No recordings yet. Use `nexus process` to add one.")
        return
    header = f"{'ID':<8}  {'Status':<10}  {'Title':<30}  {'Created':<16}  Tags"
    typer.echo(header)
    typer.echo("-" * len(header))
    for record in rows:
        created = record.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
        tags = " ".join(f"#{t}" for t in record.tags[:2])
        typer.echo(f"{record.id[:8]:<8}  {record.status.value:<10}  {record.title[:30]:<30}  {created:<16}  {tags}")


@app.command()
def show(record_id: str = typer.Argument(..., help="Record id or unique prefix.")) -> None:
    """Show a stored record."""

    with _session() as nexus:
        _print_record(_resolve(nexus, record_id))


@app.command()
def title(
    record_id: str = typer.Argument(..., help="Record id or unique prefix."),
    text: str = typer.Argument(..., help="New title."),
) -> None:
    """Rename a record."""

    with _session() as nexus:
        record = _resolve(nexus, record_id)
        try:
            nexus.meetings.update_title(record.id, text)
        except ValueError as exc:
            _fail(str(exc))
    typer.secho("Title updated.", fg=typer.colors.BLUE)


@app.command()
def report(
    record_id: str = typer.Argument(..., help="Record id or unique prefix."),
    text: str = typer.Argument(..., help="Replacement report (Markdown)."),
) -> None:
    """Replace the report of a completed record."""

    with _session() as nexus:
        record = _resolve(nexus, record_id)
        try:
            nexus.meetings.update_report(record.id, text)
        except (ValueError, InvalidTransition) as exc:
            _fail(str(exc))
    typer.secho("Report updated.", fg=typer.colors.BLUE)


@app.command()
def refine(
    record_id: str = typer.Argument(..., help="Record id or unique prefix."),
    instruction: str = typer.Argument(..., help="How the report should change."),
) -> None:
    """Ask the AI to rewrite a report."""

    with _session() as nexus:
        record = _resolve(nexus, record_id)
        try:
            updated = nexus.recording.refine_report(record.id, instruction)
        except AIProviderError:
            nexus.notifier.alert("Failed to refine with AI")
            raise typer.Exit(code=1)
        except (ValueError, InFlightError) as exc:
            _fail(str(exc))
    typer.secho("Report refined:\n" + (updated.report or ""), fg=typer.colors.GREEN)


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Record id or unique prefix."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a record."""

    with _session(assume_yes=yes) as nexus:
        record = _resolve(nexus, record_id)
        if not nexus.notifier.confirm(
            "Are you sure you want to delete this meeting? This action cannot be undone."
        ):
            raise typer.Exit()
        nexus.meetings.delete(record.id)
    typer.secho(f"Record {record.id[:8]} deleted.", fg=typer.colors.BLUE)


@tags_app.command("add")
def tags_add(record_id: str, tag: str) -> None:
    """Add a tag."""

    with _session() as nexus:
        updated = nexus.meetings.add_tag(_resolve(nexus, record_id).id, tag)
    typer.echo("Tags: " + ", ".join(updated.tags))


@tags_app.command("remove")
def tags_remove(record_id: str, tag: str) -> None:
    """Remove a tag."""

    with _session() as nexus:
        updated = nexus.meetings.remove_tag(_resolve(nexus, record_id).id, tag)
    typer.echo("Tags: " + (", ".join(updated.tags) or "-"))


@tags_app.command("accept")
def tags_accept(record_id: str, tag: str) -> None:
    """Accept a tag suggested by the AI."""

    with _session() as nexus:
        record = _resolve(nexus, record_id)
        if tag not in record.suggested_tags and tag not in record.tags:
            _fail(f"{tag!r} is not a suggested tag.")
        updated = nexus.meetings.accept_suggested_tag(record.id, tag)
    typer.echo("Tags: " + ", ".join(updated.tags))


@app.command()
def chat(
    message: Optional[str] = typer.Argument(None, help="Message to send. Omit for an interactive session."),
    agent_id: Optional[str] = typer.Option(None, "--agent", "-a", help="Talk to this agent instead of the active one."),
    history: bool = typer.Option(False, "--history", help="Print the transcript and exit."),
    clear: bool = typer.Option(False, "--clear", help="Forget the transcript with this agent."),
) -> None:
    """Chat with an agent persona."""

    with _session() as nexus:
        agent = nexus.settings.get_agent(agent_id) if agent_id else nexus.settings.active_agent()
        if agent is None:
            _fail(f"Unknown agent: {agent_id}")

        if clear:
            nexus.chats.clear(agent.id)
            typer.secho(f"Chat with {agent.name} cleared.", fg=typer.colors.BLUE)
            return
        if history:
            for turn in nexus.chats.history(agent.id):
                speaker = "You" if turn.role == "user" else agent.name
                typer.echo(f"[{turn.timestamp.astimezone():%H:%M}] {speaker}: {turn.content}")
            return

        def send(text: str) -> None:
            reply = nexus.chat.send_message(text, agent=agent).result()
            typer.secho(f"{agent.icon} {reply.content}", fg=typer.colors.GREEN)

        if message:
            send(message)
            return

        typer.secho(f"Chatting with {agent.icon} {agent.name}. Type 'exit' to leave.", fg=typer.colors.BLUE)
        while True:
            text = typer.prompt("You", default="", show_default=False).strip()
            if text.lower() in {"exit", "quit"}:
                return
            if text:
                send(text)


@agents_app.command("list")
def agents_list() -> None:
    """List agents."""

    with _session() as nexus:
        active = nexus.settings.active_agent()
        for agent in nexus.settings.agents():
            marker = "*" if agent.id == active.id else " "
            builtin = " (built in)" if agent.is_default else ""
            typer.echo(
                f"{marker} {agent.icon} {agent.id:<12} {agent.name}{builtin} "
                f"[{ModelProvider(agent.provider).value} • {agent.model_id}]"
            )


@agents_app.command("use")
def agents_use(agent_id: str) -> None:
    """Make an agent the active one."""

    with _session() as nexus:
        try:
            agent = nexus.settings.select_agent(agent_id)
        except SettingsError as exc:
            _fail(str(exc))
    typer.secho(f"Now helping you as {agent.icon} {agent.name}.", fg=typer.colors.BLUE)


@agents_app.command("add")
def agents_add(
    name: str = typer.Option(..., help="Display name."),
    instruction: str = typer.Option(..., help="System instruction (persona prompt)."),
    description: str = typer.Option("Custom Agent", help="Short description."),
    icon: str = typer.Option("🤖", help="Icon shown next to the agent."),
    provider: ModelProvider = typer.Option(ModelProvider.GOOGLE, help="Model provider."),
    model: str = typer.Option("gemini-2.5-flash", help="Model identifier."),
    agent_id: Optional[str] = typer.Option(None, "--id", help="Update the agent with this id instead."),
) -> None:
    """Create or update an agent."""

    with _session() as nexus:
        agent = Agent(
            id=agent_id or new_id(),
            name=name,
            description=description,
            icon=icon,
            system_instruction=instruction,
            provider=provider,
            model_id=model,
        )
        try:
            saved = nexus.settings.save_agent(agent, confirm=nexus.notifier.confirm)
        except SettingsError as exc:
            _fail(str(exc))
    if not saved:
        typer.secho(f"Agent not saved. Configure a key with `nexus keys {provider.value} ...`.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    typer.secho(f"Agent {agent.name} saved ({agent.id}).", fg=typer.colors.BLUE)


@agents_app.command("remove")
def agents_remove(agent_id: str) -> None:
    """Delete a custom agent."""

    with _session() as nexus:
        try:
            nexus.settings.delete_agent(agent_id)
        except SettingsError as exc:
            _fail(str(exc))
    typer.secho(f"Agent {agent_id} deleted.", fg=typer.colors.BLUE)


@tools_app.command("list")
def tools_list() -> None:
    """List web tools."""

    with _session() as nexus:
        tools = nexus.settings.web_tools()
    if not tools:
        typer.echo("No web tools configured.")
    for tool in tools:
        typer.echo(f"{tool.icon} {tool.id[:12]:<12} {tool.name:<20} {tool.url}")


@tools_app.command("add")
def tools_add(
    name: str,
    url: str,
    icon: str = typer.Option("🌐", help="Icon shown in the sidebar."),
) -> None:
    """Add a web tool."""

    with _session() as nexus:
        try:
            tool = nexus.settings.add_web_tool(name, url, icon)
        except SettingsError as exc:
            _fail(str(exc))
    typer.secho(f"Web tool {tool.name} added ({tool.id}).", fg=typer.colors.BLUE)


@tools_app.command("remove")
def tools_remove(tool_id: str) -> None:
    """Delete a web tool."""

    with _session() as nexus:
        if not nexus.settings.delete_web_tool(tool_id):
            _fail(f"Unknown web tool: {tool_id}")
    typer.secho(f"Web tool {tool_id} deleted.", fg=typer.colors.BLUE)


@app.command()
def keys(
    provider: ModelProvider = typer.Argument(..., help="Provider the key belongs to."),
    key: str = typer.Argument(..., help="API key; pass an empty string to remove it."),
) -> None:
    """Store the API key for a provider."""

    with _session() as nexus:
        nexus.settings.set_api_key(provider, key)
    typer.secho(f"{provider.value} API key stored.", fg=typer.colors.BLUE)


@app.command("export")
def export_command(
    directory: Path = typer.Argument(Path("."), file_okay=False, help="Folder to write the backup to."),
) -> None:
    """Write a backup of settings, records and chats."""

    with _session() as nexus:
        path = nexus.backup.write_backup(directory)
    typer.secho(f"Backup written to {path}", fg=typer.colors.BLUE)


@app.command("import")
def import_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Backup file."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Replace all data with the contents of a backup."""

    with _session(assume_yes=yes) as nexus:
        try:
            applied = nexus.backup.import_snapshot(nexus.backup.read_backup(path))
        except SnapshotFormatError as exc:
            _fail(str(exc))
    if not applied:
        typer.echo("Import cancelled.")


@app.command()
def reset(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation.")) -> None:
    """Delete every record, chat and custom agent."""

    try:
        nexus = _build_app(assume_yes=yes)
    except StorageError as exc:
        # Unreadable snapshots must not block the way out.
        typer.secho(str(exc), fg=typer.colors.YELLOW, err=True)
        if not ConsoleNotifier(assume_yes=yes).confirm(RESET_PROMPT):
            typer.echo("Reset cancelled.")
            return
        _open_storage().clear()
        typer.echo("All data cleared.")
        return
    try:
        applied = nexus.backup.reset_all()
    finally:
        nexus.close()
    typer.echo("All data cleared." if applied else "Reset cancelled.")


@app.command()
def config(
    default_language: Optional[str] = typer.Option(None, help="Language used by `process` (auto, zh-CN, en-US, ja-JP)."),
    gemini_base_url: Optional[str] = typer.Option(None, help="Base URL of the Gemini API."),
    request_timeout: Optional[float] = typer.Option(None, help="HTTP timeout (seconds) for AI calls."),
    log_level: Optional[str] = typer.Option(None, help="Log level for the log file."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "default_language": default_language,
            "gemini_base_url": gemini_base_url,
            "request_timeout": request_timeout,
            "log_level": log_level,
        }.items()
        if value is not None
    }
    if show or not updates:
        typer.echo(json.dumps(asdict(config_mod.load_config()), indent=2, default=str))
        return
    if default_language is not None and default_language not in LANGUAGES:
        _fail(f"Unknown language {default_language!r}. Choose one of: {', '.join(LANGUAGES)}")

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


@app.command()
def setup() -> None:
    """Run the interactive setup wizard."""

    from .onboarding import run_onboarding

    with _session() as nexus:
        run_onboarding(nexus)


if __name__ == "__main__":  # pragma: no cover
    app()
