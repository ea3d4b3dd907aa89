import pytest

from nexus.models import Agent, MeetingRecord, MeetingStatus, ModelProvider, utcnow
from nexus.providers import ProcessingResult
from nexus.stores import (
    ChatHistoryStore,
    InvalidTransition,
    MeetingStore,
    SettingsError,
    SettingsStore,
)


def _record(record_id="m1", status=MeetingStatus.COMPLETED, **changes):
    fields = dict(
        id=record_id,
        title="Weekly sync",
        created_at=utcnow(),
        duration_seconds=12.5,
        status=status,
        tags=["team"],
        suggested_tags=["budget", "q3"],
        transcription="hello" if status is MeetingStatus.COMPLETED else None,
        report="report" if status is MeetingStatus.COMPLETED else None,
    )
    fields.update(changes)
    return MeetingRecord(**fields)


def test_accepting_suggested_tag_moves_it_once():
    store = MeetingStore([_record()])

    updated = store.accept_suggested_tag("m1", "budget")
    assert updated.tags == ["team", "budget"]
    assert updated.suggested_tags == ["q3"]

    again = store.accept_suggested_tag("m1", "budget")
    assert again.tags == ["team", "budget"]
    assert again.suggested_tags == ["q3"]


def test_add_tag_ignores_duplicates_and_blanks():
    store = MeetingStore([_record()])

    store.add_tag("m1", " team ")
    store.add_tag("m1", "   ")
    updated = store.add_tag("m1", "roadmap")

    assert updated.tags == ["team", "roadmap"]
    assert store.remove_tag("m1", "team").tags == ["roadmap"]


def test_deleting_selected_record_clears_selection():
    store = MeetingStore([_record("a"), _record("b")])
    store.select("a")

    assert store.delete("a") is True
    assert store.selected_id is None
    assert store.selected() is None


def test_deleting_other_record_keeps_selection():
    store = MeetingStore([_record("a"), _record("b")])
    store.select("a")

    store.delete("b")
    assert store.selected_id == "a"


def test_updates_for_missing_records_are_noops():
    store = MeetingStore()
    result = ProcessingResult(title="t", transcription="x", report="y", suggestedTags=[], language="en")

    assert store.complete("gone", result) is None
    assert store.fail("gone") is None
    assert store.update_title("gone", "New") is None
    assert store.delete("gone") is False


def test_complete_requires_processing():
    store = MeetingStore([_record(status=MeetingStatus.ERROR)])
    result = ProcessingResult(title="t", transcription="x", report="y", suggestedTags=[], language="en")

    with pytest.raises(InvalidTransition):
        store.complete("m1", result)
    assert store.get("m1").status is MeetingStatus.ERROR


def test_report_edits_only_on_completed_records():
    store = MeetingStore([_record("done"), _record("busy", status=MeetingStatus.PROCESSING)])

    assert store.update_report("done", "# New").report == "# New"
    with pytest.raises(InvalidTransition):
        store.update_report("busy", "# New")
    with pytest.raises(ValueError):
        store.update_report("done", "  ")


def test_store_hands_out_copies():
    store = MeetingStore([_record()])

    record = store.get("m1")
    record.tags.append("sneaky")

    assert store.get("m1").tags == ["team"]


def test_records_are_inserted_newest_first():
    store = MeetingStore([_record("old")])
    store.insert(_record("new"))

    assert [r.id for r in store.all()] == ["new", "old"]


def test_subscribers_see_every_mutation():
    store = MeetingStore([_record()])
    seen = []
    store.subscribe(lambda s: seen.append(len(s)))

    store.update_title("m1", "Renamed")
    store.add_tag("m1", "x")
    store.delete("m1")

    assert seen == [1, 1, 0]


def test_chat_histories_are_kept_per_agent():
    from nexus.models import ChatMessage

    store = ChatHistoryStore()
    store.append("coder", ChatMessage.user("hi"))
    store.append("lifecoach", ChatMessage.user("hello"))

    assert [m.content for m in store.history("coder")] == ["hi"]
    assert [m.content for m in store.history("lifecoach")] == ["hello"]
    store.clear("coder")
    assert store.history("coder") == []
    assert len(store.history("lifecoach")) == 1


def test_default_agents_cannot_be_deleted():
    store = SettingsStore()

    with pytest.raises(SettingsError):
        store.delete_agent("secretary")


def test_deleting_active_agent_falls_back_to_first():
    store = SettingsStore()
    store.select_agent("coder")
    store.delete_agent("coder")

    assert store.active_agent().id == "secretary"
    assert store.get_agent("coder") is None


def test_saving_agent_without_key_asks_first():
    store = SettingsStore()
    agent = Agent(
        id="writer",
        name="Writer",
        description="Drafts",
        icon="✍️",
        system_instruction="Write well.",
        provider=ModelProvider.OPENAI,
        model_id="gpt-4",
    )
    prompts = []

    saved = store.save_agent(agent, confirm=lambda message: prompts.append(message) or False)
    assert saved is False
    assert store.get_agent("writer") is None
    assert "openai" in prompts[0]

    store.set_api_key(ModelProvider.OPENAI, "sk-test")
    assert store.save_agent(agent, confirm=lambda message: False) is True
    assert store.get_agent("writer").is_default is False


def test_updating_default_agent_keeps_it_protected():
    store = SettingsStore()
    agent = store.get_agent("secretary")
    agent.is_default = False
    agent.name = "Minutes"

    store.save_agent(agent)

    assert store.get_agent("secretary").name == "Minutes"
    assert store.get_agent("secretary").is_default is True


def test_web_tools_can_be_added_and_removed():
    store = SettingsStore()
    tool = store.add_web_tool("Docs", "https://docs.example.com")

    assert tool.icon == "🌐"
    assert any(t.id == tool.id for t in store.web_tools())
    assert store.delete_web_tool(tool.id) is True
    assert store.delete_web_tool(tool.id) is False
    with pytest.raises(SettingsError):
        store.add_web_tool("", "https://example.com")
