import base64
import json

import httpx
import pytest

from nexus.gemini import GeminiClient
from nexus.models import ChatMessage, default_agents
from nexus.providers import AIProviderError, ErrorKind


def _reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler, requests):
    def record(request):
        requests.append(request)
        return handler(request)

    return GeminiClient(base_url="https://gemini.test", transport=httpx.MockTransport(record))


AGENT = default_agents()[0]

RESULT = {
    "title": "Budget review",
    "transcription": "We reviewed the budget.",
    "report": "- Approved",
    "suggestedTags": ["budget"],
    "language": "English",
}


def test_process_audio_sends_inline_audio_and_schema():
    requests = []
    client = _client(lambda r: httpx.Response(200, json=_reply(json.dumps(RESULT))), requests)

    result = client.process_audio(b"\x00\x01", "audio/webm", AGENT, "zh-CN", "key-1")

    assert result.title == "Budget review"
    assert result.suggested_tags == ["budget"]
    request = requests[0]
    assert request.url.path == "/v1beta/models/gemini-2.5-flash:generateContent"
    assert request.headers["x-goog-api-key"] == "key-1"
    body = json.loads(request.content)
    inline = body["contents"][0]["parts"][0]["inline_data"]
    assert inline["mime_type"] == "audio/webm"
    assert base64.b64decode(inline["data"]) == b"\x00\x01"
    assert "Chinese (Simplified)" in body["contents"][0]["parts"][1]["text"]
    assert AGENT.system_instruction in body["contents"][0]["parts"][1]["text"]
    assert body["generationConfig"]["responseMimeType"] == "application/json"


def test_missing_key_fails_without_a_request():
    requests = []
    client = _client(lambda r: httpx.Response(200, json=_reply("{}")), requests)

    with pytest.raises(AIProviderError) as excinfo:
        client.process_audio(b"audio", "audio/wav", AGENT, "auto", "")

    assert excinfo.value.kind is ErrorKind.MISSING_CREDENTIAL
    assert requests == []


def test_result_missing_fields_is_rejected():
    requests = []
    incomplete = dict(RESULT, report="")
    client = _client(lambda r: httpx.Response(200, json=_reply(json.dumps(incomplete))), requests)

    with pytest.raises(AIProviderError) as excinfo:
        client.process_audio(b"audio", "audio/wav", AGENT, "auto", "key")

    assert excinfo.value.kind is ErrorKind.INVALID_RESPONSE


def test_non_json_result_is_rejected():
    client = _client(lambda r: httpx.Response(200, json=_reply("Sure! Here are your notes")), [])

    with pytest.raises(AIProviderError) as excinfo:
        client.process_audio(b"audio", "audio/wav", AGENT, "auto", "key")

    assert excinfo.value.kind is ErrorKind.INVALID_RESPONSE


def test_http_errors_become_provider_errors():
    client = _client(lambda r: httpx.Response(403, json={"error": {"message": "bad key"}}), [])

    with pytest.raises(AIProviderError) as excinfo:
        client.chat(AGENT, [], "hi", "key")

    assert excinfo.value.kind is ErrorKind.PROVIDER


def test_connection_errors_become_network_errors():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    client = _client(handler, [])

    with pytest.raises(AIProviderError) as excinfo:
        client.chat(AGENT, [], "hi", "key")

    assert excinfo.value.kind is ErrorKind.NETWORK


def test_chat_sends_persona_and_history():
    requests = []
    client = _client(lambda r: httpx.Response(200, json=_reply("Hello!")), requests)
    history = [ChatMessage.user("first"), ChatMessage.model("answer")]

    assert client.chat(AGENT, history, "second", "key") == "Hello!"

    body = json.loads(requests[0].content)
    assert body["systemInstruction"]["parts"][0]["text"] == AGENT.system_instruction
    assert [(c["role"], c["parts"][0]["text"]) for c in body["contents"]] == [
        ("user", "first"),
        ("model", "answer"),
        ("user", "second"),
    ]


def test_refine_sends_bounded_transcription():
    requests = []
    client = _client(lambda r: httpx.Response(200, json=_reply("# Shorter")), requests)

    refined = client.refine_report("# Long", "x" * 6000 + "TAIL", "Shorten it", "key")

    assert refined == "# Shorter"
    prompt = json.loads(requests[0].content)["contents"][0]["parts"][0]["text"]
    assert "x" * 5000 in prompt
    assert "TAIL" not in prompt
    assert "Shorten it" in prompt


def test_refine_keeps_report_when_reply_is_empty():
    client = _client(lambda r: httpx.Response(200, json=_reply("")), [])

    assert client.refine_report("# Report", "text", "Improve", "key") == "# Report"


@pytest.mark.parametrize(
    "body",
    [
        [],
        {"candidates": ["not an object"]},
        {"candidates": [{"content": {"parts": ["text"]}}]},
    ],
)
def test_malformed_bodies_are_invalid_responses(body):
    client = _client(lambda r: httpx.Response(200, json=body), [])

    with pytest.raises(AIProviderError) as excinfo:
        client.refine_report("# Report", "text", "Improve", "key")

    assert excinfo.value.kind is ErrorKind.INVALID_RESPONSE
