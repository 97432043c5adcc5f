from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from specgraph.config import Settings
from specgraph.errors import (
    AuthError,
    EmptyResponseError,
    ModelTimeoutError,
    RateLimitError,
    TransportError,
)
from specgraph.model import Message, PromptLog, XAIClient, strip_code_fence

URL = "https://api.x.ai/v1/chat/completions"


def _request():
    return httpx.Request("POST", URL)


def _response(status):
    return httpx.Response(status, request=_request())


def _client(monkeypatch, outcome):
    client = XAIClient("test-key", Settings(timeout=5))
    seen = []

    def create(**kwargs):
        seen.append(kwargs)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(client.client.chat.completions, "create", create)
    return client, seen


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def test_chat_sends_roles_and_settings(monkeypatch):
    client, seen = _client(monkeypatch, _completion("hello"))
    text = client.chat([Message("system", "be brief"), Message("user", "hi")], max_tokens=99)
    assert text == "hello"
    assert seen[0]["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]
    assert seen[0]["model"] == "grok-beta"
    assert seen[0]["max_tokens"] == 99
    assert seen[0]["temperature"] == 0.7


@pytest.mark.parametrize("error, expected", [
    (openai.AuthenticationError("bad key", response=_response(401), body=None), AuthError),
    (openai.RateLimitError("too many", response=_response(429), body=None), RateLimitError),
    (openai.APITimeoutError(request=_request()), ModelTimeoutError),
    (openai.APIConnectionError(request=_request()), TransportError),
    (openai.InternalServerError("boom", response=_response(500), body=None), TransportError),
])
def test_sdk_failures_map_to_typed_errors(monkeypatch, error, expected):
    client, _ = _client(monkeypatch, error)
    with pytest.raises(expected):
        client.chat([Message("user", "hi")])


def test_status_error_detail_is_kept(monkeypatch):
    client, _ = _client(monkeypatch, openai.InternalServerError("boom", response=_response(503), body=None))
    with pytest.raises(TransportError) as info:
        client.chat([Message("user", "hi")])
    assert str(info.value) == "transport error: HTTP 503: boom"


def test_empty_completion(monkeypatch):
    client, _ = _client(monkeypatch, _completion(""))
    with pytest.raises(EmptyResponseError):
        client.chat([Message("user", "hi")])


def test_missing_api_key():
    with pytest.raises(AuthError):
        XAIClient("", Settings())


def test_strip_code_fence():
    assert strip_code_fence("```markdown\n# Doc\n\nbody\n```\n") == "# Doc\n\nbody"
    assert strip_code_fence("```\nplain\n```") == "plain"
    assert strip_code_fence("  no fence  ") == "no fence"


def test_prompt_log_writes_request_and_response(tmp_path):
    plog = PromptLog(str(tmp_path))
    log_id = plog.request("generate-design", "sys", "usr")
    plog.response(log_id, "generate-design", "answer")
    request = tmp_path / "logs" / "request" / f"generate-design-{log_id}.md"
    response = tmp_path / "logs" / "response" / f"generate-design-{log_id}.md"
    assert request.read_text(encoding="utf-8") == "# System Prompt\n\nsys\n\n---\n\n# User Prompt\n\nusr"
    assert response.read_text(encoding="utf-8") == "answer"


def test_disabled_prompt_log_writes_nothing(tmp_path):
    plog = PromptLog(str(tmp_path), enabled=False)
    assert plog.request("tersify", "sys", "usr") == ""
    plog.response("", "tersify", "answer")
    assert not (tmp_path / "logs").exists()
