import pytest
import requests

from errors import UpstreamServiceFailure
from llm_client import TextGenerationClient, extract_response_text
from prompt_compiler import Prompt

PROMPT = Prompt(system="sys", user="usr")


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self.ok = status_code < 400
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("not json")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def make_client(settings, session, **overrides):
    return TextGenerationClient(settings.model_copy(update=overrides), session=session)


def test_generate_endpoint_payload(settings):
    session = FakeSession(FakeResponse(body={"response": '{"query": {}}'}))
    text = make_client(settings, session).generate(PROMPT)
    assert text == '{"query": {}}'
    call = session.calls[0]
    assert call["url"] == "http://127.0.0.1:11434/api/generate"
    assert call["json"]["system"] == "sys"
    assert call["json"]["prompt"] == "usr"
    assert call["json"]["stream"] is False
    assert call["timeout"] == 30.0


def test_chat_endpoint(settings):
    session = FakeSession(FakeResponse(body={"message": {"content": "{}"}}))
    text = make_client(settings, session, ollama_api="chat").generate(PROMPT)
    assert text == "{}"
    call = session.calls[0]
    assert call["url"].endswith("/api/chat")
    assert [m["role"] for m in call["json"]["messages"]] == ["system", "user"]


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout("slow"),
    requests.exceptions.ConnectionError("refused"),
])
def test_transport_errors(settings, error):
    client = make_client(settings, FakeSession(error=error))
    with pytest.raises(UpstreamServiceFailure):
        client.generate(PROMPT)


@pytest.mark.parametrize("response", [
    FakeResponse(status_code=500, body={"error": "model not found"}, text="model not found"),
    FakeResponse(body=None, text="<html>"),
    FakeResponse(body={"done": True}),
])
def test_bad_responses(settings, response):
    client = make_client(settings, FakeSession(response))
    with pytest.raises(UpstreamServiceFailure):
        client.generate(PROMPT)


def test_no_retry_on_failure(settings):
    session = FakeSession(error=requests.exceptions.Timeout("slow"))
    with pytest.raises(UpstreamServiceFailure):
        make_client(settings, session).generate(PROMPT)
    assert len(session.calls) == 1


def test_gemini_without_key(settings):
    client = make_client(settings, FakeSession(), llm_provider="gemini", gemini_api_key=None)
    with pytest.raises(UpstreamServiceFailure):
        client.generate(PROMPT)


def test_unknown_provider(settings):
    client = make_client(settings, FakeSession(), llm_provider="mystery")
    with pytest.raises(UpstreamServiceFailure):
        client.generate(PROMPT)


def test_model_name_follows_provider(settings):
    assert make_client(settings, FakeSession()).model_name == "llama3.1"
    assert make_client(settings, FakeSession(), llm_provider="gemini").model_name == "gemini-2.0-flash"


def test_extract_response_text():
    assert extract_response_text({"response": "a"}) == "a"
    assert extract_response_text({"message": {"content": "b"}}) == "b"
    assert extract_response_text({"message": "b"}) is None
    assert extract_response_text(["a"]) is None
