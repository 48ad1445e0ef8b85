from __future__ import annotations

import concurrent.futures
import json
import threading
from pathlib import Path

import httpx
import pytest

from fakes import RecordingProvider
from voxmode.data.models import EffectiveConfiguration, OutputMode
from voxmode.errors import ConfigurationError, EnhancementError
from voxmode.services.enhancement import ollama as ollama_module
from voxmode.services.enhancement.dummy import DummyEnhancementProvider
from voxmode.services.enhancement.filters import filter_output, strip_reasoning
from voxmode.services.enhancement.ollama import OllamaEnhancementProvider
from voxmode.services.enhancement.pipeline import EnhancementPipeline
from voxmode.services.enhancement.prompts import PromptLibrary, PromptTemplate


def _configuration(**overrides) -> EffectiveConfiguration:
    values = {"backend": "local", "prompt": "default", "enhancement_provider": "recording"}
    values.update(overrides)
    return EffectiveConfiguration(**values)


def _pipeline(provider, **kwargs) -> EnhancementPipeline:
    return EnhancementPipeline(providers={"recording": lambda: provider}, **kwargs)


def test_filter_strips_reasoning_and_wrappers():
    reply = '<thinking>The user wants a cleanup.</thinking>Here is the cleaned text:\n"Ship it on Friday."'

    assert filter_output(reply) == "Ship it on Friday."


def test_filter_strips_code_fence_and_transcript_tags():
    reply = "```\n<TRANSCRIPT>\nlet x = 1\n</TRANSCRIPT>\n```"

    assert filter_output(reply, OutputMode.CLIPBOARD) == "let x = 1"


def test_filter_keeps_wrappers_when_output_is_not_pasted():
    reply = '<think>hmm</think>"quoted"'

    assert filter_output(reply, OutputMode.NONE) == '"quoted"'
    assert strip_reasoning("a<REASONING>x</REASONING>b") == "ab"


def test_prompt_renders_transcript_in_tags():
    request = PromptLibrary().get("email").render("hello team", model="gpt-test")

    assert "<TRANSCRIPT>\nhello team\n</TRANSCRIPT>" == request.user
    assert "email" in request.system.lower()
    assert request.model == "gpt-test"


def test_prompt_library_from_file(tmp_path: Path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps([{"id": "jira", "title": "Jira", "instructions": "Write a ticket."}]))

    library = PromptLibrary.from_file(path)

    assert "jira" in library.ids()
    assert "default" in library.ids()

    path.write_text("not json")
    with pytest.raises(ConfigurationError):
        PromptLibrary.from_file(path)


def test_pipeline_enhances_with_configured_model():
    provider = RecordingProvider(reply="<think>plan</think>Hello, team.")
    pipeline = _pipeline(provider, timeout=5)

    enhanced = pipeline.enhance("hello team", "default", _configuration(enhancement_model="small"))

    assert enhanced == "Hello, team."
    assert provider.requests[0].model == "small"
    assert provider.requests[0].transcript == "hello team"
    pipeline.close()


def test_pipeline_skips_blank_text():
    provider = RecordingProvider()
    pipeline = _pipeline(provider)

    assert pipeline.enhance("   ", "default", _configuration()) == "   "
    assert provider.requests == []
    pipeline.close()


def test_unknown_prompt_is_an_enhancement_error():
    pipeline = _pipeline(RecordingProvider())

    with pytest.raises(EnhancementError, match="missing"):
        pipeline.enhance("text", "missing", _configuration())
    pipeline.close()


def test_unknown_provider_is_an_enhancement_error():
    pipeline = _pipeline(RecordingProvider())

    with pytest.raises(EnhancementError, match="Unknown enhancement provider"):
        pipeline.enhance("text", "default", _configuration(enhancement_provider="nope"))
    pipeline.close()


def test_provider_failure_is_wrapped():
    pipeline = _pipeline(RecordingProvider(error=ValueError("boom")), timeout=5)

    with pytest.raises(EnhancementError, match="boom"):
        pipeline.enhance("text", "default", _configuration())
    pipeline.close()


def test_provider_timeout():
    pipeline = _pipeline(RecordingProvider(delay=1.0), timeout=0.1)

    with pytest.raises(EnhancementError, match="did not answer"):
        pipeline.enhance("text", "default", _configuration())
    pipeline.close()


def test_abandoned_calls_do_not_delay_later_providers():
    fast = RecordingProvider(reply="Fast reply.")
    pipeline = EnhancementPipeline(
        providers={"slow": lambda: RecordingProvider(delay=1.0), "recording": lambda: fast}, timeout=0.1
    )
    for _ in range(3):
        with pytest.raises(EnhancementError, match="did not answer"):
            pipeline.enhance("text", "default", _configuration(enhancement_provider="slow"))

    assert pipeline.enhance("text", "default", _configuration()) == "Fast reply."
    assert len(fast.requests) == 1
    pipeline.close()


def test_cancelled_enhancement():
    pipeline = _pipeline(RecordingProvider(delay=1.0), timeout=5)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(concurrent.futures.CancelledError):
        pipeline.enhance("text", "default", _configuration(), cancel_event=cancel)
    pipeline.close()


def test_custom_prompt_registration():
    library = PromptLibrary()
    library.register(PromptTemplate(id="shout", title="Shout", instructions="Use capitals."))
    provider = RecordingProvider()
    pipeline = _pipeline(provider, library=library, timeout=5)

    assert pipeline.enhance("quiet words", "shout", _configuration()) == "QUIET WORDS"
    assert "Use capitals." in provider.requests[0].system
    pipeline.close()


def test_dummy_provider_capitalises():
    request = PromptLibrary().get("default").render("  hello there ")

    assert DummyEnhancementProvider().complete(request, deadline=0) == "Hello there"


def test_ollama_posts_chat_request(monkeypatch):
    captured = {}

    def fake_post(url, json, timeout):
        captured.update(url=url, payload=json)
        return httpx.Response(
            200,
            json={"message": {"role": "assistant", "content": "Tidy text."}},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(ollama_module.httpx, "post", fake_post)
    provider = OllamaEnhancementProvider(base_url="http://ollama:11434/", model="llama3.2")
    request = PromptLibrary().get("default").render("tidy text")

    assert provider.complete(request, deadline=10**9) == "Tidy text."
    assert captured["url"] == "http://ollama:11434/api/chat"
    assert captured["payload"]["stream"] is False
    assert captured["payload"]["messages"][1]["content"] == request.user


def test_ollama_connection_error(monkeypatch):
    def fake_post(*args, **kwargs):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(ollama_module.httpx, "post", fake_post)
    provider = OllamaEnhancementProvider(base_url="http://ollama:11434")

    with pytest.raises(EnhancementError, match="Ollama request failed"):
        provider.complete(PromptLibrary().get("default").render("x"), deadline=10**9)


def test_openai_provider_uses_responses_api():
    from types import SimpleNamespace

    from voxmode.services.enhancement.openai_provider import OpenAIEnhancementProvider

    seen = {}

    def create(model, input, timeout):
        seen.update(model=model, input=input, timeout=timeout)
        return SimpleNamespace(output_text="Clean text.")

    provider = OpenAIEnhancementProvider(model="gpt-test", api_key="key")
    provider._client = SimpleNamespace(responses=SimpleNamespace(create=create))
    request = PromptLibrary().get("chat").render("clean text")

    assert provider.complete(request, deadline=10**9) == "Clean text."
    assert seen["model"] == "gpt-test"
    assert [message["role"] for message in seen["input"]] == ["system", "user"]


def test_openai_provider_errors_are_enhancement_errors():
    from types import SimpleNamespace

    from voxmode.services.enhancement.openai_provider import OpenAIEnhancementProvider

    def create(**kwargs):
        raise RuntimeError("quota exceeded")

    provider = OpenAIEnhancementProvider(api_key="key")
    provider._client = SimpleNamespace(responses=SimpleNamespace(create=create))

    with pytest.raises(EnhancementError, match="quota exceeded"):
        provider.complete(PromptLibrary().get("default").render("x"), deadline=10**9)
