from __future__ import annotations

import json
from typing import Any
from urllib import error

import pytest

from delegation_api import interpretation as interpretation_module
from delegation_api.errors import GatewayError
from delegation_api.executors.parsing import parse_structured
from delegation_api.interpretation import (
    DeterministicInterpretationGateway,
    LLMInterpretationGateway,
    build_interpretation_gateway,
)


class FakeResponse:
    def __init__(self, payload: dict[str, Any]) -> None:
        self.body = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def read(self) -> bytes:
        return self.body


class FakeUrlopen:
    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[Any] = []

    def __call__(self, req: Any, timeout: float | None = None) -> FakeResponse:
        self.calls.append(req)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


def _completion(content: Any) -> dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _http_error(code: int) -> error.HTTPError:
    url = "https://llm.test/chat/completions"
    return error.HTTPError(url, code, "error", None, None)  # type: ignore[arg-type]


def _gateway(**kwargs: Any) -> LLMInterpretationGateway:
    options: dict[str, Any] = {
        "api_key": "sk-test",
        "base_url": "https://llm.test",
        "max_retries": 2,
        "backoff_s": 0.0,
    }
    options.update(kwargs)
    return LLMInterpretationGateway(**options)


def test_deterministic_gateway_embeds_fenced_json() -> None:
    result = DeterministicInterpretationGateway().interpret("shopping", "buy a laptop under $900")

    assert result.source == "deterministic"
    assert "```json" in result.text
    structured = parse_structured(result)
    assert structured is not None
    assert structured["productName"] == "laptop"
    assert structured["budget"] == 900.0


def test_deterministic_gateway_handles_unknown_category() -> None:
    result = DeterministicInterpretationGateway().interpret("gardening", "email bob@example.com")

    assert result.category == "gardening"
    assert result.text.startswith("Analysis of the message request")


def test_llm_gateway_returns_structured_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeUrlopen(_completion('{"productName": "laptop", "budget": 900}'))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    result = _gateway().interpret("shopping", "buy a laptop")

    assert result.fields == {"productName": "laptop", "budget": 900}
    assert result.source == "llm"
    sent = json.loads(fake.calls[0].data)
    assert sent["messages"][0]["content"].startswith("You are a shopping assistant")
    assert fake.calls[0].full_url == "https://llm.test/chat/completions"


def test_llm_gateway_keeps_prose_without_fields(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeUrlopen(_completion([{"type": "text", "text": "The user wants a laptop."}]))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    result = _gateway().interpret("shopping", "buy a laptop")

    assert result.text == "The user wants a laptop."
    assert result.fields is None


@pytest.mark.parametrize(
    ("code", "kind"),
    [(401, "invalid_credentials"), (403, "invalid_credentials"), (429, "rate_limited")],
)
def test_llm_gateway_does_not_retry_client_errors(
    monkeypatch: pytest.MonkeyPatch, code: int, kind: str
) -> None:
    fake = FakeUrlopen(_http_error(code))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    with pytest.raises(GatewayError) as exc_info:
        _gateway().interpret("message", "hello")

    assert exc_info.value.kind == kind
    assert exc_info.value.error_code == f"gateway_{kind}"
    assert len(fake.calls) == 1


def test_llm_gateway_retries_transient_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeUrlopen(error.URLError("connection refused"))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    with pytest.raises(GatewayError) as exc_info:
        _gateway(max_retries=2).interpret("message", "hello")

    assert exc_info.value.kind == "unavailable"
    assert len(fake.calls) == 3


def test_llm_gateway_recovers_after_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeUrlopen(_http_error(502), _completion("Recovered."))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    result = _gateway(max_retries=1).interpret("message", "hello")

    assert result.text == "Recovered."
    assert len(fake.calls) == 2


def test_llm_gateway_rejects_empty_choices(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(interpretation_module.request, "urlopen", FakeUrlopen({"choices": []}))

    with pytest.raises(GatewayError, match="did not contain choices"):
        _gateway(max_retries=0).interpret("message", "hello")


def test_llm_gateway_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeUrlopen(_completion("unused"))
    monkeypatch.setattr(interpretation_module.request, "urlopen", fake)

    with pytest.raises(GatewayError) as exc_info:
        _gateway(api_key="").interpret("message", "hello")

    assert exc_info.value.kind == "invalid_credentials"
    assert fake.calls == []


def test_build_gateway_selects_mode() -> None:
    options: dict[str, Any] = {
        "api_key": "sk-test",
        "model": "gpt-4o-mini",
        "base_url": "https://llm.test",
        "timeout_s": 1.0,
        "max_retries": 0,
        "backoff_s": 0.0,
    }

    assert isinstance(
        build_interpretation_gateway(mode="deterministic", **options),
        DeterministicInterpretationGateway,
    )
    llm = build_interpretation_gateway(mode=" LLM ", **options)
    assert isinstance(llm, LLMInterpretationGateway)
