"""Interpretation gateway: turns a free-text request into an interpretation.

The LLM gateway maps every transport failure onto a GatewayError kind so the
orchestrator can reject the submission before any task exists. The
deterministic gateway needs no network and is the default for local runs.
"""

from __future__ import annotations

import json
import logging
import socket
import time
from typing import Any, Protocol
from urllib import error, request

from delegation_api.errors import GatewayError, GatewayErrorKind
from delegation_api.executors.parsing import KEYWORD_EXTRACTORS
from delegation_api.models import DEFAULT_CATEGORY, InterpretationResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPTS: dict[str, str] = {
    "message": (
        "You are an email assistant. Analyze the user's request to send a message or email. "
        "Extract: recipients (email addresses), subject, content, tone, special requirements. "
        "Return a JSON object with keys recipients, subject, content, tone, requirements."
    ),
    "shopping": (
        "You are a shopping assistant. Analyze the user's request to order a product. "
        "Extract: product name, budget, brand preferences, specifications, delivery preferences. "
        "Return a JSON object with keys productName, budget, brand, specifications, delivery."
    ),
    "entertainment": (
        "You are an entertainment assistant. Analyze the user's request to book movie tickets. "
        "Extract: movie or genre, location, preferred date and time, number of tickets, seats. "
        "Return a JSON object with keys movieType, location, preferredTime, tickets, seats."
    ),
}


class InterpretationGateway(Protocol):
    """Request/response contract around the interpretation oracle."""

    def interpret(self, category: str, prompt: str) -> InterpretationResult: ...


class DeterministicInterpretationGateway:
    """Local stand-in for the oracle: keyword extraction wrapped in prose + JSON."""

    source = "deterministic"

    def interpret(self, category: str, prompt: str) -> InterpretationResult:
        strategy = category if category in KEYWORD_EXTRACTORS else DEFAULT_CATEGORY
        fields = KEYWORD_EXTRACTORS[strategy](prompt)
        text = (
            f"Analysis of the {strategy} request:\n"
            f"```json\n{json.dumps(fields, indent=2)}\n```"
        )
        return InterpretationResult(category=category, text=text, source=self.source)


class LLMInterpretationGateway:
    """OpenAI-compatible chat completions client with bounded timeout and retry."""

    source = "llm"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 8.0,
        max_retries: int = 1,
        backoff_s: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def interpret(self, category: str, prompt: str) -> InterpretationResult:
        if not self.api_key:
            raise GatewayError("invalid_credentials", "Interpretation API key is not configured")

        system_prompt = SYSTEM_PROMPTS.get(category, SYSTEM_PROMPTS[DEFAULT_CATEGORY])
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"User request: {prompt}"},
            ],
            "temperature": 0.7,
            "max_tokens": 1024,
        }
        response_json = self._request_with_retry(payload)
        text = self._extract_content(response_json)
        return InterpretationResult(
            category=category,
            text=text,
            fields=_whole_json_object(text),
            source=self.source,
        )

    def _request_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        last_error: GatewayError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload)
            except GatewayError as exc:
                last_error = exc
                logger.warning(
                    "interpretation_request event=failed attempt=%d/%d model=%s kind=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    self.model,
                    exc.kind,
                    exc.message,
                )
                # Only transient outages are worth another attempt.
                if exc.kind != "unavailable":
                    raise
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        if last_error is None:
            raise GatewayError("unavailable", "Interpretation request failed with unknown error")
        raise last_error

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise GatewayError(
                _kind_for_status(exc.code), f"Interpretation API returned HTTP {exc.code}"
            ) from exc
        except (TimeoutError, socket.timeout) as exc:
            raise GatewayError(
                "unavailable", f"Interpretation API timed out after {self.timeout_s:.2f}s"
            ) from exc
        except error.URLError as exc:
            raise GatewayError(
                "unavailable", f"Interpretation API unreachable: {exc.reason}"
            ) from exc
        try:
            return json.loads(body)
        except ValueError as exc:
            raise GatewayError("unavailable", "Interpretation API returned invalid JSON") from exc

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices", [])
        if not choices:
            raise GatewayError("unavailable", "Interpretation response did not contain choices")

        message = choices[0].get("message", {})
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            merged = "".join(text_segments).strip()
            if merged:
                return merged
        raise GatewayError("unavailable", "Interpretation response content could not be parsed")


def build_interpretation_gateway(
    *,
    mode: str,
    api_key: str,
    model: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
) -> InterpretationGateway:
    if mode.lower().strip() != "llm":
        return DeterministicInterpretationGateway()
    return LLMInterpretationGateway(
        api_key=api_key,
        model=model,
        base_url=base_url,
        timeout_s=timeout_s,
        max_retries=max_retries,
        backoff_s=backoff_s,
    )


def _kind_for_status(status_code: int) -> GatewayErrorKind:
    if status_code in (401, 403):
        return "invalid_credentials"
    if status_code == 429:
        return "rate_limited"
    return "unavailable"


def _whole_json_object(text: str) -> dict[str, Any] | None:
    """Structured fields only when the whole reply is one JSON object."""
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
