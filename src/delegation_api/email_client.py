"""Minimal Resend REST client shared by the message executor and the notifier."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, request

from delegation_api.errors import ExecutorError

logger = logging.getLogger(__name__)


class ResendEmailClient:
    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout_s: float = 5.0,
    ) -> None:
        if not api_key:
            raise ValueError("Resend API key is required")
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def send(self, *, to: list[str], subject: str, html: str) -> dict[str, Any]:
        """POST one email and return the provider's JSON reply (contains ``id``)."""
        payload = {"from": self.sender, "to": to, "subject": subject, "html": html}
        req = request.Request(
            url=f"{self.base_url}/emails",
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
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise ExecutorError(f"Email API request failed ({exc.code}): {raw_error}") from exc
        except (TimeoutError, error.URLError) as exc:
            raise ExecutorError(f"Email API unreachable: {exc}") from exc
        logger.info("email_send event=accepted recipients=%d", len(to))
        parsed = json.loads(body) if body else {}
        return parsed if isinstance(parsed, dict) else {}
