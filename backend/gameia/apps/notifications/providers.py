from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from typing import Tuple

RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM = os.getenv("NOTIFICATIONS_EMAIL_FROM", "GAMEIA <noreply@resend.dev>")


class EmailProvider:
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        html: str,
        correlation_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(EmailProvider):
    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        html: str,
        correlation_id: str | None,
    ) -> None:
        return None


class ResendProvider(EmailProvider):
    """Transactional email over the Resend HTTP API."""

    def __init__(self, api_key: str, *, sender: str = EMAIL_FROM, timeout: int = 15) -> None:
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(
        self,
        *,
        template_key: str,
        recipient: str,
        subject: str,
        html: str,
        correlation_id: str | None,
    ) -> None:
        payload = json.dumps(
            {"from": self.sender, "to": [recipient], "subject": subject, "html": html}
        ).encode("utf-8")
        req = urllib.request.Request(RESEND_API_URL, data=payload, method="POST")
        req.add_header("Content-Type", "application/json")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        if correlation_id:
            req.add_header("X-Correlation-Id", correlation_id)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Email provider rejected message ({exc.code}): {body[:300]}") from exc


def get_email_provider() -> Tuple[EmailProvider, bool]:
    provider_name = (
        os.getenv("NOTIFICATIONS_EMAIL_PROVIDER")
        or os.getenv("EMAIL_PROVIDER")
        or ""
    ).strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name == "resend":
        api_key = os.getenv("RESEND_API_KEY", "").strip()
        if not api_key:
            return NoopProvider(), False
        return ResendProvider(api_key), True
    raise ValueError(f"Unsupported email provider: {provider_name}")
