from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Dict, List

logger = logging.getLogger(__name__)

AI_GATEWAY_URL = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
AI_SCENARIO_MODEL = os.getenv("AI_SCENARIO_MODEL", "google/gemini-2.5-flash")
AI_GATEWAY_TIMEOUT_SEC = int(os.getenv("AI_GATEWAY_TIMEOUT_SEC", "60"))


class ScenarioGatewayError(RuntimeError):
    """Failure while generating a scenario; `status_code` is what the API returns."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


def _api_key() -> str:
    api_key = (os.getenv("AI_GATEWAY_API_KEY") or "").strip()
    if not api_key:
        raise ScenarioGatewayError("AI_GATEWAY_API_KEY is not configured")
    return api_key


def chat_completion(
    messages: List[Dict[str, str]],
    *,
    temperature: float = 0.8,
    model: str = AI_SCENARIO_MODEL,
) -> str:
    """POST a chat completion to the gateway and return the first message content."""
    payload = json.dumps({"model": model, "messages": messages, "temperature": temperature}).encode("utf-8")
    req = urllib.request.Request(AI_GATEWAY_URL, data=payload, method="POST")
    req.add_header("Content-Type", "application/json")
    req.add_header("Authorization", f"Bearer {_api_key()}")
    try:
        with urllib.request.urlopen(req, timeout=AI_GATEWAY_TIMEOUT_SEC) as resp:
            body = resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        if exc.code == 429:
            raise ScenarioGatewayError("Rate limit exceeded. Try again in a few seconds.", 429) from exc
        if exc.code == 402:
            raise ScenarioGatewayError("AI credits exhausted. Add funds to your workspace.", 402) from exc
        detail = exc.read().decode("utf-8", errors="replace")
        logger.error("AI gateway error", extra={"status": exc.code, "body": detail[:300]})
        raise ScenarioGatewayError("AI gateway failed to generate the scenario") from exc
    except urllib.error.URLError as exc:
        raise ScenarioGatewayError(f"AI gateway unreachable: {exc.reason}") from exc

    try:
        data = json.loads(body)
    except ValueError as exc:
        raise ScenarioGatewayError("AI gateway returned invalid JSON") from exc
    choices = data.get("choices") or []
    content = ((choices[0] if choices else {}).get("message") or {}).get("content")
    if not content:
        raise ScenarioGatewayError("Empty response from AI")
    return content
