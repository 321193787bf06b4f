from __future__ import annotations

import io
import json
import urllib.error
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from gameia.apps.scenarios import gateway
from gameia.apps.scenarios import router as scenario_router
from gameia.apps.scenarios import schemas as scenario_schemas
from gameia.apps.scenarios import services as scenario_services


def _scenario(options=4):
    return {
        "title": "Supplier delay",
        "context": "A key supplier will deliver two weeks late.",
        "options": [
            {"option_text": f"Option {i}", "feedback": "...", "is_optimal": i == 0, "impact_score": 10 * i}
            for i in range(options)
        ],
    }


@pytest.mark.parametrize("difficulty,xp", [("hard", 150), ("easy", 75), ("medium", 100), (None, 100)])
def test_xp_follows_difficulty(difficulty, xp):
    assert scenario_services.xp_for_difficulty(difficulty) == xp


def test_prompts_mention_theme_or_suggestions():
    system_prompt, user_prompt = scenario_services.build_prompts("negotiation", "hard")
    assert '"xp_reward": 150' in system_prompt
    assert '"negotiation"' in user_prompt

    _, open_prompt = scenario_services.build_prompts(None, None)
    assert "Difficulty: medium" in open_prompt
    assert "crisis management" in open_prompt


def test_generates_from_fenced_answer(monkeypatch):
    calls = []

    def _fake_completion(messages, *, temperature):
        calls.append((messages, temperature))
        return "Here it is:\n```json\n" + json.dumps(_scenario()) + "\n```"

    monkeypatch.setattr(gateway, "chat_completion", _fake_completion)

    scenario = scenario_services.generate_scenario(theme="supply chain", difficulty="easy")

    assert scenario["title"] == "Supplier delay"
    assert scenario["difficulty"] == "easy"
    assert scenario["xp_reward"] == 75
    [(messages, temperature)] = calls
    assert temperature == 0.8
    assert [m["role"] for m in messages] == ["system", "user"]


def test_invalid_structure_is_a_server_error(monkeypatch):
    monkeypatch.setattr(gateway, "chat_completion", lambda messages, **kw: json.dumps(_scenario(options=3)))

    with pytest.raises(HTTPException) as excinfo:
        scenario_router.generate_scenario(
            payload=scenario_schemas.ScenarioRequest(), current_user=SimpleNamespace(id="u1")
        )

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == "Invalid scenario structure"


def test_non_json_answer_is_rejected():
    with pytest.raises(scenario_services.ScenarioGatewayError):
        scenario_services.parse_scenario("I cannot help with that")


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("AI_GATEWAY_API_KEY", raising=False)

    with pytest.raises(gateway.ScenarioGatewayError) as excinfo:
        gateway.chat_completion([{"role": "user", "content": "hi"}])

    assert excinfo.value.status_code == 500


@pytest.mark.parametrize("upstream,expected", [(429, 429), (402, 402), (503, 500)])
def test_upstream_errors_are_mapped(monkeypatch, upstream, expected):
    monkeypatch.setenv("AI_GATEWAY_API_KEY", "test-key")

    def _raise(req, timeout):
        raise urllib.error.HTTPError(req.full_url, upstream, "error", None, io.BytesIO(b"upstream says no"))

    monkeypatch.setattr(gateway.urllib.request, "urlopen", _raise)

    with pytest.raises(gateway.ScenarioGatewayError) as excinfo:
        gateway.chat_completion([{"role": "user", "content": "hi"}])

    assert excinfo.value.status_code == expected


def test_gateway_returns_first_message(monkeypatch):
    monkeypatch.setenv("AI_GATEWAY_API_KEY", "test-key")
    seen = {}

    class _Response(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def _urlopen(req, timeout):
        seen["auth"] = req.get_header("Authorization")
        seen["body"] = json.loads(req.data)
        return _Response(json.dumps({"choices": [{"message": {"content": "hello"}}]}).encode())

    monkeypatch.setattr(gateway.urllib.request, "urlopen", _urlopen)

    assert gateway.chat_completion([{"role": "user", "content": "hi"}]) == "hello"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["temperature"] == 0.8
    assert seen["body"]["model"] == gateway.AI_SCENARIO_MODEL
